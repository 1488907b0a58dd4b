from flask import Blueprint, request
from narravo import db
from narravo.services import taxonomy_service
from narravo.services.post_service import PostError
from narravo.utils.auth import admin_required
from narravo.utils.responses import success_response, error_response
import logging

logger = logging.getLogger(__name__)

taxonomy_bp = Blueprint('taxonomy', __name__)


@taxonomy_bp.route('/tags', methods=['GET'])
def list_tags():
    try:
        return success_response({'items': taxonomy_service.list_tags()})
    except Exception as e:
        logger.error("Error listing tags: %s", e)
        return error_response('Internal server error', 500)


@taxonomy_bp.route('/tags/<slug>', methods=['GET'])
def tag_posts(slug):
    try:
        page = taxonomy_service.get_tag_posts(
            slug, limit=request.args.get('limit'), cursor=request.args.get('cursor')
        )
        if page is None:
            return error_response('Tag not found', 404)
        return success_response(page)
    except PostError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error getting posts for tag %s: %s", slug, e)
        return error_response('Internal server error', 500)


@taxonomy_bp.route('/categories', methods=['GET'])
def list_categories():
    try:
        return success_response({'items': taxonomy_service.list_categories()})
    except Exception as e:
        logger.error("Error listing categories: %s", e)
        return error_response('Internal server error', 500)


@taxonomy_bp.route('/categories/<slug>', methods=['GET'])
def category_posts(slug):
    try:
        page = taxonomy_service.get_category_posts(
            slug, limit=request.args.get('limit'), cursor=request.args.get('cursor')
        )
        if page is None:
            return error_response('Category not found', 404)
        return success_response(page)
    except PostError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error getting posts for category %s: %s", slug, e)
        return error_response('Internal server error', 500)


@taxonomy_bp.route('/admin/tags/<int:tag_id>', methods=['DELETE'])
@admin_required
def delete_tag(tag_id):
    try:
        if not taxonomy_service.delete_tag(tag_id):
            return error_response('Tag not found', 404)
        return success_response(message='Tag deleted')
    except Exception as e:
        db.session.rollback()
        logger.error("Error deleting tag %s: %s", tag_id, e)
        return error_response('Internal server error', 500)
