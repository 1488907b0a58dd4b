from flask import Blueprint, request
from narravo import cache
from narravo.services import archive_service
from narravo.services.archive_service import ArchiveError
from narravo.utils.responses import success_response, error_response
import logging

logger = logging.getLogger(__name__)

archives_bp = Blueprint('archives', __name__)


@archives_bp.route('/archives', methods=['GET'])
@cache.cached(timeout=60, query_string=True)
def archive_months():
    """Months with published posts, newest first"""
    try:
        limit = request.args.get('limit', type=int)
        return success_response({'items': archive_service.get_archive_months(limit=limit)})
    except Exception as e:
        logger.error("Error listing archive months: %s", e)
        return error_response('Internal server error', 500)


@archives_bp.route('/archives/<year>', methods=['GET'])
def posts_by_year(year):
    try:
        return success_response(archive_service.get_posts_by_year(
            year,
            page=request.args.get('page', 1, type=int),
            page_size=min(request.args.get('page_size', 20, type=int), 100),
        ))
    except ArchiveError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error getting archive for %s: %s", year, e)
        return error_response('Internal server error', 500)


@archives_bp.route('/archives/<year>/<month>', methods=['GET'])
def posts_by_month(year, month):
    try:
        return success_response(archive_service.get_posts_by_month(
            year,
            month,
            page=request.args.get('page', 1, type=int),
            page_size=min(request.args.get('page_size', 20, type=int), 100),
        ))
    except ArchiveError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error getting archive for %s/%s: %s", year, month, e)
        return error_response('Internal server error', 500)
