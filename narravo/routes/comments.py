from flask import Blueprint, request
from narravo import db, limiter
from narravo.models.post import Post
from narravo.schemas.comment import CommentCreate
from narravo.services import comment_service
from narravo.services.anti_abuse import validate_anti_abuse
from narravo.services.comment_service import CommentError
from narravo.services.post_service import is_visible
from narravo.services.reaction_service import get_reaction_counts
from narravo.utils.auth import require_auth, get_current_user
from narravo.utils.responses import success_response, error_response
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

comments_bp = Blueprint('comments', __name__)

_NOT_FOUND = ('Post not found', 'Parent comment not found')


def _comment_error(e):
    message = str(e)
    if message in _NOT_FOUND:
        return error_response(message, 404)
    if message == 'Comments are locked for this post':
        return error_response(message, 403)
    return error_response(message, 400)


def anti_abuse_response(result):
    """Map a failed anti-abuse check to 400 or 429 (with Retry-After)."""
    if result.rate_limit is not None and not result.rate_limit.allowed:
        response, status = error_response(result.error, 429, details=result.rate_limit.to_dict())
        response.headers['Retry-After'] = str(result.rate_limit.retry_after)
        return response, status
    return error_response(result.error, 400)


def _with_reactions(items):
    ids = []

    def collect(nodes):
        for node in nodes:
            ids.append(node['id'])
            collect(node['replies'])

    def apply(nodes, counts):
        for node in nodes:
            node['reactions'] = counts.get(node['id'], {})
            apply(node['replies'], counts)

    collect(items)
    apply(items, get_reaction_counts('comment', ids))
    return items


@comments_bp.route('/posts/<int:post_id>/comments', methods=['GET'])
def get_comments(post_id):
    """Approved comment threads for a post"""
    try:
        if not is_visible(db.session.get(Post, post_id)):
            return error_response('Post not found', 404)
        tree = comment_service.get_comment_tree(
            post_id,
            cursor=request.args.get('cursor'),
            limit_top=request.args.get('limit', type=int),
        )
        tree['items'] = _with_reactions(tree['items'])
        tree['total'] = comment_service.count_approved(post_id)
        return success_response(tree)
    except Exception as e:
        logger.error("Error getting comments for post %s: %s", post_id, e)
        return error_response('Internal server error', 500)


@comments_bp.route('/comments/<int:comment_id>/replies', methods=['GET'])
def get_replies(comment_id):
    try:
        page = comment_service.get_replies(
            comment_id,
            cursor=request.args.get('cursor'),
            limit=request.args.get('limit', type=int),
        )
        page['items'] = _with_reactions(page['items'])
        return success_response(page)
    except CommentError as e:
        return _comment_error(e)
    except Exception as e:
        logger.error("Error getting replies for comment %s: %s", comment_id, e)
        return error_response('Internal server error', 500)


@comments_bp.route('/comments', methods=['POST'])
@limiter.limit("30 per hour")
@require_auth
@validate_request(CommentCreate)
def create_comment(payload: CommentCreate):
    """Create a comment or reply; non-admin comments await moderation"""
    try:
        user = get_current_user()
        check = validate_anti_abuse(
            user.id, 'comment', request.headers, request.remote_addr,
            honeypot=payload.honeypot, submit_start_time=payload.submit_start_time,
        )
        if not check.ok:
            return anti_abuse_response(check)

        comment = comment_service.create_comment(
            payload.post_id,
            user.id,
            payload.body_md,
            parent_id=payload.parent_id,
            attachments=[a.model_dump() for a in payload.attachments],
            is_admin=user.is_admin,
        )
        data = comment.to_dict()
        data['status'] = comment.status
        return success_response(data, status_code=201)

    except CommentError as e:
        db.session.rollback()
        return _comment_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error creating comment on post %s: %s", payload.post_id, e)
        return error_response('Internal server error', 500)


@comments_bp.route('/comments/recent', methods=['GET'])
def recent_comments():
    try:
        limit = max(1, min(request.args.get('limit', 5, type=int), 20))
        items = comment_service.get_recent_comments(limit)
        return success_response({'items': items})
    except Exception as e:
        logger.error("Error getting recent comments: %s", e)
        return error_response('Internal server error', 500)
