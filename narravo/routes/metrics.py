from flask import Blueprint, request
from narravo import db, limiter
from narravo.schemas.post import ViewEvent
from narravo.services.analytics_service import record_view, get_trending_posts, get_post_view_counts
from narravo.services.anti_abuse import get_client_ip
from narravo.utils.responses import success_response, error_response
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

metrics_bp = Blueprint('metrics', __name__)

SESSION_COOKIE = 'narravo_sid'


@metrics_bp.route('/metrics/view', methods=['POST'])
@limiter.limit("120 per minute")
@validate_request(ViewEvent)
def track_view(payload: ViewEvent):
    """Record a post view; bots and repeats inside the session window are ignored"""
    try:
        counted = record_view(
            payload.post_id,
            session_id=payload.session_id or request.cookies.get(SESSION_COOKIE),
            ip=get_client_ip(request.headers, request.remote_addr),
            user_agent=request.headers.get('User-Agent'),
            referer=request.headers.get('Referer'),
            accept_language=request.headers.get('Accept-Language'),
        )
        return success_response({'counted': counted})
    except Exception as e:
        db.session.rollback()
        logger.error("Error recording view for post %s: %s", payload.post_id, e)
        return error_response('Internal server error', 500)


@metrics_bp.route('/metrics/trending', methods=['GET'])
def trending():
    try:
        days = request.args.get('days', type=int)
        limit = max(1, min(request.args.get('limit', 5, type=int), 20))
        return success_response({'items': get_trending_posts(days=days, limit=limit)})
    except Exception as e:
        logger.error("Error getting trending posts: %s", e)
        return error_response('Internal server error', 500)


@metrics_bp.route('/metrics/views', methods=['GET'])
def view_counts():
    """Totals for ``?ids=1,2,3``"""
    try:
        try:
            ids = [int(i) for i in request.args.get('ids', '').split(',') if i.strip()]
        except ValueError:
            return error_response('ids must be a comma-separated list of integers', 400)
        if len(ids) > 100:
            return error_response('Too many ids', 400)
        return success_response({'counts': get_post_view_counts(ids, days=request.args.get('days', type=int))})
    except Exception as e:
        logger.error("Error getting view counts: %s", e)
        return error_response('Internal server error', 500)
