from flask import Blueprint, request
from narravo import db
from narravo.routes.comments import anti_abuse_response
from narravo.schemas.comment import ReactionToggle
from narravo.services.anti_abuse import validate_anti_abuse
from narravo.services.reaction_service import (
    toggle_reaction,
    get_reaction_counts,
    get_user_reactions,
    ReactionError,
)
from narravo.utils.auth import require_auth, get_current_user_id, get_optional_user
from narravo.utils.responses import success_response, error_response
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

reactions_bp = Blueprint('reactions', __name__)


@reactions_bp.route('/reactions', methods=['POST'])
@require_auth
@validate_request(ReactionToggle)
def toggle(payload: ReactionToggle):
    """Toggle one reaction for the current user"""
    try:
        user_id = get_current_user_id()
        check = validate_anti_abuse(
            user_id, 'reaction', request.headers, request.remote_addr,
            honeypot=payload.honeypot, submit_start_time=payload.submit_start_time,
        )
        if not check.ok:
            return anti_abuse_response(check)

        result = toggle_reaction(payload.target_type, payload.target_id, user_id, payload.kind)
        counts = get_reaction_counts(payload.target_type, [payload.target_id])[payload.target_id]
        return success_response({'result': result, 'counts': counts})
    except ReactionError as e:
        status = 404 if str(e) == 'Target not found' else 400
        return error_response(str(e), status)
    except Exception as e:
        db.session.rollback()
        logger.error("Error toggling reaction: %s", e)
        return error_response('Internal server error', 500)


@reactions_bp.route('/reactions', methods=['GET'])
def counts():
    """Counts for ``?target_type=post&ids=1,2,3``"""
    try:
        target_type = request.args.get('target_type', 'post')
        try:
            ids = [int(i) for i in request.args.get('ids', '').split(',') if i.strip()]
        except ValueError:
            return error_response('ids must be a comma-separated list of integers', 400)
        if len(ids) > 100:
            return error_response('Too many ids', 400)

        data = {'counts': get_reaction_counts(target_type, ids)}
        user = get_optional_user()
        if user is not None:
            data['mine'] = get_user_reactions(target_type, ids, user.id)
        return success_response(data)
    except ReactionError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error("Error getting reaction counts: %s", e)
        return error_response('Internal server error', 500)
