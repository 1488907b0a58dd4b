from flask import Blueprint, request
from narravo import db
from narravo.schemas.admin import PreferenceSet
from narravo.services.config_service import (
    ConfigError,
    USER_CONFIGURABLE_KEYS,
    get_config_service,
    normalize_key,
)
from narravo.utils.auth import require_auth, get_current_user_id
from narravo.utils.responses import success_response, error_response
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

preferences_bp = Blueprint('preferences', __name__)


def _allowed_key(key):
    """Normalized key, or None when users may not set it"""
    try:
        k = normalize_key(key)
    except ConfigError:
        return None
    return k if k in USER_CONFIGURABLE_KEYS else None


@preferences_bp.route('/user/preferences', methods=['GET'])
@require_auth
def get_preferences():
    """Effective value of every user-configurable key"""
    try:
        user_id = get_current_user_id()
        service = get_config_service()
        overrides = {row.key for row in service.list_user_overrides(user_id)}
        preferences = {
            key: {'value': service.get_value(key, user_id=user_id), 'overridden': key in overrides}
            for key in sorted(USER_CONFIGURABLE_KEYS)
        }
        return success_response({'preferences': preferences})
    except Exception as e:
        logger.error("Error reading preferences: %s", e)
        return error_response('Internal server error', 500)


@preferences_bp.route('/user/preferences', methods=['POST'])
@require_auth
@validate_request(PreferenceSet)
def set_preference(payload: PreferenceSet):
    key = _allowed_key(payload.key)
    if key is None:
        return error_response('Forbidden preference key', 403)
    try:
        row = get_config_service().set_user_override(key, get_current_user_id(), payload.value)
        return success_response({'key': row.key, 'value': row.value}, 'Preference saved')
    except ConfigError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("Error saving preference %s: %s", key, e)
        return error_response('Internal server error', 500)


@preferences_bp.route('/user/preferences', methods=['DELETE'])
@require_auth
def delete_preference():
    """Drop an override so the global value applies again"""
    data = request.get_json(silent=True) or {}
    key = _allowed_key(request.args.get('key') or data.get('key') or '')
    if key is None:
        return error_response('Forbidden preference key', 403)
    try:
        deleted = get_config_service().delete_user_override(key, get_current_user_id())
        return success_response({'key': key, 'deleted': deleted})
    except ConfigError as e:
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("Error deleting preference %s: %s", key, e)
        return error_response('Internal server error', 500)
