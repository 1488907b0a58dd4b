from flask import Blueprint, request
from narravo import db
from narravo.middleware.security import audit_log
from narravo.schemas.admin import GlobalConfigSet, UserConfigSet, ConfigDelete
from narravo.services.config_service import ConfigError, get_config_service
from narravo.utils.auth import admin_required
from narravo.utils.responses import success_response, error_response
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

admin_config_bp = Blueprint('admin_config', __name__)


def _config_error(e: ConfigError):
    db.session.rollback()
    message = str(e)
    if 'not allowed' in message or 'Forbidden' in message:
        return error_response(message, 403)
    return error_response(message, 400)


@admin_config_bp.route('/admin/config', methods=['GET'])
@admin_required
def list_config():
    """Global rows, optionally by ``?category=``; ``?user_id=`` adds that user's overrides"""
    try:
        service = get_config_service()
        data = {'globals': [row.to_dict() for row in service.list_globals(request.args.get('category'))]}
        user_id = request.args.get('user_id', type=int)
        if user_id:
            data['overrides'] = [row.to_dict() for row in service.list_user_overrides(user_id)]
        return success_response(data)
    except Exception as e:
        logger.error("Error listing configuration: %s", e)
        return error_response('Internal server error', 500)


@admin_config_bp.route('/admin/config/global', methods=['POST'])
@admin_required
@audit_log('config_set_global')
@validate_request(GlobalConfigSet)
def set_global(payload: GlobalConfigSet):
    try:
        kwargs = payload.model_dump(include=payload.model_fields_set - {'key', 'value'})
        row = get_config_service().set_global(payload.key, payload.value, **kwargs)
        return success_response(row.to_dict(), 'Configuration saved')
    except ConfigError as e:
        return _config_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error setting configuration %s: %s", payload.key, e)
        return error_response('Internal server error', 500)


@admin_config_bp.route('/admin/config/user', methods=['POST'])
@admin_required
@audit_log('config_set_user')
@validate_request(UserConfigSet)
def set_user(payload: UserConfigSet):
    try:
        row = get_config_service().set_user_override(payload.key, payload.user_id, payload.value)
        return success_response(row.to_dict(), 'User override saved')
    except ConfigError as e:
        return _config_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error setting override %s for user %s: %s", payload.key, payload.user_id, e)
        return error_response('Internal server error', 500)


@admin_config_bp.route('/admin/config/delete', methods=['POST'])
@admin_required
@audit_log('config_delete')
@validate_request(ConfigDelete)
def delete_config(payload: ConfigDelete):
    """Without ``user_id`` the global row and all overrides of the key go"""
    try:
        service = get_config_service()
        if payload.user_id is not None:
            deleted = int(service.delete_user_override(payload.key, payload.user_id))
        else:
            deleted = service.delete_global(payload.key)
        return success_response({'deleted': deleted})
    except ConfigError as e:
        return _config_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error deleting configuration %s: %s", payload.key, e)
        return error_response('Internal server error', 500)
