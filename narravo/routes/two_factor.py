from flask import Blueprint, request, session
from narravo import db
from narravo.middleware.security import SecurityMiddleware
from narravo.schemas.two_factor import TotpCode, RecoveryCodeIn
from narravo.services import two_factor_service, webauthn_service
from narravo.services.anti_abuse import get_client_ip, get_two_factor_limiter
from narravo.services.two_factor_service import TwoFactorError
from narravo.utils.auth import get_current_user, issue_tokens, mfa_step_allowed, require_auth
from narravo.utils.responses import success_response, error_response
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

two_factor_bp = Blueprint('two_factor', __name__)

CHALLENGE_SESSION_KEY = 'wa_chal'


def _client():
    return get_client_ip(request.headers, request.remote_addr), request.headers.get('User-Agent')


def _relying_party():
    return request.host.partition(':')[0], f"{request.scheme}://{request.host}"


def _limited(user):
    limiter = get_two_factor_limiter()
    return limiter.is_rate_limited(f'2fa:{user.id}')


def _verified_response(user, remember_device):
    """Full tokens after a passed second factor, plus a trusted-device token on request."""
    get_two_factor_limiter().reset_rate_limit(f'2fa:{user.id}')
    data = issue_tokens(user)
    if remember_device:
        ip, ua = _client()
        data['trusted_device_token'] = two_factor_service.create_trusted_device(user.id, ua, ip)
    return success_response(data, 'Two-factor verification passed')


def _two_factor_error(e: TwoFactorError):
    return error_response(e.message, e.status_code)


def _failed_verification(user, method, e: TwoFactorError):
    SecurityMiddleware.log_security_event('2fa_verification_failed', {'method': method, 'error': e.message},
                                          severity='medium', user_id=user.id)
    return _two_factor_error(e)


@two_factor_bp.route('/status', methods=['GET'])
@require_auth
def status():
    return success_response(two_factor_service.get_status(get_current_user()))


# TOTP

@two_factor_bp.route('/totp/init', methods=['POST'])
@require_auth
def totp_init():
    try:
        return success_response(two_factor_service.begin_totp_setup(get_current_user()))
    except TwoFactorError as e:
        return _two_factor_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error starting TOTP setup: %s", e)
        return error_response('Internal server error', 500)


@two_factor_bp.route('/totp/confirm', methods=['POST'])
@require_auth
@validate_request(TotpCode)
def totp_confirm(payload: TotpCode):
    """Activate TOTP; the recovery codes are returned only here"""
    try:
        ip, ua = _client()
        codes = two_factor_service.confirm_totp_setup(get_current_user(), payload.code, ip, ua)
        return success_response({'recovery_codes': codes}, 'Two-factor authentication enabled')
    except TwoFactorError as e:
        return _two_factor_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error confirming TOTP setup: %s", e)
        return error_response('Internal server error', 500)


@two_factor_bp.route('/totp/verify', methods=['POST'])
@mfa_step_allowed
@validate_request(TotpCode)
def totp_verify(payload: TotpCode):
    user = get_current_user()
    if _limited(user):
        return error_response('Too many attempts, try again later', 429)
    try:
        two_factor_service.verify_totp_login(user, payload.code)
        return _verified_response(user, payload.remember_device)
    except TwoFactorError as e:
        return _failed_verification(user, 'totp', e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error verifying TOTP for user %s: %s", user.id, e)
        return error_response('Internal server error', 500)


# Recovery codes

@two_factor_bp.route('/recovery/verify', methods=['POST'])
@mfa_step_allowed
@validate_request(RecoveryCodeIn)
def recovery_verify(payload: RecoveryCodeIn):
    user = get_current_user()
    if _limited(user):
        return error_response('Too many attempts, try again later', 429)
    try:
        ip, ua = _client()
        two_factor_service.use_recovery_code(user, payload.code, ip, ua)
        return _verified_response(user, payload.remember_device)
    except TwoFactorError as e:
        return _failed_verification(user, 'recovery_code', e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error verifying recovery code for user %s: %s", user.id, e)
        return error_response('Internal server error', 500)


@two_factor_bp.route('/recovery/regenerate', methods=['POST'])
@require_auth
def recovery_regenerate():
    try:
        ip, ua = _client()
        codes = two_factor_service.regenerate_recovery_codes(get_current_user(), ip, ua)
        return success_response({'recovery_codes': codes}, 'Recovery codes regenerated')
    except TwoFactorError as e:
        return _two_factor_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error regenerating recovery codes: %s", e)
        return error_response('Internal server error', 500)


@two_factor_bp.route('/disable', methods=['POST'])
@require_auth
def disable():
    try:
        ip, ua = _client()
        two_factor_service.disable_two_factor(get_current_user(), ip, ua)
        return success_response(message='Two-factor authentication disabled')
    except Exception as e:
        db.session.rollback()
        logger.error("Error disabling two-factor: %s", e)
        return error_response('Internal server error', 500)


# Trusted devices

@two_factor_bp.route('/trusted-devices', methods=['GET'])
@require_auth
def trusted_devices():
    devices = two_factor_service.list_trusted_devices(get_current_user().id)
    return success_response({'devices': [d.to_dict() for d in devices]})


@two_factor_bp.route('/trusted-devices/<int:device_id>', methods=['DELETE'])
@require_auth
def revoke_device(device_id):
    ip, ua = _client()
    if not two_factor_service.revoke_trusted_device(get_current_user().id, device_id, ip, ua):
        return error_response('Device not found', 404)
    return success_response(message='Device revoked')


@two_factor_bp.route('/trusted-devices/revoke-all', methods=['POST'])
@require_auth
def revoke_all_devices():
    ip, ua = _client()
    count = two_factor_service.revoke_all_trusted_devices(get_current_user().id, ip, ua)
    return success_response({'revoked': count})


# Passkeys

@two_factor_bp.route('/webauthn/register/options', methods=['POST'])
@require_auth
def webauthn_register_options():
    rp_id, _ = _relying_party()
    options, challenge = webauthn_service.registration_options(get_current_user(), rp_id)
    session[CHALLENGE_SESSION_KEY] = challenge
    return success_response({'options': options})


@two_factor_bp.route('/webauthn/register/verify', methods=['POST'])
@require_auth
def webauthn_register_verify():
    data = request.get_json(silent=True) or {}
    credential = data.get('credential')
    if not isinstance(credential, dict):
        return error_response('credential is required', 400)
    try:
        rp_id, origin = _relying_party()
        ip, ua = _client()
        row = webauthn_service.complete_registration(
            get_current_user(), credential, session.pop(CHALLENGE_SESSION_KEY, None),
            rp_id, origin, nickname=data.get('nickname'), ip=ip, user_agent=ua,
        )
        return success_response({'credential': row.to_dict()}, 'Passkey registered', 201)
    except TwoFactorError as e:
        return _two_factor_error(e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error registering passkey: %s", e)
        return error_response('Internal server error', 500)


@two_factor_bp.route('/webauthn/authenticate/options', methods=['POST'])
@mfa_step_allowed
def webauthn_authenticate_options():
    rp_id, _ = _relying_party()
    try:
        options, challenge = webauthn_service.authentication_options(get_current_user(), rp_id)
    except TwoFactorError as e:
        return _two_factor_error(e)
    session[CHALLENGE_SESSION_KEY] = challenge
    return success_response({'options': options})


@two_factor_bp.route('/webauthn/authenticate/verify', methods=['POST'])
@mfa_step_allowed
def webauthn_authenticate_verify():
    user = get_current_user()
    if _limited(user):
        return error_response('Too many attempts, try again later', 429)
    data = request.get_json(silent=True) or {}
    credential = data.get('credential')
    if not isinstance(credential, dict):
        return error_response('credential is required', 400)
    try:
        rp_id, origin = _relying_party()
        webauthn_service.complete_authentication(
            user, credential, session.pop(CHALLENGE_SESSION_KEY, None), rp_id, origin
        )
        return _verified_response(user, bool(data.get('remember_device')))
    except TwoFactorError as e:
        return _failed_verification(user, 'passkey', e)
    except Exception as e:
        db.session.rollback()
        logger.error("Error verifying passkey for user %s: %s", user.id, e)
        return error_response('Internal server error', 500)


@two_factor_bp.route('/webauthn/credentials', methods=['GET'])
@require_auth
def webauthn_credentials():
    rows = webauthn_service.list_credentials(get_current_user().id)
    return success_response({'credentials': [row.to_dict() for row in rows]})


@two_factor_bp.route('/webauthn/credentials/<int:credential_id>', methods=['DELETE'])
@require_auth
def webauthn_delete(credential_id):
    ip, ua = _client()
    if not webauthn_service.delete_credential(get_current_user().id, credential_id, ip, ua):
        return error_response('Passkey not found', 404)
    return success_response(message='Passkey removed')


@two_factor_bp.route('/activity', methods=['GET'])
@require_auth
def activity():
    limit = max(1, min(request.args.get('limit', 50, type=int), 200))
    rows = two_factor_service.get_security_activity(get_current_user().id, limit=limit)
    return success_response({'items': [row.to_dict() for row in rows]})
