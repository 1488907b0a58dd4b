from flask import Blueprint, current_app, redirect, request, session
from flask_jwt_extended import jwt_required, create_access_token, get_jwt_identity
from narravo import db
from narravo.middleware.security import SecurityMiddleware, rate_limit_auth
from narravo.models.user import User
from narravo.services import oauth_service
from narravo.services.oauth_service import OAuthError
from narravo.services.two_factor_service import verify_trusted_device
from narravo.utils.auth import (
    get_current_user,
    issue_tokens,
    issue_mfa_pending_token,
    require_auth,
    trusted_device_token,
)
from narravo.utils.responses import success_response, error_response
import logging

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

STATE_SESSION_KEY = 'oauth_state'


def _callback_url(provider):
    return f"{current_app.config['SITE_URL']}/api/auth/callback/{provider}"


@auth_bp.route('/providers', methods=['GET'])
def providers():
    return success_response({'providers': oauth_service.enabled_providers()})


@auth_bp.route('/login/<provider>', methods=['GET'])
@rate_limit_auth()
def login(provider):
    """Send the browser to the provider's consent page"""
    try:
        url, state = oauth_service.build_authorization_url(provider, _callback_url(provider))
    except OAuthError as e:
        return error_response(str(e), 400)
    session[STATE_SESSION_KEY] = {'provider': provider, 'state': state}
    return redirect(url)


@auth_bp.route('/callback/<provider>', methods=['GET'])
@rate_limit_auth()
def callback(provider):
    """
    Finish the OAuth flow.

    Users with two-factor enabled get a short-lived pending token unless the
    request carries a valid trusted-device token.
    """
    pending = session.pop(STATE_SESSION_KEY, None) or {}
    state = request.args.get('state')
    if pending.get('provider') != provider or not state or pending.get('state') != state:
        SecurityMiddleware.log_security_event('oauth_state_mismatch', {'provider': provider})
        return error_response('Invalid OAuth state', 400)
    if request.args.get('error'):
        return error_response(f"Sign-in was cancelled: {request.args['error']}", 400)

    try:
        profile = oauth_service.fetch_profile(provider, _callback_url(provider), state, request.url)
        user = oauth_service.upsert_user(provider, profile)
    except OAuthError as e:
        SecurityMiddleware.log_security_event('oauth_login_failed', {'provider': provider, 'error': str(e)})
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        logger.error("OAuth callback failed for %s: %s", provider, e)
        return error_response('Sign-in failed', 502)

    if user.two_factor_enabled and not verify_trusted_device(user.id, trusted_device_token()):
        return success_response(issue_mfa_pending_token(user), 'Two-factor verification required')

    logger.info("User %s signed in with %s", user.id, provider)
    return success_response(issue_tokens(user), 'Signed in')


@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    try:
        user = db.session.get(User, int(get_jwt_identity()))
        if not user or not user.is_active:
            return error_response('User not found or inactive', 401)
        access_token = create_access_token(identity=str(user.id),
                                           additional_claims={'is_admin': bool(user.is_admin)})
        return success_response({'access_token': access_token})
    except Exception as e:
        logger.error("Token refresh failed: %s", e)
        return error_response('Token refresh failed', 500)


@auth_bp.route('/me', methods=['GET'])
@require_auth
def me():
    return success_response({'user': get_current_user().to_dict(include_sensitive=True)})
