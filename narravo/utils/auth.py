"""
Authentication utility functions for Narravo
"""

from functools import wraps

from flask import current_app, request
from flask_jwt_extended import (
    jwt_required,
    get_jwt,
    get_jwt_identity,
    create_access_token,
    create_refresh_token,
    verify_jwt_in_request,
)

from narravo import db
from narravo.models.user import User
from narravo.utils.responses import error_response

MFA_PENDING_CLAIM = 'mfa_pending'
TRUSTED_DEVICE_HEADER = 'X-Trusted-Device'
TRUSTED_DEVICE_COOKIE = 'trusted_device'


def get_current_user_id():
    """
    Get the current authenticated user's ID from JWT token.
    Returns None if not authenticated.

    Note: JWT identity is stored as string for PyJWT 2.x compatibility,
    but is converted to int for database queries.
    """
    try:
        identity = get_jwt_identity()
        if identity is None:
            return None
        return int(identity) if isinstance(identity, str) else identity
    except (ValueError, TypeError):
        return None


def get_current_user():
    user_id = get_current_user_id()
    if user_id is None:
        return None
    return db.session.get(User, user_id)


def get_optional_user():
    """The user behind an optional, fully verified token, or None."""
    verify_jwt_in_request(optional=True)
    if get_jwt().get(MFA_PENDING_CLAIM):
        return None
    user = get_current_user()
    return user if user is not None and user.is_active else None


def is_mfa_pending():
    return bool(get_jwt().get(MFA_PENDING_CLAIM))


def _load_active_user():
    user = get_current_user()
    if not user or not user.is_active:
        return None, error_response('User not found or inactive', 404)
    return user, None


def require_auth(f):
    """Decorator to require a fully authenticated user"""
    @wraps(f)
    @jwt_required()
    def decorated_function(*args, **kwargs):
        if is_mfa_pending():
            return error_response('Two-factor verification required', 401)
        user, error = _load_active_user()
        if error:
            return error
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Decorator to require admin privileges for routes"""
    @wraps(f)
    @jwt_required()
    def decorated_function(*args, **kwargs):
        if is_mfa_pending():
            return error_response('Two-factor verification required', 401)
        user, error = _load_active_user()
        if error:
            return error
        if not user.is_admin:
            return error_response('Admin privileges required', 403)
        return f(*args, **kwargs)
    return decorated_function


def mfa_step_allowed(f):
    """Accept both pending (second factor in progress) and full tokens."""
    @wraps(f)
    @jwt_required()
    def decorated_function(*args, **kwargs):
        user, error = _load_active_user()
        if error:
            return error
        return f(*args, **kwargs)
    return decorated_function


def trusted_device_token():
    return request.headers.get(TRUSTED_DEVICE_HEADER) or request.cookies.get(TRUSTED_DEVICE_COOKIE)


def issue_tokens(user):
    """Full access and refresh tokens for a verified user."""
    identity = str(user.id)
    claims = {'is_admin': bool(user.is_admin)}
    return {
        'access_token': create_access_token(identity=identity, additional_claims=claims),
        'refresh_token': create_refresh_token(identity=identity),
        'mfa_required': False,
        'user': user.to_dict(include_sensitive=True),
    }


def issue_mfa_pending_token(user):
    """A short-lived token that only unlocks the second-factor endpoints."""
    token = create_access_token(
        identity=str(user.id),
        additional_claims={MFA_PENDING_CLAIM: True},
        expires_delta=current_app.config['MFA_PENDING_TOKEN_EXPIRES'],
    )
    return {'mfa_token': token, 'mfa_required': True}
