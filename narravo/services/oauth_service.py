"""
OAuth sign-in with GitHub and Google via requests-oauthlib.

The provider returns the user to ``/api/auth/callback/<provider>``; the
profile's email is the account key, and admin status is re-derived from
ADMIN_EMAILS on every login.
"""

import logging

from flask import current_app
from requests_oauthlib import OAuth2Session

from narravo import db
from narravo.models.user import User
from narravo.services.user_admin_service import is_admin_email
from narravo.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

PROVIDERS = {
    'github': {
        'authorize_url': 'https://github.com/login/oauth/authorize',
        'token_url': 'https://github.com/login/oauth/access_token',
        'userinfo_url': 'https://api.github.com/user',
        'emails_url': 'https://api.github.com/user/emails',
        'scope': ['read:user', 'user:email'],
    },
    'google': {
        'authorize_url': 'https://accounts.google.com/o/oauth2/auth',
        'token_url': 'https://oauth2.googleapis.com/token',
        'userinfo_url': 'https://www.googleapis.com/oauth2/v2/userinfo',
        'scope': ['openid', 'email', 'profile'],
    },
}


class OAuthError(Exception):
    pass


def provider_credentials(provider):
    if provider not in PROVIDERS:
        raise OAuthError(f'Unknown provider: {provider}')
    creds = (current_app.config.get('OAUTH_PROVIDERS') or {}).get(provider) or {}
    if not creds.get('client_id') or not creds.get('client_secret'):
        raise OAuthError(f'Provider not configured: {provider}')
    return creds


def enabled_providers():
    configured = current_app.config.get('OAUTH_PROVIDERS') or {}
    return [name for name in PROVIDERS
            if configured.get(name, {}).get('client_id') and configured.get(name, {}).get('client_secret')]


def build_authorization_url(provider, redirect_uri):
    """Return ``(authorization_url, state)``; the caller keeps the state in the session."""
    creds = provider_credentials(provider)
    endpoints = PROVIDERS[provider]
    oauth = OAuth2Session(creds['client_id'], scope=endpoints['scope'], redirect_uri=redirect_uri)
    return oauth.authorization_url(endpoints['authorize_url'])


def _github_profile(oauth, endpoints):
    info = oauth.get(endpoints['userinfo_url']).json()
    email = info.get('email')
    if not email:
        emails = oauth.get(endpoints['emails_url']).json() or []
        primary = [e for e in emails if e.get('primary') and e.get('verified')]
        email = primary[0]['email'] if primary else None
    return {
        'email': email,
        'name': info.get('name') or info.get('login'),
        'image': info.get('avatar_url'),
        'provider_account_id': str(info.get('id')) if info.get('id') is not None else None,
    }


def _google_profile(oauth, endpoints):
    info = oauth.get(endpoints['userinfo_url']).json()
    return {
        'email': info.get('email'),
        'name': info.get('name'),
        'image': info.get('picture'),
        'provider_account_id': info.get('id'),
    }


def fetch_profile(provider, redirect_uri, state, authorization_response):
    """Exchange the authorization code and read the user's profile."""
    creds = provider_credentials(provider)
    endpoints = PROVIDERS[provider]
    oauth = OAuth2Session(creds['client_id'], state=state, redirect_uri=redirect_uri)
    oauth.fetch_token(
        endpoints['token_url'],
        client_secret=creds['client_secret'],
        authorization_response=authorization_response,
    )
    profile = _github_profile(oauth, endpoints) if provider == 'github' else _google_profile(oauth, endpoints)
    if not profile.get('email'):
        raise OAuthError('Provider did not return an email address')
    return profile


def upsert_user(provider, profile):
    """Create or refresh the user for a provider profile."""
    user = User.find_by_email(profile['email'])
    if user is None:
        user = User(
            email=profile['email'],
            name=profile.get('name'),
            image=profile.get('image'),
            provider=provider,
            provider_account_id=profile.get('provider_account_id'),
        )
        db.session.add(user)
        logger.info("New user from %s: %s", provider, user.email)
    else:
        user.name = profile.get('name') or user.name
        user.image = profile.get('image') or user.image
        user.provider = provider
        user.provider_account_id = profile.get('provider_account_id') or user.provider_account_id

    if user.is_active is False:
        db.session.rollback()
        raise OAuthError('Account is disabled')

    user.is_admin = is_admin_email(user.email)
    user.last_login_at = utc_now()
    db.session.commit()
    return user
