"""
Tests for OAuth sign-in, token refresh and the auth decorators.
"""
import json

import pytest
from flask_jwt_extended import create_access_token, create_refresh_token

from narravo import db
from narravo.models.user import User
from narravo.services import oauth_service, two_factor_service
from narravo.services.oauth_service import OAuthError

GITHUB_PROFILE = {
    'email': 'newreader@example.com',
    'name': 'New Reader',
    'image': 'https://avatars.example.com/1.png',
    'provider_account_id': '1001',
}


@pytest.fixture
def providers_configured(app):
    app.config['OAUTH_PROVIDERS'] = {
        'github': {'client_id': 'gh-id', 'client_secret': 'gh-secret'},
        'google': {'client_id': None, 'client_secret': None},
    }


def _start_flow(client, provider='github', state='state-123'):
    with client.session_transaction() as sess:
        sess['oauth_state'] = {'provider': provider, 'state': state}


def test_providers_lists_configured_only(client, providers_configured):
    """Only providers with both credentials are offered."""
    response = client.get('/api/auth/providers')
    assert json.loads(response.data)['data'] == {'providers': ['github']}


def test_login_redirects_and_stores_state(client, providers_configured, monkeypatch):
    monkeypatch.setattr(oauth_service, 'build_authorization_url',
                        lambda provider, redirect_uri: (f'https://github.com/login?redirect={redirect_uri}', 'xyz'))

    response = client.get('/api/auth/login/github')

    assert response.status_code == 302
    assert 'callback/github' in response.headers['Location']
    with client.session_transaction() as sess:
        assert sess['oauth_state'] == {'provider': 'github', 'state': 'xyz'}


def test_login_unconfigured_provider(client):
    response = client.get('/api/auth/login/google')
    assert response.status_code == 400
    assert 'not configured' in json.loads(response.data)['error']


def test_login_unknown_provider(client, providers_configured):
    response = client.get('/api/auth/login/myspace')
    assert response.status_code == 400


def test_callback_creates_user(client, providers_configured, monkeypatch):
    """A successful callback creates the user and returns full tokens."""
    monkeypatch.setattr(oauth_service, 'fetch_profile', lambda *args: dict(GITHUB_PROFILE))
    _start_flow(client)

    response = client.get('/api/auth/callback/github?code=abc&state=state-123')

    assert response.status_code == 200
    data = json.loads(response.data)['data']
    assert data['mfa_required'] is False
    assert 'access_token' in data and 'refresh_token' in data
    assert data['user']['email'] == 'newreader@example.com'
    assert data['user']['is_admin'] is False
    assert User.find_by_email('newreader@example.com').last_login_at is not None


def test_callback_state_is_single_use(client, providers_configured, monkeypatch):
    monkeypatch.setattr(oauth_service, 'fetch_profile', lambda *args: dict(GITHUB_PROFILE))
    _start_flow(client)
    assert client.get('/api/auth/callback/github?code=abc&state=state-123').status_code == 200
    assert client.get('/api/auth/callback/github?code=abc&state=state-123').status_code == 400


@pytest.mark.parametrize('query,provider', [
    ('code=abc&state=wrong', 'github'),
    ('code=abc', 'github'),
    ('code=abc&state=state-123', 'google'),
])
def test_callback_rejects_bad_state(client, providers_configured, query, provider):
    _start_flow(client)
    response = client.get(f'/api/auth/callback/{provider}?{query}')
    assert response.status_code == 400
    assert json.loads(response.data)['error'] == 'Invalid OAuth state'


def test_callback_provider_error(client, providers_configured):
    _start_flow(client)
    response = client.get('/api/auth/callback/github?error=access_denied&state=state-123')
    assert response.status_code == 400
    assert 'access_denied' in json.loads(response.data)['error']


def test_callback_profile_failure(client, providers_configured, monkeypatch):
    def no_email(*args):
        raise OAuthError('Provider did not return an email address')

    monkeypatch.setattr(oauth_service, 'fetch_profile', no_email)
    _start_flow(client)
    response = client.get('/api/auth/callback/github?code=abc&state=state-123')
    assert response.status_code == 400


def test_callback_with_two_factor_returns_pending_token(client, providers_configured, monkeypatch, sample_user):
    user = db.session.get(User, sample_user)
    user.two_factor_enabled = True
    db.session.commit()
    monkeypatch.setattr(oauth_service, 'fetch_profile',
                        lambda *args: dict(GITHUB_PROFILE, email='reader@example.com'))
    _start_flow(client)

    response = client.get('/api/auth/callback/github?code=abc&state=state-123')

    data = json.loads(response.data)['data']
    assert data['mfa_required'] is True
    assert 'access_token' not in data

    pending = {'Authorization': f"Bearer {data['mfa_token']}"}
    response = client.get('/api/auth/me', headers=pending)
    assert response.status_code == 401
    assert json.loads(response.data)['error'] == 'Two-factor verification required'


def test_trusted_device_skips_second_factor(client, providers_configured, monkeypatch, sample_user):
    user = db.session.get(User, sample_user)
    user.two_factor_enabled = True
    db.session.commit()
    token = two_factor_service.create_trusted_device(sample_user, 'pytest', '127.0.0.1')
    monkeypatch.setattr(oauth_service, 'fetch_profile',
                        lambda *args: dict(GITHUB_PROFILE, email='reader@example.com'))
    _start_flow(client)

    response = client.get('/api/auth/callback/github?code=abc&state=state-123',
                          headers={'X-Trusted-Device': token})

    data = json.loads(response.data)['data']
    assert data['mfa_required'] is False
    assert 'access_token' in data


class TestUpsertUser:
    def test_admin_derived_from_allow_list(self, app):
        user = oauth_service.upsert_user('github', dict(GITHUB_PROFILE, email='admin@example.com'))
        assert user.is_admin is True

    def test_existing_user_refreshed(self, app, sample_user):
        user = oauth_service.upsert_user('google', dict(GITHUB_PROFILE, email='reader@example.com',
                                                        name='Renamed'))
        assert user.id == sample_user
        assert user.name == 'Renamed'
        assert user.provider == 'google'

    def test_admin_revoked_when_removed_from_list(self, app, admin_user):
        app.config['ADMIN_EMAILS'] = 'someone-else@example.com'
        user = oauth_service.upsert_user('github', dict(GITHUB_PROFILE, email='admin@example.com'))
        assert user.is_admin is False

    def test_disabled_account(self, app, sample_user):
        user = db.session.get(User, sample_user)
        user.is_active = False
        db.session.commit()
        with pytest.raises(OAuthError, match='disabled'):
            oauth_service.upsert_user('github', dict(GITHUB_PROFILE, email='reader@example.com'))


class TestTokens:
    def test_me(self, client, auth_headers):
        response = client.get('/api/auth/me', headers=auth_headers)
        assert response.status_code == 200
        assert json.loads(response.data)['data']['user']['email'] == 'reader@example.com'

    def test_me_requires_token(self, client):
        assert client.get('/api/auth/me').status_code == 401

    def test_refresh(self, client, sample_user):
        token = create_refresh_token(identity=str(sample_user))
        response = client.post('/api/auth/refresh', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 200
        assert 'access_token' in json.loads(response.data)['data']

    def test_refresh_rejects_access_token(self, client, auth_headers):
        assert client.post('/api/auth/refresh', headers=auth_headers).status_code == 422

    def test_inactive_user_rejected(self, client, sample_user):
        user = db.session.get(User, sample_user)
        user.is_active = False
        db.session.commit()
        headers = {'Authorization': f'Bearer {create_access_token(identity=str(sample_user))}'}
        assert client.get('/api/auth/me', headers=headers).status_code == 404
