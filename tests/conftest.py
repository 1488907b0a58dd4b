"""
Pytest configuration for Narravo tests.
Sets up the test environment before importing the app.
"""
import os
import secrets
from datetime import timedelta

import pytest

# Set test environment variables BEFORE importing the app
os.environ['FLASK_ENV'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
# Prefix with 'test-' so a leaked value is recognisable
os.environ['SECRET_KEY'] = f'test-{secrets.token_hex(32)}'
os.environ['JWT_SECRET_KEY'] = f'test-{secrets.token_hex(32)}'

from narravo import create_app, db
from narravo.models.user import User
from narravo.services import post_service
from narravo.utils.datetime_utils import utc_now


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create and configure a new app instance for each test."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_LOG_ROUNDS': 4,
        'CACHE_TYPE': 'NullCache',
        'RATELIMIT_ENABLED': False,
        'ADMIN_EMAILS': 'admin@example.com',
        'ANALYTICS_IP_SALT': 'test-salt',
        'UPLOADS_DIR': str(tmp_path / 'uploads'),
        'SITE_URL': 'https://blog.example.com',
        'SITE_NAME': 'Narravo Test',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test CLI runner for the app."""
    return app.test_cli_runner()


def _make_user(email, name, is_admin=False):
    user = User(email=email, name=name, provider='github', provider_account_id=email)
    user.is_active = True
    user.is_admin = is_admin
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture
def sample_user(app):
    """A regular reader; returns the id."""
    return _make_user('reader@example.com', 'Reader')


@pytest.fixture
def other_user(app):
    return _make_user('other@example.com', 'Other')


@pytest.fixture
def admin_user(app):
    return _make_user('admin@example.com', 'Admin', is_admin=True)


def _headers(user_id):
    from flask_jwt_extended import create_access_token
    # PyJWT 2.x requires string identity
    return {'Authorization': f'Bearer {create_access_token(identity=str(user_id))}'}


@pytest.fixture
def auth_headers(app, sample_user):
    """Get authentication headers for API requests."""
    return _headers(sample_user)


@pytest.fixture
def other_headers(app, other_user):
    return _headers(other_user)


@pytest.fixture
def admin_headers(app, admin_user):
    return _headers(admin_user)


@pytest.fixture
def published_post(app, admin_user):
    """A post published an hour ago; returns the id."""
    post = post_service.create_post(
        title='Hello World',
        body_md='# Hello\n\nThis is the first post on the blog, with enough words to make an excerpt.',
        published_at=utc_now() - timedelta(hours=1),
        tags=['Python', 'Flask'],
        category_name='Engineering',
        author_id=admin_user,
    )
    return post.id


@pytest.fixture
def draft_post(app, admin_user):
    post = post_service.create_post(
        title='Unfinished Thoughts',
        body_md='Not ready yet.',
        author_id=admin_user,
    )
    return post.id
