"""
AUTHENTICATION TESTS
Tests for registration, login, bearer tokens and profile management.

This test module covers:
- Operator registration with validation
- Login with correct/incorrect credentials
- Token verification: missing, malformed, tampered and expired tokens
- Disabled accounts losing access immediately
- Profile edits and password changes

Test fixtures:
- app: Creates test Flask application with in-memory SQLite database
- client: Provides test client for making HTTP requests
"""

import pytest

from app import create_app, db
from models import INACTIVE, User
from seed import seed_admin


@pytest.fixture
def app():
    """
    Create and configure test Flask application.

    Uses in-memory SQLite database for isolation between tests.
    The default administrator is seeded from ADMIN_USERNAME/ADMIN_PASSWORD.
    """
    app = create_app({
        'TESTING': True,  # Enable Flask testing mode
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',  # In-memory database for speed and isolation
        'SECRET_KEY': 'test-secret',  # Fixed secret for consistent token signing
        'ADMIN_USERNAME': 'admin',
        'ADMIN_PASSWORD': 'admin-pass',
    })

    with app.app_context():
        db.create_all()
        yield app


@pytest.fixture
def client(app):
    """
    Create test client for making HTTP requests to the application.
    """
    return app.test_client()


def login(client, username, password):
    return client.post('/api/v1/auth/login', json={'username': username, 'password': password})


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


def test_signup_and_login(client):
    """
    Test complete authentication flow: register → login → profile.
    """
    # *** TEST USER REGISTRATION ***
    resp = client.post('/api/v1/auth/register', json={
        'username': 'alice', 'password': 'wonderland', 'real_name': 'Alice Liddell',
    })
    assert resp.status_code == 201
    user = resp.get_json()['data']
    assert user['role'] == 'operator'
    assert 'password_hash' not in user

    # *** TEST SUCCESSFUL LOGIN ***
    resp = login(client, 'alice', 'wonderland')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['code'] == 200
    assert body['data']['user']['username'] == 'alice'

    # *** TEST TOKEN GRANTS ACCESS ***
    resp = client.get('/api/v1/auth/profile', headers=bearer(body['data']['token']))
    assert resp.status_code == 200
    assert resp.get_json()['data']['real_name'] == 'Alice Liddell'


def test_default_admin_is_seeded(client, app):
    resp = login(client, 'admin', 'admin-pass')
    assert resp.status_code == 200
    assert resp.get_json()['data']['user']['role'] == 'admin'

    # Seeding only happens while the user table is empty
    assert seed_admin('other', 'other-pass', app.logger) is None
    assert User.query.count() == 1


def test_login_failures(client):
    resp = login(client, 'admin', 'wrong')
    assert resp.status_code == 401
    assert resp.get_json()['message'] == 'Invalid username or password'

    assert login(client, 'nobody', 'whatever').status_code == 401
    assert client.post('/api/v1/auth/login', json={'username': 'admin'}).status_code == 400


@pytest.mark.parametrize('payload', [
    {'username': 'al', 'password': 'long-enough'},
    {'username': 'alice', 'password': 'short'},
    {'password': 'long-enough'},
])
def test_register_validation(client, payload):
    assert client.post('/api/v1/auth/register', json=payload).status_code == 400


def test_register_duplicate_username(client):
    resp = client.post('/api/v1/auth/register', json={'username': 'admin', 'password': 'another'})
    assert resp.status_code == 409
    assert resp.get_json()['message'] == 'Username already exists'


def test_protected_routes_reject_bad_tokens(client):
    assert client.get('/api/v1/auth/profile').status_code == 401

    resp = client.get('/api/v1/auth/profile', headers={'Authorization': 'Token abc'})
    assert resp.status_code == 401

    token = login(client, 'admin', 'admin-pass').get_json()['data']['token']
    resp = client.get('/api/v1/auth/profile', headers=bearer(token + 'x'))
    assert resp.status_code == 401
    assert resp.get_json()['message'] == 'Token is invalid'


def test_expired_token(client, app):
    token = login(client, 'admin', 'admin-pass').get_json()['data']['token']
    app.config['TOKEN_MAX_AGE'] = -1

    resp = client.get('/api/v1/auth/profile', headers=bearer(token))
    assert resp.status_code == 401
    assert resp.get_json()['message'] == 'Token has expired'


def test_disabled_user_loses_access(client):
    client.post('/api/v1/auth/register', json={'username': 'bob', 'password': 'builder'})
    token = login(client, 'bob', 'builder').get_json()['data']['token']

    User.query.filter_by(username='bob').first().status = INACTIVE
    db.session.commit()

    resp = client.get('/api/v1/auth/profile', headers=bearer(token))
    assert resp.status_code == 401
    assert resp.get_json()['message'] == 'Account is disabled'
    assert login(client, 'bob', 'builder').status_code == 401


def test_update_profile(client):
    token = login(client, 'admin', 'admin-pass').get_json()['data']['token']

    resp = client.put('/api/v1/auth/profile', headers=bearer(token), json={
        'email': 'admin@example.com', 'real_name': 'Store Manager', 'phone': '555-0199',
    })
    assert resp.status_code == 200
    data = resp.get_json()['data']
    assert data['email'] == 'admin@example.com'
    assert data['real_name'] == 'Store Manager'


def test_change_password(client):
    token = login(client, 'admin', 'admin-pass').get_json()['data']['token']

    resp = client.put('/api/v1/auth/change-password', headers=bearer(token),
                      json={'old_password': 'nope', 'new_password': 'fresh-pass'})
    assert resp.status_code == 400

    resp = client.put('/api/v1/auth/change-password', headers=bearer(token),
                      json={'old_password': 'admin-pass', 'new_password': 'fresh-pass'})
    assert resp.status_code == 200

    assert login(client, 'admin', 'admin-pass').status_code == 401
    assert login(client, 'admin', 'fresh-pass').status_code == 200
