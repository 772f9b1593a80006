"""
Pytest fixtures for the car parts backend tests.

Provides the in-memory application, per-test table cleanup, users for each
role, bearer-token helpers and a part factory.
"""

import pytest

from carparts import create_app
from carparts.extensions import db
from carparts.models import User
from carparts.roles import ADMIN, GENERAL, SUPERADMIN
from carparts.services import parts_service
from carparts.services.auth_service import hash_password

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory for users with the shared test password."""
    def _make_user(username: str, role: str = GENERAL, is_active: bool = True) -> User:
        user = User(
            username=username,
            password_hash=hash_password(PASSWORD),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make_user


@pytest.fixture(scope='function')
def general_user(make_user):
    return make_user("clerk", GENERAL)


@pytest.fixture(scope='function')
def admin_user(make_user):
    return make_user("manager", ADMIN)


@pytest.fixture(scope='function')
def superadmin_user(make_user):
    return make_user("owner", SUPERADMIN)


@pytest.fixture(scope='function')
def make_part(db_session, superadmin_user):
    """Factory for parts registered through the parts service."""
    counter = {"n": 0}

    def _make_part(**overrides):
        counter["n"] += 1
        payload = {
            "name": f"Part {counter['n']}",
            "manufacturer": "Bosch",
            "total_stock": 5,
            "recommended_price_cents": 1000,
        }
        payload.update(overrides)
        return parts_service.create_part(payload, actor=superadmin_user)
    return _make_part


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def general_headers(client, general_user):
    return auth_headers(get_auth_token(client, general_user.username))


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def superadmin_headers(client, superadmin_user):
    return auth_headers(get_auth_token(client, superadmin_user.username))
