"""
Pytest fixtures for station auth backend tests.

Provides test database setup, identity/station/grant factories, session
manager builders and the Flask test client.
"""

import pytest
from stationauth import create_app
from stationauth.extensions import db
from stationauth.models import Station
from stationauth.roles import Role
from stationauth.services.context import get_services
from stationauth.services.identity_client import IdentityClient
from stationauth.services.role_resolver import RoleResolver
from stationauth.services.session_manager import SessionManager
from stationauth.services.stores import ProfileStore, RoleStore
from stationauth.time_utils import utcnow


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'REQUIRE_EMAIL_CONFIRMATION': True,
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
def provider(db_session):
    return get_services().provider


@pytest.fixture(scope='function')
def workflow(db_session):
    return get_services().workflow


@pytest.fixture(scope='function')
def make_identity(provider):
    """Factory: confirmed identity with the default test password."""
    def _make(email: str, password: str = PASSWORD, **metadata):
        return provider.admin_create_user(
            email=email,
            password=password,
            email_confirm=True,
            user_metadata=metadata,
        )
    return _make


@pytest.fixture(scope='function')
def make_station(db_session):
    def _make(name: str = "Station One", **fields):
        station = Station(name=name, **fields)
        db_session.add(station)
        db_session.commit()
        return station
    return _make


@pytest.fixture(scope='function')
def grant_role(db_session):
    """Factory: insert a grant directly, bypassing the workflow."""
    def _grant(identity, role: Role, station=None, assigned_by=None):
        return RoleStore().insert_grant(
            user_id=identity.id,
            role=role.value,
            station_id=station.id if station is not None else None,
            assigned_by=assigned_by,
            assigned_at=utcnow(),
        )
    return _grant


@pytest.fixture(scope='function')
def station_a(make_station):
    return make_station("Station A", address="1 Main St")


@pytest.fixture(scope='function')
def station_b(make_station):
    return make_station("Station B")


@pytest.fixture(scope='function')
def super_admin(make_identity, grant_role):
    identity = make_identity("root@example.com", full_name="Root Admin")
    grant_role(identity, Role.SUPER_ADMIN)
    return identity


@pytest.fixture(scope='function')
def station_admin_a(make_identity, grant_role, station_a, super_admin):
    identity = make_identity("sa@example.com")
    grant_role(identity, Role.STATION_ADMIN, station_a, assigned_by=super_admin.id)
    return identity


@pytest.fixture(scope='function')
def technician_a(make_identity, grant_role, station_a, super_admin):
    identity = make_identity("tech@example.com")
    grant_role(identity, Role.TECHNICIAN, station_a, assigned_by=super_admin.id)
    return identity


@pytest.fixture(scope='function')
def pending_user(make_identity):
    """Signed-up identity with no grants."""
    return make_identity("new@example.com")


def build_manager(provider, access_token=None, *, role_store=None, profile_store=None, initialize=True):
    """One client context: IdentityClient + SessionManager."""
    client = IdentityClient(provider, access_token)
    manager = SessionManager(
        client,
        RoleResolver(role_store or RoleStore()),
        profile_store or ProfileStore(),
    )
    if initialize:
        manager.initialize()
    return manager


@pytest.fixture(scope='function')
def signed_in(provider):
    """Factory: initialized SessionManager for an identity, via a real token."""
    def _signed_in(identity, password: str = PASSWORD, **kwargs):
        result = provider.sign_in(identity.email, password)
        assert result.ok, result.error
        return build_manager(provider, result.session.access_token, **kwargs)
    return _signed_in


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
