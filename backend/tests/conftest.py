"""
Pytest fixtures for Stockline backend tests.

Provides the test app (in-memory remote database and local cache, no
background sync thread), per-test cleanup of both storage tiers, and
registered tenants with bearer tokens.
"""

import pytest

from stockline import create_app
from stockline.extensions import db, get_data_adapter, get_local_store, get_sync_manager
from stockline.services import auth_service
from stockline.services.data_adapter import DataAdapter


DEFAULT_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LOCAL_CACHE_URL': 'sqlite:///:memory:',
        'SYNC_AUTOSTART': False,
        'LOG_DIR': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Minimum bcrypt cost; hashing at cost 12 dominates test time otherwise."""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh remote tables, local cache and sync state for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        get_local_store().clear()
        manager = get_sync_manager()
        if not manager.online:
            manager.set_online(True)

        yield db.session

        # Cleanup after test
        db.session.rollback()


def register(client, username: str, email: str, store_name: str, password: str = DEFAULT_PASSWORD, **extra):
    """Register a tenant through the API and return the response."""
    return client.post('/api/auth/register', json={
        'username': username,
        'email': email,
        'password': password,
        'store_name': store_name,
        **extra,
    })


def get_auth_token(client, username: str, password: str = DEFAULT_PASSWORD) -> str:
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


def _tenant(client, username, email, store_name, **extra) -> dict:
    response = register(client, username, email, store_name, **extra)
    assert response.status_code == 201, response.json
    token = get_auth_token(client, username)
    assert token
    return {
        "user": response.json["user"],
        "store": response.json["store"],
        "store_id": response.json["store"]["id"],
        "token": token,
        "headers": auth_headers(token),
    }


@pytest.fixture(scope='function')
def tenant_a(client):
    """Owner of Store A (basic tier)."""
    return _tenant(client, "owner_a", "owner_a@acme.com", "Store A - Acme", subscription_tier="basic")


@pytest.fixture(scope='function')
def tenant_b(client):
    """Owner of Store B (free tier)."""
    return _tenant(client, "owner_b", "owner_b@beta.com", "Store B - Beta")


@pytest.fixture(scope='function')
def developer(client):
    """Cross-tenant developer account (no store)."""
    user = auth_service.create_developer(
        get_data_adapter(), username="dev", email="dev@stockline.local", password=DEFAULT_PASSWORD
    )
    get_sync_manager().sync_now()
    token = get_auth_token(client, "dev")
    assert token
    return {"user": user, "token": token, "headers": auth_headers(token)}


def make_adapter(app, principal: dict | None) -> DataAdapter:
    """A data adapter over the app's storage tiers, acting as `principal`."""
    base = app.extensions["stockline.data_adapter"]
    return DataAdapter(
        base.local_store,
        base.remote,
        queued_tables=base.queued_tables,
        notifications=base.notifications,
        principal_resolver=lambda: principal,
    )


@pytest.fixture(scope='function')
def adapter_a(app, tenant_a):
    return make_adapter(app, tenant_a["user"])


@pytest.fixture(scope='function')
def adapter_b(app, tenant_b):
    return make_adapter(app, tenant_b["user"])
