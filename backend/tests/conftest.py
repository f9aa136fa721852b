"""
Pytest fixtures for the CRM backend tests.

Provides an in-memory database, users with each role, a client record,
a controllable clock and helpers for authenticated HTTP calls.
"""

from datetime import datetime, timedelta

import pytest

from crm import create_app
from crm.extensions import db
from crm.models import Client, Product, ROLE_ADMIN, ROLE_USER
from crm.services.auth_service import create_user
from crm.services.lifecycle_service import OpportunityLifecycle
from crm.services.opportunity_store import OpportunityStore
from crm.services import session_service


TEST_PASSWORD = "Password123!"
# Low bcrypt cost keeps the suite fast
BCRYPT_TEST_ROUNDS = 4


class FakeClock:
    """Manually advanced UTC clock (naive, like crm.time_utils.utcnow)."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'HISTORY_WRITE_ATTEMPTS': 2,
        'HISTORY_RETRY_BACKOFF': 0.0,
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
    """Fresh data for each test, same schema."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


def _make_user(username: str, role: str):
    return create_user(
        username,
        f"{username}@crm.local",
        TEST_PASSWORD,
        role=role,
        full_name=username.capitalize(),
        rounds=BCRYPT_TEST_ROUNDS,
    )


@pytest.fixture(scope='function')
def owner(db_session):
    """Regular sales user who owns the opportunities created in tests."""
    return _make_user("owner", ROLE_USER)


@pytest.fixture(scope='function')
def other_user(db_session):
    """Regular sales user who owns nothing."""
    return _make_user("other", ROLE_USER)


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user("admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def client_x(db_session):
    c = Client(id="client-x", razon_social="Clínica X S.A.", localidad="Rosario", provincia="Santa Fe")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def ecografo(db_session):
    p = Product(id="prod-eco-1", nombre_equipo="Ecógrafo", marca="Mindray", modelo="DC-40")
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture(scope='function')
def lifecycle(db_session, clock):
    return OpportunityLifecycle(OpportunityStore(), clock=clock, history_attempts=2, history_backoff=0.0)


@pytest.fixture(scope='function')
def opportunity_input(client_x):
    return {
        "client_id": client_x.id,
        "title": "Venta ecógrafo",
        "description": "Demo en sucursal",
    }


@pytest.fixture(scope='function')
def opportunity(lifecycle, owner, opportunity_input):
    """Opportunity owned by `owner`, fresh in state 'nueva'."""
    return lifecycle.create(opportunity_input, owner.id)


def auth_headers(user) -> dict:
    """Authorization header with a fresh session for `user`."""
    _, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(db_session):
    return auth_headers
