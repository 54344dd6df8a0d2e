"""
Shared pytest fixtures for the Loan Query Desk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - originator / sales_user / credit_user / authority / otc_authority / admin:
      directory users, returned as Actor values
    - make_query: factory for pending queries
"""

import pytest

from querydesk import create_app
from querydesk.models import db as _db
from querydesk.models.user import User
from querydesk.services import query_service
from querydesk.services.visibility import Actor


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Directory users ──────────────────────────────────────────────────────


def make_user(employee_id: str, full_name: str, role: str, permissions=None) -> Actor:
    user = User(employee_id=employee_id, full_name=full_name, role=role, permissions=permissions)
    _db.session.add(user)
    _db.session.flush()
    return Actor.from_user(user)


@pytest.fixture()
def originator():
    return make_user("OPS001", "Operations", "originator")


@pytest.fixture()
def sales_user():
    return make_user("SAL001", "Ravi Kumar", "sales")


@pytest.fixture()
def credit_user():
    return make_user("CRD001", "Neha Singh", "credit")


@pytest.fixture()
def authority():
    return make_user("MGT001", "Jane Doe", "authority")


@pytest.fixture()
def otc_authority():
    return make_user("MGT002", "Vikram Rao", "authority", permissions=["approve_otc_queries"])


@pytest.fixture()
def admin():
    return make_user("ADM001", "Platform Admin", "admin")


# ── Queries ──────────────────────────────────────────────────────────────


@pytest.fixture()
def make_query():
    """Factory: ``make_query(app_no="GGN001", items=["..."], team="both")``."""

    def _make(app_no="GGN001", items=("Upload latest salary slips",), team="both",
              branch_code="GGN", submitted_by="Operations"):
        return query_service.create_query(
            app_no,
            list(items),
            submitted_by=submitted_by,
            customer_name="Rahul Mehta",
            branch="Gurugram",
            branch_code=branch_code,
            marked_for_team=team,
        )

    return _make
