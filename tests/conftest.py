"""
Shared pytest fixtures for the task tracking engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - auth_headers: factory → Authorization header for (user_id, role)
    - headers: member user 1 headers
    - workflows: default workflow catalog seeded
"""

import pytest

from taskhub import create_app
from taskhub.integrations.directory_gateway import directory_gateway
from taskhub.models import db as _db
from taskhub.services.jwt_service import generate_access_token
from taskhub.services.workflow_service import WorkflowCatalog, seed_catalog


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        # Tables are recreated per test and ids are reused; drop the
        # process-wide snapshots keyed by id.
        WorkflowCatalog.invalidate()
        directory_gateway.clear_cache()
        yield
        WorkflowCatalog.invalidate()
        directory_gateway.clear_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def auth_headers():
    """Return a factory building Bearer headers for a user id and role."""

    def _make(user_id=1, role="member"):
        return {"Authorization": f"Bearer {generate_access_token(user_id, role)}"}

    return _make


@pytest.fixture()
def headers(auth_headers):
    """Headers for user 1 with the member role."""
    return auth_headers(1, "member")


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def workflows():
    """Seed the default workflow catalog; return {name: snapshot}."""
    seed_catalog()
    return {wf.name: wf for wf in WorkflowCatalog.all().values()}
