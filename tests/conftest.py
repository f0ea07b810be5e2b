"""
Shared pytest fixtures for the PlanHub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - system_types: The five seeded system plan item types
    - organization / project: Pre-created scope entities
    - org_headers: Organization / actor headers for API calls
"""

import pytest

from planhub import create_app
from planhub.models import db as _db
from planhub.models.organization import Organization, Project
from planhub.models.plan import PlanItemType
from planhub.services.plan_type_registry import seed_system_plan_item_types


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def system_types():
    """Seed and return the system plan item types keyed by slug."""
    seed_system_plan_item_types()
    _db.session.commit()
    types = PlanItemType.query.filter(PlanItemType.organization_id.is_(None)).all()
    return {t.slug: t for t in types}


@pytest.fixture()
def organization():
    org = Organization(name="Acme Rollout", slug="acme")
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def other_organization():
    org = Organization(name="Globex", slug="globex")
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def project(organization, system_types):
    """Active project of ``organization`` with system types seeded."""
    proj = Project(organization_id=organization.id, name="ERP Go-Live")
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def other_project(other_organization, system_types):
    proj = Project(organization_id=other_organization.id, name="Globex Plan")
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def org_headers(organization):
    """Request headers carrying organization and actor context."""
    return {
        "X-Organization-Id": str(organization.id),
        "X-User-Id": "7",
        "X-User-Email": "planner@acme.test",
    }
