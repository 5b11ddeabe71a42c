"""
Shared pytest fixtures for the workflow engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - clock: FrozenClock pinned to a fixed Monday morning
    - jo_service / mr_service / scrap_service / shipment_service: orchestrators on that clock
    - jo_rules: seeded Job Order approval ladder
"""

from datetime import datetime, timezone

import pytest

from scm_workflow import create_app
from scm_workflow.models import db as _db
from scm_workflow.models.workflow import seed_default_approval_rules
from scm_workflow.services.clock import FrozenClock
from scm_workflow.services.job_order_service import JobOrderService
from scm_workflow.services.material_requisition_service import MaterialRequisitionService
from scm_workflow.services.scrap_service import ScrapService
from scm_workflow.services.shipment_service import ShipmentService

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


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
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


# ── Time & services ──────────────────────────────────────────────────────


@pytest.fixture()
def clock():
    return FrozenClock(T0)


@pytest.fixture()
def jo_service(clock):
    return JobOrderService(clock=clock)


@pytest.fixture()
def mr_service(clock):
    return MaterialRequisitionService(clock=clock)


@pytest.fixture()
def scrap_service(clock):
    return ScrapService(clock=clock)


@pytest.fixture()
def shipment_service(clock):
    return ShipmentService(clock=clock)


@pytest.fixture()
def jo_rules():
    """Standard JO ladder: 0/5k/20k/100k boundaries."""
    rules = seed_default_approval_rules("job_order")
    _db.session.commit()
    return rules
