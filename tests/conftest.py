"""
Shared pytest fixtures for the Payflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, statuses seeded (autouse)
    - client: Flask test client (function-scoped)
    - make_department / make_site / make_counterparty / make_user: ORM factories
    - set_chain: replace the approval chain from a list of department lists
    - make_request: submit a payment request through the engine
"""

import pytest

from payflow import create_app
from payflow.models import db as _db
from payflow.models.reference import ConstructionSite, Counterparty, Department, User
from payflow.services import approval_engine, stage_config
from payflow.services.status_service import seed_default_statuses


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
        seed_default_statuses()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_department():
    counter = {"n": 0}

    def _make(name=None, code=None, is_procurement=False, is_active=True):
        counter["n"] += 1
        n = counter["n"]
        dept = Department(
            code=code or f"dept-{n}",
            name=name or f"Department {n}",
            is_procurement=is_procurement,
            is_active=is_active,
        )
        _db.session.add(dept)
        _db.session.flush()
        return dept

    return _make


@pytest.fixture()
def make_site():
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        site = ConstructionSite(name=name or f"Site {counter['n']}")
        _db.session.add(site)
        _db.session.flush()
        return site

    return _make


@pytest.fixture()
def make_counterparty():
    counter = {"n": 0}

    def _make(name=None, responsible_manager_id=None):
        counter["n"] += 1
        cp = Counterparty(
            name=name or f"Contractor {counter['n']}",
            inn=f"77{counter['n']:08d}",
            responsible_manager_id=responsible_manager_id,
        )
        _db.session.add(cp)
        _db.session.flush()
        return cp

    return _make


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(role="user", department_id=None, all_sites=False, sites=None, is_active=True, email=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@payflow.test",
            full_name=f"User {counter['n']}",
            role=role,
            department_id=department_id,
            all_sites=all_sites,
            is_active=is_active,
        )
        if sites:
            user.sites = list(sites)
        _db.session.add(user)
        _db.session.flush()
        return user

    return _make


@pytest.fixture()
def set_chain():
    """set_chain([[d1.id], [d2.id, d3.id]]) → stage 1 = d1, stage 2 = d2 ∥ d3."""

    def _set(stages):
        grouped = [
            {"stage_order": i, "department_ids": list(dept_ids)}
            for i, dept_ids in enumerate(stages, start=1)
        ]
        stage_config.replace_stages(grouped)
        _db.session.commit()

    return _set


@pytest.fixture()
def counterparty(make_counterparty):
    cp = make_counterparty()
    _db.session.commit()
    return cp


@pytest.fixture()
def site(make_site):
    s = make_site()
    _db.session.commit()
    return s


@pytest.fixture()
def make_request(counterparty):
    """Submit a payment request through the engine against the current chain."""

    def _make(site_id=None, created_by=None, counterparty_id=None, comment=None, **details):
        data = {"counterparty_id": counterparty_id or counterparty.id, "site_id": site_id, **details}
        if comment:
            data["comment"] = comment
        return approval_engine.submit_request(data, created_by=created_by)

    return _make
