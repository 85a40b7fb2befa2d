"""
Shared pytest fixtures for the Reporting Access Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org: a small committee hierarchy with one user per role

Fixture data is committed, not just flushed: services roll the session
back on conflicts, which would otherwise discard uncommitted setup rows.
"""

from types import SimpleNamespace

import pytest

from reporting_access import create_app
from reporting_access.models import db as _db
from reporting_access.models.organization import (
    MEMBERSHIP_ROLE_HEAD,
    Committee,
    CommitteeMembership,
    User,
)


# ── Builders ─────────────────────────────────────────────────────────────


def make_committee(name: str, parent_id: int | None = None, level: int = 0, **kw) -> int:
    c = Committee(name=name, parent_committee_id=parent_id, hierarchy_level=level, **kw)
    _db.session.add(c)
    _db.session.commit()
    return c.id


def make_user(
    email: str,
    role: str = "member",
    primary_committee_id: int | None = None,
    rank: int | None = None,
    is_active: bool = True,
) -> int:
    u = User(
        email=email,
        full_name=email.split("@")[0].replace(".", " ").title(),
        system_role=role,
        primary_committee_id=primary_committee_id,
        chairman_office_rank=rank,
        is_active=is_active,
    )
    _db.session.add(u)
    _db.session.commit()
    return u.id


def make_head(user_id: int, committee_id: int) -> None:
    _db.session.add(CommitteeMembership(
        user_id=user_id, committee_id=committee_id, role=MEMBERSHIP_ROLE_HEAD,
    ))
    _db.session.commit()


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


# ── Organization fixture ─────────────────────────────────────────────────


@pytest.fixture()
def org():
    """
    Board (L0)
    ├── Directorate A (L1)          head: head_a (explicit membership)
    │   └── Finance A1 (L2)         head: head_a1 (primary-committee fallback)
    │       └── Payroll A1x (L3)
    └── Directorate B (L1)

    Returns ids only; ORM instances would be expired by service rollbacks.
    """
    board = make_committee("Board", level=0)
    dir_a = make_committee("Directorate A", board, level=1)
    fin_a1 = make_committee("Finance A1", dir_a, level=2)
    payroll = make_committee("Payroll A1x", fin_a1, level=3)
    dir_b = make_committee("Directorate B", board, level=1)

    ns = SimpleNamespace(board=board, dir_a=dir_a, fin_a1=fin_a1, payroll=payroll, dir_b=dir_b)

    ns.chairman = make_user("chairman@corp.test", "chairman", board)
    ns.admin = make_user("admin@corp.test", "admin")
    ns.co1 = make_user("co.one@corp.test", "chairman_office", board, rank=1)
    ns.co2 = make_user("co.two@corp.test", "chairman_office", board, rank=2)
    ns.co3 = make_user("co.three@corp.test", "chairman_office", board, rank=3)
    ns.co_unranked = make_user("co.unranked@corp.test", "chairman_office", board)
    ns.head_a = make_user("head.a@corp.test", "committee_head", board)
    make_head(ns.head_a, dir_a)
    ns.head_a1 = make_user("head.a1@corp.test", "committee_head", fin_a1)
    ns.member_a1 = make_user("member.a1@corp.test", "member", fin_a1)
    ns.member_b = make_user("member.b@corp.test", "member", dir_b)
    ns.member_b2 = make_user("member.b2@corp.test", "member", dir_b)
    ns.unassigned = make_user("unassigned@corp.test", "member")
    ns.inactive_a1 = make_user("inactive.a1@corp.test", "member", fin_a1, is_active=False)
    return ns
