"""
Tests: concurrent callers.

Each worker thread runs in its own app context, so it gets its own
session and its own pooled connection.  The shared in-memory database of
the main suite cannot do that, so these tests run against a file-backed
SQLite app built from TestingConfig.
"""

import threading
from datetime import date
from types import SimpleNamespace

import pytest

from reporting_access import create_app
from reporting_access.config import TestingConfig
from reporting_access.models import db as _db
from reporting_access.models.audit import AuditLog
from reporting_access.models.confidentiality import AccessGrant, ConfidentialityMarking
from reporting_access.models.delegation import Delegation
from reporting_access.models.organization import Committee, User
from reporting_access.services import access_grant_service, confidentiality_service
from reporting_access.services import delegation_service
from reporting_access.utils.errors import E

WORKERS = 6


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    monkeypatch.setattr(
        TestingConfig, "SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'access.db'}",
    )
    application = create_app("testing")
    yield application
    with application.app_context():
        _db.session.remove()
        _db.drop_all()
        _db.engine.dispose()


@pytest.fixture()
def small_org(file_app):
    with file_app.app_context():
        board = Committee(name="Board", hierarchy_level=0)
        _db.session.add(board)
        _db.session.flush()
        finance = Committee(name="Finance", parent_committee_id=board.id, hierarchy_level=1)
        _db.session.add(finance)
        _db.session.flush()

        def user(email, role, committee_id=None):
            u = User(
                email=email,
                full_name=email.split("@")[0].title(),
                system_role=role,
                primary_committee_id=committee_id,
            )
            _db.session.add(u)
            _db.session.flush()
            return u.id

        ns = SimpleNamespace(
            board=board.id,
            finance=finance.id,
            admin=user("admin@corp.test", "admin"),
            head=user("head@corp.test", "committee_head", finance.id),
            member=user("member@corp.test", "member", finance.id),
            other=user("other@corp.test", "member", board.id),
        )
        _db.session.commit()
    return ns


def _run_together(app, calls):
    """Start every call at once, each in a thread with its own app context."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)
    errors = []

    def worker(i, fn):
        with app.app_context():
            barrier.wait()
            try:
                results[i] = fn()
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    return results


class TestConcurrentMarking:
    def test_one_active_marking_and_losers_return_it(self, file_app, small_org):
        calls = [
            lambda: confidentiality_service.mark(
                "report", 7, small_org.finance, small_org.admin, reason="Board pack",
            )
            for _ in range(WORKERS)
        ]
        results = _run_together(file_app, calls)

        assert all(err is None for _, err in results)
        created = [m for m, _ in results if m["created"]]
        assert len(created) == 1
        assert {m["id"] for m, _ in results} == {created[0]["id"]}

        with file_app.app_context():
            assert ConfidentialityMarking.query.filter_by(
                item_type="report", item_id=7, is_active=True,
            ).count() == 1
            assert AuditLog.query.filter_by(action="confidentiality.mark").count() == 1

    def test_concurrent_unmarks_succeed_once(self, file_app, small_org):
        with file_app.app_context():
            confidentiality_service.mark("report", 7, small_org.finance, small_org.admin)

        calls = [
            lambda: confidentiality_service.unmark("report", 7, small_org.admin)
            for _ in range(WORKERS)
        ]
        results = _run_together(file_app, calls)

        succeeded = [m for m, err in results if err is None]
        assert len(succeeded) == 1
        assert all(err["code"] == E.NOT_FOUND for _, err in results if err is not None)

        with file_app.app_context():
            assert AuditLog.query.filter_by(action="confidentiality.unmark").count() == 1


class TestConcurrentGrants:
    def test_duplicate_grants_collapse_to_one(self, file_app, small_org):
        calls = [
            lambda: access_grant_service.grant_access(
                "report", 7, small_org.finance, small_org.other, small_org.head,
            )
            for _ in range(WORKERS)
        ]
        results = _run_together(file_app, calls)

        assert all(err is None for _, err in results)
        assert sum(1 for g, _ in results if g["created"]) == 1
        assert len({g["id"] for g, _ in results}) == 1

        with file_app.app_context():
            assert AccessGrant.query.filter_by(is_active=True).count() == 1


class TestConcurrentDelegations:
    def test_overlapping_creates_admit_exactly_one(self, file_app, small_org):
        calls = [
            lambda: delegation_service.create_delegation(
                small_org.head, small_org.member, "full", date(2026, 3, 1), date(2026, 3, 10),
            ),
            lambda: delegation_service.create_delegation(
                small_org.head, small_org.other, "reporting_only", date(2026, 3, 5), date(2026, 3, 15),
            ),
        ]
        results = _run_together(file_app, calls)

        succeeded = [d for d, err in results if err is None]
        rejected = [err for _, err in results if err is not None]
        assert len(succeeded) == 1
        assert len(rejected) == 1
        assert rejected[0]["code"] == E.OVERLAPPING_DELEGATION
        assert rejected[0]["details"]["conflicting_delegation_id"] == succeeded[0]["id"]

        with file_app.app_context():
            assert Delegation.query.filter_by(
                delegator_id=small_org.head, is_active=True,
            ).count() == 1
            assert AuditLog.query.filter_by(action="delegation.create").count() == 1

    def test_concurrent_revokes_succeed_once(self, file_app, small_org):
        with file_app.app_context():
            d, err = delegation_service.create_delegation(
                small_org.head, small_org.member, "full", date(2026, 3, 1), date(2026, 3, 10),
            )
            assert err is None

        calls = [
            lambda: delegation_service.revoke_delegation(d["id"], small_org.head)
            for _ in range(WORKERS)
        ]
        results = _run_together(file_app, calls)

        assert sum(1 for _, err in results if err is None) == 1
        assert all(err["code"] == E.NOT_FOUND for _, err in results if err is not None)

        with file_app.app_context():
            assert AuditLog.query.filter_by(action="delegation.revoke").count() == 1
