"""
Tests: configuration guards, hierarchy diagnostics and CLI commands.
"""

from datetime import date, timedelta

import pytest

from reporting_access.config import ProductionConfig, _database_url
from reporting_access.middleware.diagnostics import check_hierarchy
from reporting_access.models import db as _db
from reporting_access.models.delegation import Delegation
from reporting_access.models.organization import Committee
from reporting_access.services import delegation_service


def test_production_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        ProductionConfig()


def test_production_requires_secret_key(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://db/engine")
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        ProductionConfig()


def test_postgres_scheme_is_rewritten(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://u:p@host/db")
    assert _database_url() == "postgresql://u:p@host/db"


def test_check_hierarchy_clean(org):
    assert check_hierarchy() is None


def test_check_hierarchy_reports_cycle(org):
    _db.session.get(Committee, org.board).parent_committee_id = org.fin_a1
    _db.session.commit()
    problem = check_hierarchy()
    assert problem is not None
    assert "cycle" in problem


def test_check_hierarchy_command(app, org):
    runner = app.test_cli_runner()
    assert runner.invoke(args=["check-hierarchy"]).exit_code == 0

    _db.session.get(Committee, org.board).parent_committee_id = org.payroll
    _db.session.commit()
    assert runner.invoke(args=["check-hierarchy"]).exit_code == 1


def test_expire_delegations_command(app, org):
    today = date.today()
    d, _ = delegation_service.create_delegation(
        org.head_a, org.member_b, "full", today - timedelta(days=10), today - timedelta(days=2),
    )
    result = app.test_cli_runner().invoke(args=["expire-delegations"])
    assert result.exit_code == 0
    _db.session.expire_all()
    assert _db.session.get(Delegation, d["id"]).is_active is False
