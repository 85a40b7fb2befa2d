"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database and the committee hierarchy and logs a summary banner.
A broken or cyclic committee chain is reported loudly: every access
decision touching that chain will fail until the directory is fixed.
"""

import logging
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from reporting_access.core.exceptions import HierarchyIntegrityError
from reporting_access.models import db
from reporting_access.services.org_hierarchy import OrgHierarchyIndex

logger = logging.getLogger(__name__)


def check_hierarchy() -> str | None:
    """Return a description of the first hierarchy integrity error, or None."""
    try:
        OrgHierarchyIndex.load().validate()
    except HierarchyIntegrityError as exc:
        return str(exc)
    return None


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except SQLAlchemyError as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")

        # ── Table count ──────────────────────────────────────────────
        table_count = "?"
        if db_status == "ok":
            tables = sa_inspect(db.engine).get_table_names()
            table_count = len(tables)
            if "committees" not in tables:
                issues.append("Engine tables missing — run 'flask db upgrade'")

        # ── Committee hierarchy ──────────────────────────────────────
        hierarchy_status = "skipped"
        if app.config.get("HIERARCHY_CHECK_ON_STARTUP") and not issues:
            problem = check_hierarchy()
            hierarchy_status = "ok" if problem is None else "BROKEN"
            if problem:
                issues.append(f"Committee hierarchy integrity error: {problem}")

        # ── Banner ───────────────────────────────────────────────────
        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Reporting Access Engine — Startup Diagnostics               ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f"{db_type} ({db_status})":<46s}║
║  Tables      : {str(table_count):<46s}║
║  Hierarchy   : {hierarchy_status:<46s}║
║  Rate limit  : {app.config.get("RATELIMIT_STORAGE_URI", "memory://"):<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
