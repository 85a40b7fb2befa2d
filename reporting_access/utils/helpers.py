"""Shared utility functions for services and blueprints.

parse_date_input:   raises ValueError on bad input, blueprints map it to 400
parse_int_input:    same contract for integer ids and ranks
commit_or_rollback: commit the unit of work, roll back and re-raise on failure
utc_today:          the engine's notion of "today"
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from reporting_access.models import db

logger = logging.getLogger(__name__)


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, DD.MM.YYYY, date objects.  Empty input yields None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        try:
            return datetime.strptime(str(value), "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValueError(
                "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
            ) from exc


def parse_int_input(value, field: str):
    """Parse an integer field, raising ValueError with the field name on bad input.

    ``None`` and ``""`` yield None; booleans are rejected.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be an integer") from exc


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


# ── Database commit helper ───────────────────────────────────────────────────

def commit_or_rollback():
    """Commit the current SQLAlchemy session; on failure roll back and re-raise.

    The mutation and its audit row share one session, so either both are
    persisted or neither is.

    Usage::

        write_audit(...)
        commit_or_rollback()

    IntegrityError  → logged at WARNING (constraint race), re-raised
    OperationalError → logged with traceback, re-raised
    Other SQLAlchemyError → logged with traceback, re-raised
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        raise
