"""
Confidentiality Marking Store — per-item mark/unmark timeline.

Design decisions:
    - ConfidentialityMarking is APPEND-ONLY.  Unmark flips is_active and
      stamps revoked_at; rows are never deleted, so the full history of an
      item stays queryable.
    - At most one active marking per item.  A partial unique index makes a
      second concurrent insert fail; the loser rolls back and returns the
      winner's marking, which is exactly what an idempotent mark would
      have returned.
    - Marking an already-marked item is a no-op success (created=False):
      no new row, no audit entry.
    - Only the original marker or an admin may unmark.
    - Every successful mutation and its audit row commit together.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy.exc import IntegrityError

from reporting_access.models import db
from reporting_access.models.audit import write_audit
from reporting_access.models.confidentiality import (
    MAX_REASON_LENGTH,
    VALID_ITEM_TYPES,
    ConfidentialityMarking,
)
from reporting_access.models.organization import Committee, SystemRole, User
from reporting_access.services.locking import marking_locks
from reporting_access.services.org_hierarchy import OrgHierarchyIndex
from reporting_access.utils.errors import E, domain_error
from reporting_access.utils.helpers import commit_or_rollback

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _invalid_item_type(item_type: str) -> dict | None:
    if item_type in VALID_ITEM_TYPES:
        return None
    return domain_error(
        E.VALIDATION_INVALID,
        f"Invalid item_type '{item_type}'. "
        f"Must be one of: {', '.join(sorted(VALID_ITEM_TYPES))}",
    )


def _invalid_reason(reason: str | None) -> dict | None:
    if reason is not None and len(reason) > MAX_REASON_LENGTH:
        return domain_error(
            E.VALIDATION_INVALID,
            f"reason must be at most {MAX_REASON_LENGTH} characters",
        )
    return None


def _active_query(item_type: str, item_id: int):
    return ConfidentialityMarking.query.filter_by(
        item_type=item_type, item_id=item_id, is_active=True,
    )


# ── Public API ─────────────────────────────────────────────────────────────────


def get_active_marking(item_type: str, item_id: int) -> ConfidentialityMarking | None:
    return _active_query(item_type, item_id).first()


def get_active_markings(
    item_keys: Iterable[tuple[str, int]],
) -> dict[tuple[str, int], ConfidentialityMarking]:
    """Active markings for many items in one query, keyed by (item_type, item_id)."""
    keys = set(item_keys)
    if not keys:
        return {}
    types = {t for t, _ in keys}
    ids = {i for _, i in keys}
    rows = ConfidentialityMarking.query.filter(
        ConfidentialityMarking.is_active.is_(True),
        ConfidentialityMarking.item_type.in_(types),
        ConfidentialityMarking.item_id.in_(ids),
    ).all()
    return {
        (m.item_type, m.item_id): m
        for m in rows
        if (m.item_type, m.item_id) in keys
    }


def get_marking_history(item_type: str, item_id: int) -> list[dict]:
    """Every marking episode for the item, oldest first, active and revoked."""
    rows = (
        ConfidentialityMarking.query
        .filter_by(item_type=item_type, item_id=item_id)
        .order_by(ConfidentialityMarking.created_at.asc(), ConfidentialityMarking.id.asc())
        .all()
    )
    return [m.to_dict() for m in rows]


def mark(
    item_type: str,
    item_id: int,
    committee_id: int | None,
    marked_by_user_id: int,
    reason: str | None = None,
    min_chairman_office_rank: int | None = None,
    *,
    index: OrgHierarchyIndex | None = None,
) -> tuple[dict, None] | tuple[None, dict]:
    """Mark an item confidential.

    Preconditions are checked in order: item_type, resolvable owning
    committee, committee exists, marker exists, marker holds mark authority.

    Returns:
        (marking_dict, None) on success; ``created`` is False when an active
        marking already existed and was returned unchanged.
        (None, {"error", "code", "status"}) on a domain failure.
    """
    err = _invalid_item_type(item_type)
    if err:
        return None, err

    if committee_id is None:
        return None, domain_error(
            E.ITEM_COMMITTEE_UNRESOLVABLE,
            "The owning committee of this item could not be resolved",
        )

    reason = (reason or "").strip() or None
    err = _invalid_reason(reason)
    if err:
        return None, err

    if min_chairman_office_rank is not None and min_chairman_office_rank < 0:
        return None, domain_error(
            E.VALIDATION_INVALID, "min_chairman_office_rank must be non-negative",
        )

    committee = db.session.get(Committee, committee_id)
    if committee is None:
        return None, domain_error(E.NOT_FOUND, "Committee not found")

    user = db.session.get(User, marked_by_user_id)
    if user is None:
        return None, domain_error(E.NOT_FOUND, "User not found")

    index = index or OrgHierarchyIndex.load()
    if not index.has_mark_authority(marked_by_user_id, committee_id):
        logger.warning(
            "Mark denied: no mark authority",
            extra={
                "item_type": item_type,
                "item_id": item_id,
                "user_id": marked_by_user_id,
                "event_type": "confidentiality.mark_denied",
            },
        )
        return None, domain_error(
            E.AUTHORIZATION_DENIED,
            "You are not allowed to mark items of this committee as confidential",
        )

    with marking_locks.hold((item_type, item_id)):
        existing = get_active_marking(item_type, item_id)
        if existing is not None:
            return {**existing.to_dict(), "created": False}, None

        marking = ConfidentialityMarking(
            item_type=item_type,
            item_id=item_id,
            committee_id=committee_id,
            committee_level=committee.hierarchy_level,
            marked_by_user_id=marked_by_user_id,
            reason=reason,
            min_chairman_office_rank=min_chairman_office_rank,
            is_active=True,
        )
        db.session.add(marking)
        try:
            db.session.flush()
        except IntegrityError:
            # Another writer committed an active marking first.
            db.session.rollback()
            winner = get_active_marking(item_type, item_id)
            if winner is None:
                raise
            return {**winner.to_dict(), "created": False}, None

        write_audit(
            entity_type="confidentiality_marking",
            entity_id=marking.id,
            action="confidentiality.mark",
            actor_user_id=marked_by_user_id,
            diff={
                "item_type": item_type,
                "item_id": item_id,
                "committee_id": committee_id,
                "min_chairman_office_rank": min_chairman_office_rank,
                "reason": reason,
            },
        )
        commit_or_rollback()

    logger.info(
        "Item marked confidential",
        extra={
            "item_type": item_type,
            "item_id": item_id,
            "user_id": marked_by_user_id,
            "event_type": "confidentiality.mark",
        },
    )
    return {**marking.to_dict(), "created": True}, None


def unmark(
    item_type: str,
    item_id: int,
    requested_by_user_id: int,
) -> tuple[dict, None] | tuple[None, dict]:
    """Remove the active marking of an item.

    Returns:
        (revoked_marking_dict, None) on success.
        (None, err) with NOT_FOUND when nothing is active, or
        AUTHORIZATION_DENIED when the caller is neither marker nor admin.
    """
    err = _invalid_item_type(item_type)
    if err:
        return None, err

    user = db.session.get(User, requested_by_user_id)
    if user is None:
        return None, domain_error(E.NOT_FOUND, "User not found")

    with marking_locks.hold((item_type, item_id)):
        marking = _active_query(item_type, item_id).with_for_update().first()
        if marking is None:
            return None, domain_error(
                E.NOT_FOUND, "No active confidentiality marking for this item",
            )

        is_marker = marking.marked_by_user_id == user.id
        is_admin = user.role is SystemRole.ADMIN
        if not user.is_active or not (is_marker or is_admin):
            logger.warning(
                "Unmark denied",
                extra={
                    "item_type": item_type,
                    "item_id": item_id,
                    "user_id": requested_by_user_id,
                    "event_type": "confidentiality.unmark_denied",
                },
            )
            return None, domain_error(
                E.AUTHORIZATION_DENIED,
                "only the original marker or an administrator may remove this marking",
            )

        marking.is_active = False
        marking.revoked_at = datetime.now(timezone.utc)
        marking.revoked_by_user_id = user.id

        write_audit(
            entity_type="confidentiality_marking",
            entity_id=marking.id,
            action="confidentiality.unmark",
            actor_user_id=user.id,
            diff={
                "item_type": item_type,
                "item_id": item_id,
                "is_active": {"old": True, "new": False},
            },
        )
        commit_or_rollback()

    logger.info(
        "Confidentiality marking removed",
        extra={
            "item_type": item_type,
            "item_id": item_id,
            "user_id": requested_by_user_id,
            "event_type": "confidentiality.unmark",
        },
    )
    return marking.to_dict(), None
