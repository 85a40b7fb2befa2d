"""
Access Grant Registry — explicit per-user exceptions on confidential items.

Design decisions:
    - A grant is scoped to the item, not to one marking episode.  It has no
      effect while the item is unmarked and applies again if the item is
      re-marked, until revoked.
    - Granting and revoking require mark authority over the item's
      committee, the same authority needed to mark it.  The committee is
      stored on the grant; revocation checks authority against the stored
      committee and rejects a caller-supplied committee that differs.
    - A grant on a marked item must name the committee the marking was
      placed under.
    - Granting twice is a no-op success returning the active grant
      (created=False).  The partial unique index on active rows settles
      concurrent duplicates; the loser returns the winner's grant.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy.exc import IntegrityError

from reporting_access.models import db
from reporting_access.models.audit import write_audit
from reporting_access.models.confidentiality import (
    MAX_REASON_LENGTH,
    VALID_ITEM_TYPES,
    AccessGrant,
    ConfidentialityMarking,
)
from reporting_access.models.organization import Committee, User
from reporting_access.services.locking import grant_locks
from reporting_access.services.org_hierarchy import OrgHierarchyIndex
from reporting_access.utils.errors import E, domain_error
from reporting_access.utils.helpers import commit_or_rollback

logger = logging.getLogger(__name__)


def _active_grant(item_type: str, item_id: int, user_id: int) -> AccessGrant | None:
    return AccessGrant.query.filter_by(
        item_type=item_type,
        item_id=item_id,
        granted_to_user_id=user_id,
        is_active=True,
    ).first()


def _check_authority(
    by_user_id: int,
    item_committee_id: int | None,
    index: OrgHierarchyIndex | None,
) -> dict | None:
    if item_committee_id is None:
        return domain_error(
            E.ITEM_COMMITTEE_UNRESOLVABLE,
            "The owning committee of this item could not be resolved",
        )
    if db.session.get(Committee, item_committee_id) is None:
        return domain_error(E.NOT_FOUND, "Committee not found")

    index = index or OrgHierarchyIndex.load()
    if not index.has_mark_authority(by_user_id, item_committee_id):
        return domain_error(
            E.AUTHORIZATION_DENIED,
            "You are not allowed to manage access grants for this item",
        )
    return None


# ── Queries ────────────────────────────────────────────────────────────────────


def active_grant_user_ids(item_type: str, item_id: int) -> set[int]:
    rows = (
        db.session.query(AccessGrant.granted_to_user_id)
        .filter_by(item_type=item_type, item_id=item_id, is_active=True)
        .all()
    )
    return {r[0] for r in rows}


def active_grant_user_ids_for(
    item_keys: Iterable[tuple[str, int]],
) -> dict[tuple[str, int], set[int]]:
    """Active grantees for many items in one query."""
    keys = set(item_keys)
    if not keys:
        return {}
    rows = AccessGrant.query.filter(
        AccessGrant.is_active.is_(True),
        AccessGrant.item_type.in_({t for t, _ in keys}),
        AccessGrant.item_id.in_({i for _, i in keys}),
    ).all()
    grantees: dict[tuple[str, int], set[int]] = defaultdict(set)
    for g in rows:
        key = (g.item_type, g.item_id)
        if key in keys:
            grantees[key].add(g.granted_to_user_id)
    return dict(grantees)


def get_access_grants(
    item_type: str,
    item_id: int,
    include_revoked: bool = False,
) -> list[dict]:
    """Grants for an item, oldest first.  ``include_revoked`` returns the full history."""
    q = AccessGrant.query.filter_by(item_type=item_type, item_id=item_id)
    if not include_revoked:
        q = q.filter_by(is_active=True)
    rows = q.order_by(AccessGrant.created_at.asc(), AccessGrant.id.asc()).all()
    return [g.to_dict() for g in rows]


# ── Mutations ──────────────────────────────────────────────────────────────────


def grant_access(
    item_type: str,
    item_id: int,
    item_committee_id: int | None,
    to_user_id: int,
    by_user_id: int,
    reason: str | None = None,
    *,
    index: OrgHierarchyIndex | None = None,
) -> tuple[dict, None] | tuple[None, dict]:
    """Give ``to_user_id`` explicit access to a confidential item.

    Returns:
        (grant_dict, None); ``created`` is False when an active grant existed.
        (None, err) on a domain failure.
    """
    if item_type not in VALID_ITEM_TYPES:
        return None, domain_error(
            E.VALIDATION_INVALID,
            f"Invalid item_type '{item_type}'. "
            f"Must be one of: {', '.join(sorted(VALID_ITEM_TYPES))}",
        )

    reason = (reason or "").strip() or None
    if reason is not None and len(reason) > MAX_REASON_LENGTH:
        return None, domain_error(
            E.VALIDATION_INVALID,
            f"reason must be at most {MAX_REASON_LENGTH} characters",
        )

    if db.session.get(User, by_user_id) is None:
        return None, domain_error(E.NOT_FOUND, "User not found")
    if db.session.get(User, to_user_id) is None:
        return None, domain_error(E.NOT_FOUND, "Target user not found")

    marking = (
        ConfidentialityMarking.query
        .filter_by(item_type=item_type, item_id=item_id, is_active=True)
        .first()
    )
    if (
        marking is not None
        and item_committee_id is not None
        and marking.committee_id != item_committee_id
    ):
        return None, domain_error(
            E.VALIDATION_INVALID,
            "committee_id does not match the committee this item is marked under",
            marked_committee_id=marking.committee_id,
        )

    err = _check_authority(by_user_id, item_committee_id, index)
    if err:
        logger.warning(
            "Grant rejected: %s", err["code"],
            extra={
                "item_type": item_type,
                "item_id": item_id,
                "user_id": by_user_id,
                "event_type": "access_grant.create_denied",
            },
        )
        return None, err

    with grant_locks.hold((item_type, item_id, to_user_id)):
        existing = _active_grant(item_type, item_id, to_user_id)
        if existing is not None:
            return {**existing.to_dict(), "created": False}, None

        grant = AccessGrant(
            item_type=item_type,
            item_id=item_id,
            committee_id=item_committee_id,
            granted_to_user_id=to_user_id,
            granted_by_user_id=by_user_id,
            reason=reason,
            is_active=True,
        )
        db.session.add(grant)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            winner = _active_grant(item_type, item_id, to_user_id)
            if winner is None:
                raise
            return {**winner.to_dict(), "created": False}, None

        write_audit(
            entity_type="access_grant",
            entity_id=grant.id,
            action="access_grant.create",
            actor_user_id=by_user_id,
            diff={
                "item_type": item_type,
                "item_id": item_id,
                "committee_id": item_committee_id,
                "granted_to_user_id": to_user_id,
                "reason": reason,
            },
        )
        commit_or_rollback()

    logger.info(
        "Access granted",
        extra={
            "item_type": item_type,
            "item_id": item_id,
            "user_id": to_user_id,
            "event_type": "access_grant.create",
        },
    )
    return {**grant.to_dict(), "created": True}, None


def revoke_access(
    grant_id: int,
    by_user_id: int,
    item_committee_id: int | None = None,
    *,
    index: OrgHierarchyIndex | None = None,
) -> tuple[dict, None] | tuple[None, dict]:
    """Revoke an active grant.  Unknown or already-revoked grants are NOT_FOUND.

    Authority is checked against the committee stored on the grant.
    ``item_committee_id`` is optional; when given it must match that
    committee, otherwise the call is rejected with VALIDATION_INVALID.
    """
    grant = db.session.get(AccessGrant, grant_id)
    if grant is None or not grant.is_active:
        return None, domain_error(E.NOT_FOUND, "Access grant not found")

    if db.session.get(User, by_user_id) is None:
        return None, domain_error(E.NOT_FOUND, "User not found")

    err = None
    if item_committee_id is not None and item_committee_id != grant.committee_id:
        err = domain_error(
            E.VALIDATION_INVALID,
            "committee_id does not match the committee of the granted item",
        )
    err = err or _check_authority(by_user_id, grant.committee_id, index)
    if err:
        logger.warning(
            "Grant revoke rejected: %s", err["code"],
            extra={
                "item_type": grant.item_type,
                "item_id": grant.item_id,
                "user_id": by_user_id,
                "event_type": "access_grant.revoke_denied",
            },
        )
        return None, err

    with grant_locks.hold((grant.item_type, grant.item_id, grant.granted_to_user_id)):
        db.session.refresh(grant)
        if not grant.is_active:
            return None, domain_error(E.NOT_FOUND, "Access grant not found")

        grant.is_active = False
        grant.revoked_at = datetime.now(timezone.utc)
        grant.revoked_by_user_id = by_user_id

        write_audit(
            entity_type="access_grant",
            entity_id=grant.id,
            action="access_grant.revoke",
            actor_user_id=by_user_id,
            diff={
                "item_type": grant.item_type,
                "item_id": grant.item_id,
                "granted_to_user_id": grant.granted_to_user_id,
                "is_active": {"old": True, "new": False},
            },
        )
        commit_or_rollback()

    logger.info(
        "Access grant revoked",
        extra={
            "item_type": grant.item_type,
            "item_id": grant.item_id,
            "user_id": grant.granted_to_user_id,
            "event_type": "access_grant.revoke",
        },
    )
    return grant.to_dict(), None
