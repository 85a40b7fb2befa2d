"""
Delegation Registry — time-bounded transfer of one user's authority to another.

Intervals are half-open ``[start_date, end_date)``.  Among one delegator's
active delegations no two intervals overlap.  The overlap check and the
insert run while holding the delegator's lock (in-process KeyedLock plus a
row lock on the delegator's user row), so two concurrent creators cannot
both pass the check.

Validation order for create:
    SELF_DELEGATION → INVALID_INTERVAL → scope → users exist → OVERLAPPING_DELEGATION
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from reporting_access.models import db
from reporting_access.models.audit import write_audit
from reporting_access.models.delegation import VALID_SCOPES, Delegation
from reporting_access.models.organization import SystemRole, User
from reporting_access.services.locking import delegator_locks
from reporting_access.utils.errors import E, domain_error
from reporting_access.utils.helpers import commit_or_rollback, utc_today

logger = logging.getLogger(__name__)


def _effective_query(delegate_id: int, as_of: date):
    return (
        Delegation.query
        .filter(
            Delegation.delegate_id == delegate_id,
            Delegation.is_active.is_(True),
            Delegation.start_date <= as_of,
            Delegation.end_date > as_of,
        )
        .order_by(Delegation.created_at.asc(), Delegation.id.asc())
    )


# ── Queries ────────────────────────────────────────────────────────────────────


def active_delegation_for(delegate_id: int, as_of: date | None = None) -> Delegation | None:
    """The delegation in effect for ``delegate_id`` on ``as_of`` (default: today).

    When several delegators delegate to the same user at once, the
    earliest-created delegation wins.
    """
    return _effective_query(delegate_id, as_of or utc_today()).first()


def active_delegations_for(delegate_id: int, as_of: date | None = None) -> list[Delegation]:
    return _effective_query(delegate_id, as_of or utc_today()).all()


def effective_delegations_by_delegate(as_of: date | None = None) -> dict[int, Delegation]:
    """``active_delegation_for`` for every delegate at once."""
    as_of = as_of or utc_today()
    rows = (
        Delegation.query
        .filter(
            Delegation.is_active.is_(True),
            Delegation.start_date <= as_of,
            Delegation.end_date > as_of,
        )
        .order_by(Delegation.created_at.asc(), Delegation.id.asc())
        .all()
    )
    by_delegate: dict[int, Delegation] = {}
    for d in rows:
        by_delegate.setdefault(d.delegate_id, d)
    return by_delegate


def list_delegations(
    delegator_id: int | None = None,
    delegate_id: int | None = None,
    include_inactive: bool = False,
) -> list[dict]:
    q = Delegation.query
    if delegator_id is not None:
        q = q.filter(Delegation.delegator_id == delegator_id)
    if delegate_id is not None:
        q = q.filter(Delegation.delegate_id == delegate_id)
    if not include_inactive:
        q = q.filter(Delegation.is_active.is_(True))
    rows = q.order_by(Delegation.start_date.asc(), Delegation.id.asc()).all()
    return [d.to_dict() for d in rows]


# ── Mutations ──────────────────────────────────────────────────────────────────


def create_delegation(
    delegator_id: int,
    delegate_id: int,
    scope: str,
    start_date: date | None,
    end_date: date | None,
    reason: str | None = None,
    created_by_user_id: int | None = None,
) -> tuple[dict, None] | tuple[None, dict]:
    """Create a delegation from ``delegator_id`` to ``delegate_id``.

    ``created_by_user_id`` defaults to the delegator; anyone else must be
    an admin.

    Returns:
        (delegation_dict, None) on success.
        (None, err) on a domain failure.
    """
    if delegator_id == delegate_id:
        return None, domain_error(E.SELF_DELEGATION, "You cannot delegate to yourself")

    if start_date is None or end_date is None:
        return None, domain_error(
            E.VALIDATION_REQUIRED, "start_date and end_date are required",
        )
    if end_date <= start_date:
        return None, domain_error(E.INVALID_INTERVAL, "end_date must be after start_date")

    if scope not in VALID_SCOPES:
        return None, domain_error(
            E.VALIDATION_INVALID,
            f"Invalid scope '{scope}'. Must be one of: {', '.join(sorted(VALID_SCOPES))}",
        )

    reason = (reason or "").strip() or None
    if reason is not None and len(reason) > 500:
        return None, domain_error(E.VALIDATION_INVALID, "reason must be at most 500 characters")

    delegator = db.session.get(User, delegator_id)
    if delegator is None:
        return None, domain_error(E.NOT_FOUND, "Delegator not found")
    if db.session.get(User, delegate_id) is None:
        return None, domain_error(E.NOT_FOUND, "Delegate not found")

    actor_id = created_by_user_id if created_by_user_id is not None else delegator_id
    if actor_id != delegator_id:
        actor = db.session.get(User, actor_id)
        if actor is None:
            return None, domain_error(E.NOT_FOUND, "User not found")
        if actor.role is not SystemRole.ADMIN:
            return None, domain_error(
                E.AUTHORIZATION_DENIED,
                "Only the delegator or an administrator may create this delegation",
            )

    with delegator_locks.hold(delegator_id):
        # Row lock serializes creators across processes on databases that support it.
        User.query.filter_by(id=delegator_id).with_for_update().one()

        conflict = (
            Delegation.query
            .filter(
                Delegation.delegator_id == delegator_id,
                Delegation.is_active.is_(True),
                Delegation.start_date < end_date,
                Delegation.end_date > start_date,
            )
            .order_by(Delegation.start_date.asc())
            .first()
        )
        if conflict is not None:
            conflict_id = conflict.id
            db.session.rollback()
            logger.warning(
                "Delegation rejected: overlaps delegation %s", conflict_id,
                extra={"user_id": delegator_id, "event_type": "delegation.overlap"},
            )
            return None, domain_error(
                E.OVERLAPPING_DELEGATION,
                "An active delegation already exists for this period",
                conflicting_delegation_id=conflict_id,
            )

        delegation = Delegation(
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            scope=scope,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            is_active=True,
        )
        db.session.add(delegation)
        db.session.flush()

        write_audit(
            entity_type="delegation",
            entity_id=delegation.id,
            action="delegation.create",
            actor_user_id=actor_id,
            diff={
                "delegator_id": delegator_id,
                "delegate_id": delegate_id,
                "scope": scope,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        commit_or_rollback()

    logger.info(
        "Delegation created",
        extra={"user_id": delegator_id, "event_type": "delegation.create"},
    )
    return delegation.to_dict(), None


def revoke_delegation(
    delegation_id: int,
    by_user_id: int,
) -> tuple[dict, None] | tuple[None, dict]:
    """Revoke an active delegation.  Only the delegator or an admin may do so."""
    delegation = db.session.get(Delegation, delegation_id)
    if delegation is None or not delegation.is_active:
        return None, domain_error(E.NOT_FOUND, "Delegation not found")

    user = db.session.get(User, by_user_id)
    if user is None:
        return None, domain_error(E.NOT_FOUND, "User not found")

    if user.id != delegation.delegator_id and user.role is not SystemRole.ADMIN:
        logger.warning(
            "Delegation revoke denied",
            extra={"user_id": by_user_id, "event_type": "delegation.revoke_denied"},
        )
        return None, domain_error(
            E.AUTHORIZATION_DENIED,
            "Only the delegator or an administrator may revoke this delegation",
        )

    with delegator_locks.hold(delegation.delegator_id):
        db.session.refresh(delegation)
        if not delegation.is_active:
            return None, domain_error(E.NOT_FOUND, "Delegation not found")

        delegation.is_active = False
        delegation.revoked_at = datetime.now(timezone.utc)
        delegation.revoked_by_user_id = user.id

        write_audit(
            entity_type="delegation",
            entity_id=delegation.id,
            action="delegation.revoke",
            actor_user_id=user.id,
            diff={"is_active": {"old": True, "new": False}},
        )
        commit_or_rollback()

    logger.info(
        "Delegation revoked",
        extra={"user_id": by_user_id, "event_type": "delegation.revoke"},
    )
    return delegation.to_dict(), None


def expire_lapsed_delegations(today: date | None = None) -> dict:
    """
    Deactivate active delegations whose end_date has passed.

    Lapsed delegations already have no effect on access decisions; this
    keeps ``is_active`` honest for listings.  Audited with actor "system".
    """
    today = today or utc_today()
    now = datetime.now(timezone.utc)
    rows = (
        Delegation.query
        .filter(
            Delegation.is_active.is_(True),
            Delegation.end_date <= today,
        )
        .all()
    )
    expired_ids = []
    for d in rows:
        d.is_active = False
        d.revoked_at = now
        expired_ids.append(d.id)
        write_audit(
            entity_type="delegation",
            entity_id=d.id,
            action="delegation.expired",
            actor="system",
            actor_user_id=None,
            diff={
                "delegator_id": d.delegator_id,
                "delegate_id": d.delegate_id,
                "end_date": d.end_date.isoformat(),
                "expired_on": today.isoformat(),
            },
        )
    if expired_ids:
        commit_or_rollback()
        logger.info(
            "Expired %d lapsed delegations", len(expired_ids),
            extra={"event_type": "delegation.expired"},
        )
    return {"expired_delegations": len(expired_ids), "ids": expired_ids}
