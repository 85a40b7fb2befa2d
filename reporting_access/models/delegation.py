"""
Delegation model — time-bounded transfer of one user's authority to another.

Intervals are half-open: a delegation is effective on ``start_date`` and
stops being effective on ``end_date``.

Business rules:
    - delegator_id != delegate_id
    - end_date > start_date
    - a delegator's active delegations never overlap (enforced in
      delegation_service under a per-delegator lock)
"""

from datetime import date, datetime, timezone
from enum import Enum

from reporting_access.models import db


class DelegationScope(str, Enum):
    FULL = "full"
    REPORTING_ONLY = "reporting_only"
    APPROVAL_ONLY = "approval_only"


# Item types whose visibility a scope transfers.
SCOPE_ITEM_TYPES: dict[DelegationScope, frozenset[str]] = {
    DelegationScope.FULL: frozenset({"report", "directive", "meeting"}),
    DelegationScope.REPORTING_ONLY: frozenset({"report"}),
    DelegationScope.APPROVAL_ONLY: frozenset({"report", "directive"}),
}

VALID_SCOPES = frozenset(s.value for s in DelegationScope)


class Delegation(db.Model):
    __tablename__ = "delegations"

    id = db.Column(db.Integer, primary_key=True)
    delegator_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    delegate_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    scope = db.Column(
        db.String(20), nullable=False, default=DelegationScope.FULL.value,
        comment="full | reporting_only | approval_only",
    )
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False, comment="Exclusive")
    reason = db.Column(db.String(500), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_by_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    __table_args__ = (
        db.Index("ix_delegations_delegator", "delegator_id"),
        db.Index("ix_delegations_delegate", "delegate_id"),
        db.CheckConstraint("delegator_id <> delegate_id", name="ck_delegations_not_self"),
        db.CheckConstraint("end_date > start_date", name="ck_delegations_interval"),
    )

    def covers(self, item_type: str) -> bool:
        return item_type in SCOPE_ITEM_TYPES[DelegationScope(self.scope)]

    def is_effective_on(self, day: date) -> bool:
        return self.is_active and self.start_date <= day < self.end_date

    def to_dict(self):
        return {
            "id": self.id,
            "delegator_id": self.delegator_id,
            "delegate_id": self.delegate_id,
            "scope": self.scope,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "reason": self.reason,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revoked_by_user_id": self.revoked_by_user_id,
        }

    def __repr__(self):
        return (
            f"<Delegation {self.id}: {self.delegator_id}→{self.delegate_id} "
            f"{self.scope} [{self.start_date}, {self.end_date})>"
        )
