"""
Confidentiality overlay — ConfidentialityMarking and AccessGrant models.

Both tables are append-only timelines: rows are never deleted, revocation
flips ``is_active`` and stamps ``revoked_at`` / ``revoked_by_user_id``.

Polymorphic item reference:
    item_type + item_id together identify the governed item.  The engine
    never loads the item itself; the owning committee is resolved by the
    caller and passed in.

Concurrency:
    A partial unique index over the active rows guarantees that at most one
    marking per item (and one grant per item/user) is active.  A second
    concurrent insert fails with IntegrityError instead of silently
    producing two active rows.
"""

from datetime import datetime, timezone

from reporting_access.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

VALID_ITEM_TYPES = frozenset({"report", "directive", "meeting"})

MAX_REASON_LENGTH = 500


def _active_only():
    return {
        "sqlite_where": db.text("is_active = 1"),
        "postgresql_where": db.text("is_active"),
    }


class ConfidentialityMarking(db.Model):
    """
    One mark/unmark episode for a governed item.

    Business rules:
    - At most one active row per (item_type, item_id).
    - committee_id / committee_level are snapshots taken at marking time.
    - min_chairman_office_rank NULL means every chairman_office user may read.
    """

    __tablename__ = "confidentiality_markings"

    id = db.Column(db.Integer, primary_key=True)

    item_type = db.Column(
        db.String(20), nullable=False,
        comment="report | directive | meeting",
    )
    item_id = db.Column(db.Integer, nullable=False)

    committee_id = db.Column(
        db.Integer,
        db.ForeignKey("committees.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Owning committee at marking time",
    )
    committee_level = db.Column(db.Integer, nullable=True)

    marked_by_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    reason = db.Column(db.String(MAX_REASON_LENGTH), nullable=True)
    min_chairman_office_rank = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_by_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        db.Index("ix_confidentiality_markings_item", "item_type", "item_id"),
        db.Index(
            "uq_confidentiality_markings_active_item",
            "item_type", "item_id",
            unique=True,
            **_active_only(),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "committee_id": self.committee_id,
            "committee_level": self.committee_level,
            "marked_by_user_id": self.marked_by_user_id,
            "reason": self.reason,
            "min_chairman_office_rank": self.min_chairman_office_rank,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revoked_by_user_id": self.revoked_by_user_id,
        }

    def __repr__(self):
        state = "active" if self.is_active else "revoked"
        return f"<ConfidentialityMarking {self.id}: {self.item_type}/{self.item_id} {state}>"


class AccessGrant(db.Model):
    """
    Explicit per-user exception re-widening access to a confidential item.

    A grant has no effect while the item carries no active marking.  Grants
    are scoped to the item, not to a marking episode, so an active grant
    keeps applying if the item is unmarked and marked again.

    committee_id records the owning committee the grant was issued under;
    revocation is authorized against it, never against a caller-supplied id.
    """

    __tablename__ = "access_grants"

    id = db.Column(db.Integer, primary_key=True)

    item_type = db.Column(db.String(20), nullable=False)
    item_id = db.Column(db.Integer, nullable=False)

    committee_id = db.Column(
        db.Integer,
        db.ForeignKey("committees.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Owning committee of the item at grant time",
    )

    granted_to_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    granted_by_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    reason = db.Column(db.String(MAX_REASON_LENGTH), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_by_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        db.Index("ix_access_grants_item", "item_type", "item_id"),
        db.Index("ix_access_grants_user", "granted_to_user_id"),
        db.Index(
            "uq_access_grants_active_item_user",
            "item_type", "item_id", "granted_to_user_id",
            unique=True,
            **_active_only(),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "committee_id": self.committee_id,
            "granted_to_user_id": self.granted_to_user_id,
            "granted_by_user_id": self.granted_by_user_id,
            "reason": self.reason,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "revoked_by_user_id": self.revoked_by_user_id,
        }

    def __repr__(self):
        return (
            f"<AccessGrant {self.id}: {self.item_type}/{self.item_id} "
            f"→ user {self.granted_to_user_id}>"
        )
