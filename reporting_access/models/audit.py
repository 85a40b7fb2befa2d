"""
Reporting Access Engine
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for every state change
      the engine makes (markings, grants, delegations).
"""

import json
from datetime import UTC, datetime

from flask import g, has_request_context

from reporting_access.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "confidentiality_marking",
    "access_grant",
    "delegation",
}

AUDIT_ACTIONS = {
    # Confidentiality overlay
    "confidentiality.mark",
    "confidentiality.unmark",
    # Explicit grants
    "access_grant.create",
    "access_grant.revoke",
    # Delegation lifecycle
    "delegation.create",
    "delegation.revoke",
    "delegation.expired",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every access-control decision that changes state.

    One row per action.  ``diff_json`` carries the item reference and the
    before/after values relevant to the action.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="confidentiality_marking | access_grant | delegation",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity, int-as-string",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="confidentiality.mark | access_grant.revoke | delegation.expired | …",
    )
    actor = db.Column(
        db.String(150), nullable=False, default="system",
        comment="'user' for user-initiated actions, 'system' for scheduled jobs",
    )
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="FK to users table (NULL for system entries)",
    )
    request_id = db.Column(db.String(64), nullable=True)

    # Change payload
    diff_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_user_id": self.actor_user_id,
            "request_id": self.request_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "user",
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back together with
    the mutation it describes.

    Returns the (flushed) AuditLog instance.
    """
    request_id = None
    if has_request_context():
        request_id = getattr(g, "request_id", None)

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_user_id=actor_user_id,
        request_id=request_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
