"""initial_access_engine_schema

Committee directory, confidentiality markings, access grants, delegations
and the audit trail.

Revision ID: a1c0f3e2b001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "a1c0f3e2b001"
down_revision = None
branch_labels = None
depends_on = None


def _table_names(bind) -> set[str]:
    insp = sa.inspect(bind)
    return set(insp.get_table_names())


def _active_only():
    return {
        "sqlite_where": sa.text("is_active = 1"),
        "postgresql_where": sa.text("is_active"),
    }


def upgrade():
    bind = op.get_bind()
    tables = _table_names(bind)

    if "committees" not in tables:
        op.create_table(
            "committees",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column(
                "parent_committee_id", sa.Integer(),
                sa.ForeignKey("committees.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.Column("hierarchy_level", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("sector", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.CheckConstraint("hierarchy_level >= 0", name="ck_committees_level_non_negative"),
        )
        op.create_index("ix_committees_parent", "committees", ["parent_committee_id"])

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=200), nullable=False, unique=True),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("system_role", sa.String(length=30), nullable=False, server_default="member"),
            sa.Column(
                "primary_committee_id", sa.Integer(),
                sa.ForeignKey("committees.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.Column("chairman_office_rank", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_users_primary_committee", "users", ["primary_committee_id"])

    if "committee_memberships" not in tables:
        op.create_table(
            "committee_memberships",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column(
                "committee_id", sa.Integer(),
                sa.ForeignKey("committees.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
            sa.Column("effective_from", sa.DateTime(), nullable=True),
            sa.Column("effective_to", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_committee_memberships_user", "committee_memberships", ["user_id"])
        op.create_index("ix_committee_memberships_committee", "committee_memberships", ["committee_id"])

    if "confidentiality_markings" not in tables:
        op.create_table(
            "confidentiality_markings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("item_type", sa.String(length=20), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column(
                "committee_id", sa.Integer(),
                sa.ForeignKey("committees.id", ondelete="RESTRICT"), nullable=False,
            ),
            sa.Column("committee_level", sa.Integer(), nullable=True),
            sa.Column(
                "marked_by_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
            ),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("min_chairman_office_rank", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "revoked_by_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
            ),
        )
        op.create_index(
            "ix_confidentiality_markings_item", "confidentiality_markings", ["item_type", "item_id"],
        )
        op.create_index(
            "uq_confidentiality_markings_active_item",
            "confidentiality_markings",
            ["item_type", "item_id"],
            unique=True,
            **_active_only(),
        )

    if "access_grants" not in tables:
        op.create_table(
            "access_grants",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("item_type", sa.String(length=20), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column(
                "committee_id", sa.Integer(),
                sa.ForeignKey("committees.id", ondelete="RESTRICT"), nullable=False,
            ),
            sa.Column(
                "granted_to_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column(
                "granted_by_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
            ),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "revoked_by_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
            ),
        )
        op.create_index("ix_access_grants_item", "access_grants", ["item_type", "item_id"])
        op.create_index("ix_access_grants_user", "access_grants", ["granted_to_user_id"])
        op.create_index(
            "uq_access_grants_active_item_user",
            "access_grants",
            ["item_type", "item_id", "granted_to_user_id"],
            unique=True,
            **_active_only(),
        )

    if "delegations" not in tables:
        op.create_table(
            "delegations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "delegator_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column(
                "delegate_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("scope", sa.String(length=20), nullable=False, server_default="full"),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            sa.Column("reason", sa.String(length=500), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "revoked_by_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.CheckConstraint("delegator_id <> delegate_id", name="ck_delegations_not_self"),
            sa.CheckConstraint("end_date > start_date", name="ck_delegations_interval"),
        )
        op.create_index("ix_delegations_delegator", "delegations", ["delegator_id"])
        op.create_index("ix_delegations_delegate", "delegations", ["delegate_id"])

    if "audit_logs" not in tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column(
                "actor_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
            ),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])
        op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])


def downgrade():
    bind = op.get_bind()
    tables = _table_names(bind)
    for name in (
        "audit_logs",
        "delegations",
        "access_grants",
        "confidentiality_markings",
        "committee_memberships",
        "users",
        "committees",
    ):
        if name in tables:
            op.drop_table(name)
