"""
Organization Models — committees, users, committee memberships.

These tables are the read-only directory the access engine consumes.
They are maintained by external administration flows; the engine never
writes to them.

Roles are a closed set.  Every role-dependent branch in the engine reads
the capability table below instead of comparing role strings, so adding a
role means adding exactly one row here.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from reporting_access.models import db


# ═══════════════════════════════════════════════════════════════
# Roles & capabilities
# ═══════════════════════════════════════════════════════════════
class SystemRole(str, Enum):
    CHAIRMAN = "chairman"
    CHAIRMAN_OFFICE = "chairman_office"
    COMMITTEE_HEAD = "committee_head"
    MEMBER = "member"
    ADMIN = "admin"


@dataclass(frozen=True)
class RoleCapabilities:
    """What a system role is allowed to do, independent of any item."""
    global_visibility: bool = False          # sees every active committee
    heads_subtree: bool = False              # sees headed committees + descendants
    global_mark_authority: bool = False      # may mark any item
    bypasses_confidentiality: bool = False   # reads confidential items regardless of marking
    rank_gated_confidential: bool = False    # reads confidential items subject to rank threshold


ROLE_CAPABILITIES: dict[SystemRole, RoleCapabilities] = {
    SystemRole.CHAIRMAN: RoleCapabilities(
        global_visibility=True,
        global_mark_authority=True,
    ),
    SystemRole.CHAIRMAN_OFFICE: RoleCapabilities(
        global_visibility=True,
        global_mark_authority=True,
        rank_gated_confidential=True,
    ),
    SystemRole.COMMITTEE_HEAD: RoleCapabilities(heads_subtree=True),
    SystemRole.MEMBER: RoleCapabilities(),
    SystemRole.ADMIN: RoleCapabilities(
        global_visibility=True,
        global_mark_authority=True,
        bypasses_confidentiality=True,
    ),
}

HIERARCHY_LEVEL_NAMES = {
    0: "Top Level",
    1: "Directors",
    2: "Functions",
    3: "Processes",
    4: "Tasks",
}

MEMBERSHIP_ROLE_HEAD = "head"
MEMBERSHIP_ROLE_MEMBER = "member"


def capabilities_for(role) -> RoleCapabilities:
    """Return the capability row for a role (enum member or its string value)."""
    return ROLE_CAPABILITIES[SystemRole(role)]


# ═══════════════════════════════════════════════════════════════
# 1. COMMITTEES
# ═══════════════════════════════════════════════════════════════
class Committee(db.Model):
    __tablename__ = "committees"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500))
    parent_committee_id = db.Column(
        db.Integer, db.ForeignKey("committees.id", ondelete="SET NULL"), nullable=True
    )
    hierarchy_level = db.Column(db.Integer, nullable=False, default=0)  # 0 = top
    sector = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_committees_parent", "parent_committee_id"),
        db.CheckConstraint("hierarchy_level >= 0", name="ck_committees_level_non_negative"),
    )

    parent = db.relationship("Committee", remote_side=[id])

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parent_committee_id": self.parent_committee_id,
            "hierarchy_level": self.hierarchy_level,
            "hierarchy_level_name": HIERARCHY_LEVEL_NAMES.get(self.hierarchy_level),
            "sector": self.sector,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Committee {self.id}: {self.name} L{self.hierarchy_level}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    system_role = db.Column(
        db.String(30), nullable=False, default=SystemRole.MEMBER.value,
        comment="chairman | chairman_office | committee_head | member | admin",
    )
    primary_committee_id = db.Column(
        db.Integer, db.ForeignKey("committees.id", ondelete="SET NULL"), nullable=True
    )
    chairman_office_rank = db.Column(
        db.Integer, nullable=True,
        comment="Lower = more senior. Only meaningful for chairman_office",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_users_primary_committee", "primary_committee_id"),
    )

    primary_committee = db.relationship("Committee")
    memberships = db.relationship(
        "CommitteeMembership", back_populates="user", lazy="dynamic",
    )

    @property
    def role(self) -> SystemRole:
        return SystemRole(self.system_role)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "system_role": self.system_role,
            "primary_committee_id": self.primary_committee_id,
            "chairman_office_rank": self.chairman_office_rank,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.system_role}>"


# ═══════════════════════════════════════════════════════════════
# 3. COMMITTEE_MEMBERSHIPS
# ═══════════════════════════════════════════════════════════════
class CommitteeMembership(db.Model):
    __tablename__ = "committee_memberships"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    committee_id = db.Column(
        db.Integer, db.ForeignKey("committees.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(20), nullable=False, default=MEMBERSHIP_ROLE_MEMBER)  # head | member
    effective_from = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    effective_to = db.Column(db.DateTime, nullable=True)  # NULL = current

    __table_args__ = (
        db.Index("ix_committee_memberships_user", "user_id"),
        db.Index("ix_committee_memberships_committee", "committee_id"),
    )

    user = db.relationship("User", back_populates="memberships")
    committee = db.relationship("Committee")

    @property
    def is_current(self) -> bool:
        return self.effective_to is None

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "committee_id": self.committee_id,
            "role": self.role,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_to": self.effective_to.isoformat() if self.effective_to else None,
        }
