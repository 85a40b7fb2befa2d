"""
Organizational hierarchy index — committees arena + user associations.

The index is a point-in-time snapshot.  Committees are held in an id-keyed
arena of frozen nodes; traversal never follows live ORM relationships, so
a request evaluates every rule against one consistent view of the
directory.

Default visibility per role (capability table in models/organization.py):
  - global_visibility roles  → every active committee
  - heads_subtree roles      → headed committees + all their descendants
  - everyone else            → exactly the primary committee (or nothing)

A broken parent link or a cycle is a directory configuration error and
raises HierarchyIntegrityError; it is never silently truncated.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Iterable

from reporting_access.core.exceptions import HierarchyIntegrityError, NotFoundError
from reporting_access.models.organization import (
    MEMBERSHIP_ROLE_HEAD,
    Committee,
    CommitteeMembership,
    RoleCapabilities,
    SystemRole,
    User,
    capabilities_for,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitteeNode:
    id: int
    parent_id: int | None = None
    level: int = 0
    name: str = ""
    sector: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class UserNode:
    id: int
    role: SystemRole = SystemRole.MEMBER
    primary_committee_id: int | None = None
    chairman_office_rank: int | None = None
    is_active: bool = True
    headed_committee_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def capabilities(self) -> RoleCapabilities:
        return capabilities_for(self.role)


class OrgHierarchyIndex:
    """Read-only snapshot of committees and the users attached to them."""

    def __init__(
        self,
        committees: Iterable[CommitteeNode],
        users: Iterable[UserNode] = (),
    ) -> None:
        self._committees: dict[int, CommitteeNode] = {c.id: c for c in committees}
        self._users: dict[int, UserNode] = {u.id: u for u in users}
        self._children: dict[int, list[int]] = defaultdict(list)
        for node in self._committees.values():
            if node.parent_id is not None:
                self._children[node.parent_id].append(node.id)

    # ── Loading ──────────────────────────────────────────────────────────

    @classmethod
    def load(cls) -> "OrgHierarchyIndex":
        """Build an index from the committee/user/membership tables."""
        committees = [
            CommitteeNode(
                id=c.id,
                parent_id=c.parent_committee_id,
                level=c.hierarchy_level or 0,
                name=c.name,
                sector=c.sector,
                is_active=bool(c.is_active),
            )
            for c in Committee.query.all()
        ]

        headed: dict[int, set[int]] = defaultdict(set)
        head_rows = CommitteeMembership.query.filter(
            CommitteeMembership.role == MEMBERSHIP_ROLE_HEAD,
            CommitteeMembership.effective_to.is_(None),
        ).all()
        for m in head_rows:
            headed[m.user_id].add(m.committee_id)

        users = []
        for u in User.query.all():
            role = SystemRole(u.system_role)
            heads = headed.get(u.id)
            if not heads and capabilities_for(role).heads_subtree and u.primary_committee_id is not None:
                # No explicit head membership: a head heads their own committee.
                heads = {u.primary_committee_id}
            users.append(UserNode(
                id=u.id,
                role=role,
                primary_committee_id=u.primary_committee_id,
                chairman_office_rank=u.chairman_office_rank,
                is_active=bool(u.is_active),
                headed_committee_ids=frozenset(heads or ()),
            ))

        logger.debug(
            "Hierarchy index loaded: %d committees, %d users", len(committees), len(users),
            extra={"event_type": "hierarchy.load"},
        )
        return cls(committees, users)

    # ── Committee lookups ────────────────────────────────────────────────

    def committee(self, committee_id: int) -> CommitteeNode:
        node = self._committees.get(committee_id)
        if node is None:
            raise NotFoundError(resource="Committee", resource_id=committee_id)
        return node

    def has_committee(self, committee_id: int) -> bool:
        return committee_id in self._committees

    def committees(self) -> list[CommitteeNode]:
        return list(self._committees.values())

    def ancestors(self, committee_id: int) -> list[CommitteeNode]:
        """Immediate parent first, root last.  The committee itself is excluded."""
        node = self.committee(committee_id)
        chain: list[CommitteeNode] = []
        visited = {node.id}
        while node.parent_id is not None:
            parent = self._committees.get(node.parent_id)
            if parent is None:
                raise HierarchyIntegrityError(
                    f"parent committee {node.parent_id} does not exist",
                    committee_id=node.id,
                )
            if parent.id in visited:
                raise HierarchyIntegrityError("cycle in committee chain", committee_id=committee_id)
            visited.add(parent.id)
            chain.append(parent)
            node = parent
        return chain

    def ancestor_ids(self, committee_id: int) -> list[int]:
        return [c.id for c in self.ancestors(committee_id)]

    def descendants(self, committee_id: int) -> set[CommitteeNode]:
        """Every committee whose ancestor chain contains ``committee_id``."""
        self.committee(committee_id)
        found: set[int] = set()
        queue = deque(self._children.get(committee_id, ()))
        while queue:
            child_id = queue.popleft()
            if child_id == committee_id or child_id in found:
                raise HierarchyIntegrityError("cycle in committee chain", committee_id=child_id)
            found.add(child_id)
            queue.extend(self._children.get(child_id, ()))
        return {self._committees[cid] for cid in found}

    def validate(self) -> None:
        """Walk every committee chain; raise on the first broken or cyclic one."""
        for committee_id in sorted(self._committees):
            self.ancestors(committee_id)

    # ── User lookups ─────────────────────────────────────────────────────

    def user(self, user_id: int) -> UserNode:
        node = self._users.get(user_id)
        if node is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        return node

    def users(self) -> list[UserNode]:
        return list(self._users.values())

    def resolve_user(self, user) -> UserNode:
        """Accept a UserNode, a User row, or a user id."""
        if isinstance(user, UserNode):
            return user
        if isinstance(user, int):
            return self.user(user)
        return self.user(user.id)

    def headed_committees(self, user_id: int) -> set[int]:
        node = self.user(user_id)
        if not node.capabilities.heads_subtree:
            return set()
        return set(node.headed_committee_ids)

    # ── Derived visibility ───────────────────────────────────────────────

    def default_visible_committees(self, user) -> set[int]:
        node = self.resolve_user(user)
        if not node.is_active:
            return set()

        caps = node.capabilities
        if caps.global_visibility:
            return {c.id for c in self._committees.values() if c.is_active}

        if caps.heads_subtree:
            visible: set[int] = set()
            for head_id in node.headed_committee_ids:
                visible.add(head_id)
                visible.update(c.id for c in self.descendants(head_id))
            return visible

        if node.primary_committee_id is None:
            return set()
        return {node.primary_committee_id}

    def has_mark_authority(self, user, committee_id: int) -> bool:
        """Global mark roles, or a head of the committee or any ancestor."""
        node = self.resolve_user(user)
        if not node.is_active:
            return False

        caps = node.capabilities
        if caps.global_mark_authority:
            return True
        if not caps.heads_subtree:
            return False

        chain = {committee_id, *self.ancestor_ids(committee_id)}
        return bool(chain & node.headed_committee_ids)
