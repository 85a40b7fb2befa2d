"""
Visibility Resolver — answers "may this user access this item?".

Stateless; every call evaluates against a fresh OrgHierarchyIndex snapshot
(or one supplied by the caller) and the current markings, grants and
delegations.

Decision rules:

  No active marking:
      item committee ∈ default_visible_committees(user)
      OR an in-effect delegation covering the item type gives the delegator
      that visibility.

  Active marking, access if ANY of:
      a. the user placed the marking
      b. the role bypasses confidentiality (admin)
      c. chairman_office and (no rank threshold, or rank <= threshold)
      d. the user holds an active grant on the item
      e. the user's in-effect delegation covers the item type and the
         delegator satisfies a–d.  Delegation is never transitive.
  Hierarchy visibility alone never opens a confidential item.

Inactive users are denied everything; inactive delegators transfer nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from reporting_access.core.exceptions import ValidationError
from reporting_access.models.confidentiality import VALID_ITEM_TYPES
from reporting_access.models.delegation import Delegation
from reporting_access.services import access_grant_service, confidentiality_service
from reporting_access.services import delegation_service
from reporting_access.services.org_hierarchy import OrgHierarchyIndex, UserNode

logger = logging.getLogger(__name__)


# ── Value types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ItemRef:
    """Reference to a governed item; the engine never loads the item itself."""
    item_type: str
    item_id: int
    committee_id: int | None = None


@dataclass(frozen=True)
class MarkingView:
    """The parts of a marking the decision rules read."""
    marked_by_user_id: int | None = None
    min_chairman_office_rank: int | None = None

    @classmethod
    def of(cls, marking) -> "MarkingView":
        return cls(
            marked_by_user_id=marking.marked_by_user_id,
            min_chairman_office_rank=marking.min_chairman_office_rank,
        )


@dataclass
class ImpactPreview:
    item_type: str
    item_id: int
    committee_id: int
    min_chairman_office_rank: int | None
    before: set[int] = field(default_factory=set)
    after: set[int] = field(default_factory=set)

    @property
    def loses_access(self) -> set[int]:
        return self.before - self.after

    @property
    def retains_access(self) -> set[int]:
        return self.before & self.after

    def to_dict(self) -> dict:
        return {
            "item_type": self.item_type,
            "item_id": self.item_id,
            "committee_id": self.committee_id,
            "min_chairman_office_rank": self.min_chairman_office_rank,
            "loses_access": sorted(self.loses_access),
            "retains_access": sorted(self.retains_access),
            "loses_access_count": len(self.loses_access),
            "retains_access_count": len(self.retains_access),
        }


# ── Rule evaluation ──────────────────────────────────────────────────────────


def _marking_admits(user: UserNode, marking: MarkingView, grantees: set[int]) -> bool:
    if not user.is_active:
        return False
    if user.id == marking.marked_by_user_id:
        return True

    caps = user.capabilities
    if caps.bypasses_confidentiality:
        return True
    if caps.rank_gated_confidential:
        threshold = marking.min_chairman_office_rank
        if threshold is None:
            return True
        if user.chairman_office_rank is not None and user.chairman_office_rank <= threshold:
            return True

    return user.id in grantees


def _delegator_of(
    delegation: Delegation | None,
    item_type: str,
    index: OrgHierarchyIndex,
) -> UserNode | None:
    if delegation is None or not delegation.covers(item_type):
        return None
    delegator = index.user(delegation.delegator_id)
    return delegator if delegator.is_active else None


def _evaluate(
    user: UserNode,
    item_type: str,
    committee_id: int | None,
    marking: MarkingView | None,
    grantees: set[int],
    delegation: Delegation | None,
    index: OrgHierarchyIndex,
) -> bool:
    if not user.is_active:
        return False

    delegator = _delegator_of(delegation, item_type, index)

    if marking is None:
        if committee_id is None:
            return False
        if committee_id in index.default_visible_committees(user):
            return True
        return delegator is not None and committee_id in index.default_visible_committees(delegator)

    if _marking_admits(user, marking, grantees):
        return True
    return delegator is not None and _marking_admits(delegator, marking, grantees)


def _check_item_type(item_type: str) -> None:
    if item_type not in VALID_ITEM_TYPES:
        raise ValidationError(
            f"Invalid item_type '{item_type}'",
            details={"item_type": f"must be one of {sorted(VALID_ITEM_TYPES)}"},
        )


# ── Public API ───────────────────────────────────────────────────────────────


def can_access(
    user,
    item_type: str,
    item_id: int,
    item_committee_id: int | None,
    *,
    as_of: date | None = None,
    index: OrgHierarchyIndex | None = None,
) -> bool:
    """Decide whether ``user`` (UserNode, User row or id) may access the item."""
    _check_item_type(item_type)
    index = index or OrgHierarchyIndex.load()
    node = index.resolve_user(user)

    marking = confidentiality_service.get_active_marking(item_type, item_id)
    view = MarkingView.of(marking) if marking is not None else None
    grantees = (
        access_grant_service.active_grant_user_ids(item_type, item_id)
        if marking is not None else set()
    )
    delegation = delegation_service.active_delegation_for(node.id, as_of)

    allowed = _evaluate(node, item_type, item_committee_id, view, grantees, delegation, index)
    logger.debug(
        "Access %s", "granted" if allowed else "denied",
        extra={
            "item_type": item_type,
            "item_id": item_id,
            "user_id": node.id,
            "event_type": "access.check",
        },
    )
    return allowed


def filter_accessible(
    items: Iterable,
    user,
    *,
    as_of: date | None = None,
    index: OrgHierarchyIndex | None = None,
) -> list:
    """Keep the items ``user`` may access, preserving input order.

    Items are ItemRefs or any object exposing ``item_type``, ``item_id``
    and ``committee_id``.  Markings and grants are loaded once per call.
    """
    items = list(items)
    for item in items:
        _check_item_type(item.item_type)

    index = index or OrgHierarchyIndex.load()
    node = index.resolve_user(user)
    if not node.is_active:
        return []

    keys = [(item.item_type, item.item_id) for item in items]
    markings = confidentiality_service.get_active_markings(keys)
    grantees = access_grant_service.active_grant_user_ids_for(markings.keys())
    delegation = delegation_service.active_delegation_for(node.id, as_of)

    visible = []
    for item, key in zip(items, keys):
        marking = markings.get(key)
        view = MarkingView.of(marking) if marking is not None else None
        if _evaluate(
            node, item.item_type, item.committee_id, view,
            grantees.get(key, set()), delegation, index,
        ):
            visible.append(item)
    return visible


def has_mark_authority(
    user,
    item_committee_id: int,
    index: OrgHierarchyIndex | None = None,
) -> bool:
    """Admin, chairman, chairman_office, or head of the committee or an ancestor."""
    index = index or OrgHierarchyIndex.load()
    return index.has_mark_authority(user, item_committee_id)


def impact_preview(
    item_type: str,
    item_id: int,
    item_committee_id: int,
    min_chairman_office_rank: int | None = None,
    marked_by_user_id: int | None = None,
    *,
    as_of: date | None = None,
    index: OrgHierarchyIndex | None = None,
) -> ImpactPreview:
    """Who would lose or keep access if the item were marked as described.

    ``before`` is hierarchy visibility; ``after`` applies the marking rules
    to a simulated marking, honouring the item's existing active grants.
    Nothing is written.
    """
    _check_item_type(item_type)
    index = index or OrgHierarchyIndex.load()
    index.committee(item_committee_id)

    view = MarkingView(
        marked_by_user_id=marked_by_user_id,
        min_chairman_office_rank=min_chairman_office_rank,
    )
    grantees = access_grant_service.active_grant_user_ids(item_type, item_id)
    delegations = delegation_service.effective_delegations_by_delegate(as_of)

    preview = ImpactPreview(
        item_type=item_type,
        item_id=item_id,
        committee_id=item_committee_id,
        min_chairman_office_rank=min_chairman_office_rank,
    )
    for user in index.users():
        if not user.is_active:
            continue
        if item_committee_id in index.default_visible_committees(user):
            preview.before.add(user.id)
        if _evaluate(
            user, item_type, item_committee_id, view, grantees,
            delegations.get(user.id), index,
        ):
            preview.after.add(user.id)
    return preview
