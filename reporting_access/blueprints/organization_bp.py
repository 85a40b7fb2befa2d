"""
Organization Blueprint — read-only views over the committee hierarchy.

Endpoints:
    GET  /api/v1/committees/<id>/ancestors          — parent first, root last
    GET  /api/v1/committees/<id>/descendants        — whole subtree, ordered by id
    GET  /api/v1/users/<id>/visible-committees      — default (hierarchy) visibility
"""

from dataclasses import asdict

from flask import Blueprint, jsonify

from reporting_access.blueprints import register_error_handlers
from reporting_access.models.organization import HIERARCHY_LEVEL_NAMES
from reporting_access.services.org_hierarchy import OrgHierarchyIndex

organization_bp = Blueprint("organization", __name__, url_prefix="/api/v1")
register_error_handlers(organization_bp)


def _node_dict(node) -> dict:
    d = asdict(node)
    d["level_name"] = HIERARCHY_LEVEL_NAMES.get(node.level)
    return d


@organization_bp.route("/committees/<int:committee_id>/ancestors", methods=["GET"])
def committee_ancestors(committee_id: int):
    index = OrgHierarchyIndex.load()
    chain = index.ancestors(committee_id)
    return jsonify({
        "committee_id": committee_id,
        "ancestors": [_node_dict(n) for n in chain],
    }), 200


@organization_bp.route("/committees/<int:committee_id>/descendants", methods=["GET"])
def committee_descendants(committee_id: int):
    index = OrgHierarchyIndex.load()
    subtree = sorted(index.descendants(committee_id), key=lambda n: n.id)
    return jsonify({
        "committee_id": committee_id,
        "descendants": [_node_dict(n) for n in subtree],
        "total": len(subtree),
    }), 200


@organization_bp.route("/users/<int:user_id>/visible-committees", methods=["GET"])
def visible_committees(user_id: int):
    index = OrgHierarchyIndex.load()
    user = index.user(user_id)
    return jsonify({
        "user_id": user_id,
        "system_role": user.role.value,
        "committee_ids": sorted(index.default_visible_committees(user)),
        "headed_committee_ids": sorted(index.headed_committees(user_id)),
    }), 200
