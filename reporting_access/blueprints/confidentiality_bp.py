"""
Confidentiality Blueprint — access checks, markings and explicit grants.

Endpoints:
    POST   /api/v1/items/<type>/<id>/access-check
           Body: { "user_id": <int>, "committee_id": <int>, "as_of": "YYYY-MM-DD" }
           Returns: 200 { "allowed": true } or 404 (denied reads look like missing items)

    POST   /api/v1/items/filter-accessible
           Body: { "user_id": <int>, "items": [{item_type, item_id, committee_id}, …] }

    POST   /api/v1/items/<type>/<id>/impact-preview
           Body: { "user_id": <int>, "committee_id": <int>, "min_chairman_office_rank": <int> }

    POST   /api/v1/items/<type>/<id>/confidentiality
           Body: { "user_id", "committee_id", "reason", "min_chairman_office_rank",
                   "preview_only": bool }
           Returns: 201 when a marking is created, 200 when one already existed.

    DELETE /api/v1/items/<type>/<id>/confidentiality        Body/query: user_id
    GET    /api/v1/items/<type>/<id>/confidentiality        Query: user_id, committee_id
    GET    /api/v1/items/<type>/<id>/confidentiality/history

    POST   /api/v1/items/<type>/<id>/access-grants
           Body: { "user_id", "granted_to_user_id", "committee_id", "reason" }
    GET    /api/v1/items/<type>/<id>/access-grants          Query: include_revoked
    DELETE /api/v1/access-grants/<grant_id>                 Body/query: user_id, committee_id

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON.
    - NO db.session calls here; all writes are owned by the services.
    - NO inline role checks; every decision comes from the services.
"""

import logging

from flask import Blueprint, jsonify, request

from reporting_access.blueprints import (
    bool_arg,
    int_field,
    item_type_error,
    register_error_handlers,
)
from reporting_access.services import (
    access_grant_service,
    confidentiality_service,
    visibility_resolver,
)
from reporting_access.services.org_hierarchy import OrgHierarchyIndex
from reporting_access.services.visibility_resolver import ItemRef
from reporting_access.utils.errors import E, api_error, error_response
from reporting_access.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

confidentiality_bp = Blueprint("confidentiality", __name__, url_prefix="/api/v1")
register_error_handlers(confidentiality_bp)


# ── Helpers ────────────────────────────────────────────────────────────────────


def _item_not_found():
    return api_error(E.NOT_FOUND, "Item not found")


def _request_data() -> dict:
    """JSON body merged over query args; DELETE callers may use either."""
    data = request.args.to_dict()
    data.update(request.get_json(silent=True) or {})
    return data


def _may_manage_or_read(index, user_id, item_type, item_id, committee_id) -> bool:
    if visibility_resolver.can_access(user_id, item_type, item_id, committee_id, index=index):
        return True
    return (
        committee_id is not None
        and index.has_committee(committee_id)
        and index.has_mark_authority(user_id, committee_id)
    )


def _preview(item_type, item_id, user_id, committee_id, min_rank, index):
    if committee_id is None:
        return api_error(
            E.ITEM_COMMITTEE_UNRESOLVABLE,
            "The owning committee of this item could not be resolved",
        )
    if not index.has_mark_authority(user_id, committee_id):
        return api_error(
            E.AUTHORIZATION_DENIED,
            "You are not allowed to mark items of this committee as confidential",
        )
    preview = visibility_resolver.impact_preview(
        item_type, item_id, committee_id,
        min_chairman_office_rank=min_rank,
        marked_by_user_id=user_id,
        index=index,
    )
    return jsonify(preview.to_dict()), 200


# ── Access decisions ───────────────────────────────────────────────────────────


@confidentiality_bp.route("/items/<item_type>/<int:item_id>/access-check", methods=["POST"])
def access_check(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(data, "committee_id")
    if err:
        return err
    try:
        as_of = parse_date_input(data.get("as_of"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    allowed = visibility_resolver.can_access(
        user_id, item_type, item_id, committee_id, as_of=as_of,
    )
    if not allowed:
        return _item_not_found()
    return jsonify({
        "allowed": True,
        "item_type": item_type,
        "item_id": item_id,
        "user_id": user_id,
    }), 200


@confidentiality_bp.route("/items/filter-accessible", methods=["POST"])
def filter_accessible():
    data = request.get_json(silent=True) or {}
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err

    raw_items = data.get("items")
    if not isinstance(raw_items, list):
        return api_error(E.VALIDATION_REQUIRED, "items must be a list")

    refs = []
    for position, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            return api_error(E.VALIDATION_INVALID, f"items[{position}] must be an object")
        err = item_type_error(raw.get("item_type"))
        if err:
            return err
        item_id, err = int_field(raw, "item_id", required=True)
        if err:
            return err
        committee_id, err = int_field(raw, "committee_id")
        if err:
            return err
        refs.append(ItemRef(raw["item_type"], item_id, committee_id))

    try:
        as_of = parse_date_input(data.get("as_of"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    visible = visibility_resolver.filter_accessible(refs, user_id, as_of=as_of)
    return jsonify({
        "items": [
            {"item_type": r.item_type, "item_id": r.item_id, "committee_id": r.committee_id}
            for r in visible
        ],
        "total": len(visible),
    }), 200


@confidentiality_bp.route("/items/<item_type>/<int:item_id>/impact-preview", methods=["POST"])
def impact_preview(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(data, "committee_id")
    if err:
        return err
    min_rank, err = int_field(data, "min_chairman_office_rank")
    if err:
        return err

    index = OrgHierarchyIndex.load()
    return _preview(item_type, item_id, user_id, committee_id, min_rank, index)


# ── Markings ───────────────────────────────────────────────────────────────────


@confidentiality_bp.route("/items/<item_type>/<int:item_id>/confidentiality", methods=["POST"])
def mark_item(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(data, "committee_id")
    if err:
        return err
    min_rank, err = int_field(data, "min_chairman_office_rank")
    if err:
        return err

    index = OrgHierarchyIndex.load()
    if bool_arg(data.get("preview_only")):
        return _preview(item_type, item_id, user_id, committee_id, min_rank, index)

    marking, err_dict = confidentiality_service.mark(
        item_type,
        item_id,
        committee_id,
        user_id,
        reason=data.get("reason"),
        min_chairman_office_rank=min_rank,
        index=index,
    )
    if err_dict:
        return error_response(err_dict)
    return jsonify(marking), 201 if marking["created"] else 200


@confidentiality_bp.route("/items/<item_type>/<int:item_id>/confidentiality", methods=["DELETE"])
def unmark_item(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    user_id, err = int_field(_request_data(), "user_id", required=True)
    if err:
        return err

    marking, err_dict = confidentiality_service.unmark(item_type, item_id, user_id)
    if err_dict:
        return error_response(err_dict)
    return jsonify(marking), 200


@confidentiality_bp.route("/items/<item_type>/<int:item_id>/confidentiality", methods=["GET"])
def get_marking(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    user_id, err = int_field(request.args, "user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(request.args, "committee_id")
    if err:
        return err

    index = OrgHierarchyIndex.load()
    if not _may_manage_or_read(index, user_id, item_type, item_id, committee_id):
        return _item_not_found()

    marking = confidentiality_service.get_active_marking(item_type, item_id)
    return jsonify({
        "item_type": item_type,
        "item_id": item_id,
        "is_confidential": marking is not None,
        "marking": marking.to_dict() if marking else None,
    }), 200


@confidentiality_bp.route(
    "/items/<item_type>/<int:item_id>/confidentiality/history", methods=["GET"],
)
def get_marking_history(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    user_id, err = int_field(request.args, "user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(request.args, "committee_id")
    if err:
        return err

    index = OrgHierarchyIndex.load()
    if not _may_manage_or_read(index, user_id, item_type, item_id, committee_id):
        return _item_not_found()

    history = confidentiality_service.get_marking_history(item_type, item_id)
    return jsonify({"history": history, "total": len(history)}), 200


# ── Access grants ──────────────────────────────────────────────────────────────


@confidentiality_bp.route("/items/<item_type>/<int:item_id>/access-grants", methods=["POST"])
def create_grant(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err
    to_user_id, err = int_field(data, "granted_to_user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(data, "committee_id")
    if err:
        return err

    grant, err_dict = access_grant_service.grant_access(
        item_type,
        item_id,
        committee_id,
        to_user_id,
        user_id,
        reason=data.get("reason"),
    )
    if err_dict:
        return error_response(err_dict)
    return jsonify(grant), 201 if grant["created"] else 200


@confidentiality_bp.route("/items/<item_type>/<int:item_id>/access-grants", methods=["GET"])
def list_grants(item_type: str, item_id: int):
    err = item_type_error(item_type)
    if err:
        return err

    user_id, err = int_field(request.args, "user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(request.args, "committee_id")
    if err:
        return err

    index = OrgHierarchyIndex.load()
    if not _may_manage_or_read(index, user_id, item_type, item_id, committee_id):
        return _item_not_found()

    grants = access_grant_service.get_access_grants(
        item_type, item_id,
        include_revoked=bool_arg(request.args.get("include_revoked")),
    )
    return jsonify({"access_grants": grants, "total": len(grants)}), 200


@confidentiality_bp.route("/access-grants/<int:grant_id>", methods=["DELETE"])
def revoke_grant(grant_id: int):
    data = _request_data()
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err
    committee_id, err = int_field(data, "committee_id")
    if err:
        return err

    grant, err_dict = access_grant_service.revoke_access(grant_id, user_id, committee_id)
    if err_dict:
        return error_response(err_dict)
    return jsonify(grant), 200
