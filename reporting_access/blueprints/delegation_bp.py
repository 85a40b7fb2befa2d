"""
Delegation Blueprint — time-bounded transfer of authority.

Endpoints:
    POST   /api/v1/delegations
           Body: { "delegator_id", "delegate_id", "scope", "start_date", "end_date",
                   "reason", "user_id" (creator, defaults to delegator) }
           Returns: 201 with the new delegation.

    GET    /api/v1/delegations
           Query: delegator_id, delegate_id, include_inactive

    DELETE /api/v1/delegations/<id>               Body/query: user_id

    GET    /api/v1/users/<id>/active-delegation   Query: as_of (YYYY-MM-DD)

    POST   /api/v1/delegations/expire             Body: { "user_id" (admin), "today" }
"""

import logging

from flask import Blueprint, jsonify, request

from reporting_access.blueprints import bool_arg, int_field, register_error_handlers
from reporting_access.models import db
from reporting_access.models.delegation import DelegationScope
from reporting_access.models.organization import SystemRole, User
from reporting_access.services import delegation_service
from reporting_access.utils.errors import E, api_error, error_response
from reporting_access.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

delegation_bp = Blueprint("delegation", __name__, url_prefix="/api/v1")
register_error_handlers(delegation_bp)


@delegation_bp.route("/delegations", methods=["POST"])
def create_delegation():
    data = request.get_json(silent=True) or {}

    delegator_id, err = int_field(data, "delegator_id", required=True)
    if err:
        return err
    delegate_id, err = int_field(data, "delegate_id", required=True)
    if err:
        return err
    created_by, err = int_field(data, "user_id")
    if err:
        return err

    scope = data.get("scope") or DelegationScope.FULL.value
    if not isinstance(scope, str):
        return api_error(E.VALIDATION_INVALID, "scope must be a string")

    try:
        start_date = parse_date_input(data.get("start_date"))
        end_date = parse_date_input(data.get("end_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    delegation, err_dict = delegation_service.create_delegation(
        delegator_id,
        delegate_id,
        scope.strip(),
        start_date,
        end_date,
        reason=data.get("reason"),
        created_by_user_id=created_by,
    )
    if err_dict:
        return error_response(err_dict)
    return jsonify(delegation), 201


@delegation_bp.route("/delegations", methods=["GET"])
def list_delegations():
    delegator_id, err = int_field(request.args, "delegator_id")
    if err:
        return err
    delegate_id, err = int_field(request.args, "delegate_id")
    if err:
        return err

    items = delegation_service.list_delegations(
        delegator_id=delegator_id,
        delegate_id=delegate_id,
        include_inactive=bool_arg(request.args.get("include_inactive")),
    )
    return jsonify({"delegations": items, "total": len(items)}), 200


@delegation_bp.route("/delegations/<int:delegation_id>", methods=["DELETE"])
def revoke_delegation(delegation_id: int):
    data = request.args.to_dict()
    data.update(request.get_json(silent=True) or {})
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err

    delegation, err_dict = delegation_service.revoke_delegation(delegation_id, user_id)
    if err_dict:
        return error_response(err_dict)
    return jsonify(delegation), 200


@delegation_bp.route("/users/<int:user_id>/active-delegation", methods=["GET"])
def active_delegation(user_id: int):
    try:
        as_of = parse_date_input(request.args.get("as_of"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    current = delegation_service.active_delegation_for(user_id, as_of)
    all_current = delegation_service.active_delegations_for(user_id, as_of)
    return jsonify({
        "user_id": user_id,
        "delegation": current.to_dict() if current else None,
        "delegations": [d.to_dict() for d in all_current],
    }), 200


@delegation_bp.route("/delegations/expire", methods=["POST"])
def expire_delegations():
    data = request.get_json(silent=True) or {}
    user_id, err = int_field(data, "user_id", required=True)
    if err:
        return err

    user = db.session.get(User, user_id)
    if user is None or user.role is not SystemRole.ADMIN:
        return api_error(E.AUTHORIZATION_DENIED, "Only administrators may expire delegations")

    try:
        today = parse_date_input(data.get("today"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    result = delegation_service.expire_lapsed_delegations(today)
    return jsonify(result), 200
