"""Standardised API error responses.

Usage
-----
    from reporting_access.utils.errors import api_error, domain_error, E

    return api_error(E.NOT_FOUND, "Item not found")
    return api_error(E.VALIDATION_REQUIRED, "user_id is required")

Services return domain failures as plain dicts built by ``domain_error``;
blueprints pop the ``status`` key and jsonify the rest.
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_ prefix for every code
     • ERR_VALIDATION_* for malformed input, the rest are domain outcomes
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Permissions – HTTP 403
    AUTHORIZATION_DENIED = "ERR_AUTHORIZATION_DENIED"

    # Delegation rules
    SELF_DELEGATION = "ERR_SELF_DELEGATION"
    INVALID_INTERVAL = "ERR_INVALID_INTERVAL"
    OVERLAPPING_DELEGATION = "ERR_OVERLAPPING_DELEGATION"

    # Item resolution
    ITEM_COMMITTEE_UNRESOLVABLE = "ERR_ITEM_COMMITTEE_UNRESOLVABLE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"
    HIERARCHY_INTEGRITY = "ERR_HIERARCHY_INTEGRITY"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.AUTHORIZATION_DENIED: 403,
    E.SELF_DELEGATION: 422,
    E.INVALID_INTERVAL: 422,
    E.OVERLAPPING_DELEGATION: 409,
    E.ITEM_COMMITTEE_UNRESOLVABLE: 422,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.HIERARCHY_INTEGRITY: 500,
}


def status_for(code: str) -> int:
    return _DEFAULT_STATUS.get(code, 400)


def domain_error(code: str, message: str, **details) -> dict:
    """Build the ``err`` half of a service result tuple.

    >>> domain_error(E.NOT_FOUND, "No active marking")
    {'error': 'No active marking', 'code': 'ERR_NOT_FOUND', 'status': 404}
    """
    err = {"error": message, "code": code, "status": status_for(code)}
    if details:
        err["details"] = details
    return err


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or status_for(code)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_response(err: dict):
    """Turn a service ``err`` dict into a Flask ``(response, status)`` tuple."""
    body = dict(err)
    status = body.pop("status", None) or status_for(body.get("code", ""))
    return jsonify(body), status
