"""
Reporting Access Engine
Blueprint registry and shared request helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from reporting_access.core.exceptions import (
    HierarchyIntegrityError,
    NotFoundError,
    ValidationError,
)
from reporting_access.models.confidentiality import VALID_ITEM_TYPES
from reporting_access.utils.errors import E, api_error
from reporting_access.utils.helpers import parse_int_input

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Attach the standard exception → HTTP mapping to a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.info("Not found: %s", error)
        return jsonify({"error": f"{error.resource} not found", "code": E.NOT_FOUND}), 404

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return jsonify({
            "error": str(error),
            "code": E.VALIDATION_INVALID,
            "details": error.details,
        }), 422

    @bp.errorhandler(HierarchyIntegrityError)
    def _handle_hierarchy(error: HierarchyIntegrityError):
        logger.error("Committee hierarchy integrity error: %s", error)
        return jsonify({
            "error": "Committee hierarchy is misconfigured",
            "code": E.HIERARCHY_INTEGRITY,
        }), 500

    @bp.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return jsonify({"error": error.description}), error.code

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error", "code": E.INTERNAL}), 500


def int_field(source: dict, name: str, *, required: bool = False):
    """Read an integer from a JSON body or query args.

    Returns (value, None) or (None, error_response).
    """
    try:
        value = parse_int_input(source.get(name), name)
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))
    if value is None and required:
        return None, api_error(E.VALIDATION_REQUIRED, f"{name} is required")
    return value, None


def item_type_error(item_type: str):
    """Return a 400 response for an unknown item type, else None."""
    if item_type in VALID_ITEM_TYPES:
        return None
    return api_error(
        E.VALIDATION_INVALID,
        f"Unknown item_type '{item_type}'.",
        details={"valid_types": sorted(VALID_ITEM_TYPES)},
    )


def bool_arg(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes")
