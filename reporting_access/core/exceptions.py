"""
Engine-wide exception hierarchy.

Services raise these for conditions that are not ordinary domain outcomes
(those travel as ``(None, err)`` result tuples).  Blueprints register
handlers against these types once and get consistent HTTP status codes
everywhere.

Usage:
    from reporting_access.core.exceptions import NotFoundError, HierarchyIntegrityError

    raise NotFoundError(resource="Committee", resource_id=42)
    raise HierarchyIntegrityError("cycle detected", committee_id=7)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Security note: also used for reads the caller is not allowed to see.
    A 403 would confirm the item exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "Committee", "User").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class HierarchyIntegrityError(Exception):
    """Raised when the committee parent chain is broken or cyclic.

    This is a configuration error in the directory data.  It is surfaced
    as-is and never silently truncated; blueprints map it to HTTP 500.

    Args:
        message: What is wrong with the chain.
        committee_id: The committee whose chain could not be resolved.
    """

    def __init__(self, message: str, committee_id: int | None = None) -> None:
        self.committee_id = committee_id
        if committee_id is not None:
            message = f"{message} (committee id={committee_id})"
        super().__init__(message)
