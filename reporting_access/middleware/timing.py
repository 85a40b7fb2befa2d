"""
Request correlation and timing middleware.

Every API call gets a request id before any service runs.  The id is what
ties a response to the audit rows its marking, grant or delegation changes
wrote (``AuditLog.request_id``), so an incoming X-Request-ID is accepted
only when it fits that column: 1-64 characters from ``[A-Za-z0-9._:-]``.
Anything else is replaced by a fresh id.

After the request, X-Request-ID and X-Request-Duration-Ms are added to the
response.  Refused writes (403) and slow or failing calls are logged with
the blueprint as ``event_type``, so denials can be traced per surface
without logging the item payload.
"""

import logging
import re
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Must fit audit_logs.request_id
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

_SKIP_LOG = frozenset({"/api/v1/health"})

SLOW_THRESHOLD_MS = 1000


def resolve_request_id(header_value: str | None) -> str:
    """Return the caller's request id if it can be stored, else a fresh one."""
    if header_value and _REQUEST_ID_RE.match(header_value):
        return header_value
    return uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    """Register before/after hooks for request correlation and timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers[REQUEST_ID_HEADER] = g.request_id

        if request.path in _SKIP_LOG:
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "request_id": g.request_id,
            "event_type": f"http.{request.blueprint or 'app'}",
        }
        if response.status_code >= 500:
            logger.error("Server error: %s %s %d (%.0fms)",
                         request.method, request.path,
                         response.status_code, duration_ms, extra=extra)
        elif duration_ms > SLOW_THRESHOLD_MS:
            logger.warning("Slow request: %s %s %d (%.0fms)",
                           request.method, request.path,
                           response.status_code, duration_ms, extra=extra)
        elif response.status_code == 403:
            logger.info("Request refused: %s %s", request.method, request.path, extra=extra)
        else:
            logger.debug("Request: %s %s %d (%.0fms)",
                         request.method, request.path,
                         response.status_code, duration_ms, extra=extra)

        return response
