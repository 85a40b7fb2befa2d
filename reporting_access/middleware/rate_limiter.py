"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in reporting_access/__init__.py with no
default limits; this module applies granular limits per route category.

Usage:
    from reporting_access.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Blueprints whose endpoints mutate markings, grants and delegations
WRITE_BLUEPRINTS = ("confidentiality", "delegation")

# Read-only lookups; access checks are called once per rendered item list
READ_BLUEPRINTS = ("organization", "audit")

WRITE_LIMIT = "60/minute"
READ_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Confidentiality / delegation: 60/minute
        - Organization / audit reads:   300/minute
        - Health check:                 unlimited (not in a blueprint)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    app.logger.info(
        "Rate limiter configured — write: %s, read: %s", WRITE_LIMIT, READ_LIMIT,
    )
