"""
Rate limiting configuration.

Applies per-route limits using Flask-Limiter. The Limiter instance is
created in planhub/__init__.py with no default limits; this module
applies granular limits per route category.

Usage:
    from planhub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

# CSV import and bulk update rewrite whole plans; each holds the project lock.
PLAN_WRITE_LIMIT = "20/minute"
PLAN_READ_LIMIT = "200/minute"

_HEAVY_ENDPOINTS = (
    "plan_items.import_plan",
    "plan_items.preview_plan_import",
    "plan_items.bulk_update_plan",
)


def organization_rate_limit_key():
    """Dynamic rate limit key: organization_id if available, else remote IP."""
    organization_id = getattr(g, "organization_id", None)
    if organization_id:
        return f"org:{organization_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the plan API.

    Limits (per organization, falling back to remote IP):
        - CSV import / preview / bulk update:  20/minute
        - Everything else on the plan blueprint: 200/minute
        - Health check: exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for endpoint in _HEAVY_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view is not None:
            app.view_functions[endpoint] = limiter.limit(
                PLAN_WRITE_LIMIT, key_func=organization_rate_limit_key,
            )(view)

    bp = app.blueprints.get("plan_items")
    if bp:
        limiter.limit(PLAN_READ_LIMIT, key_func=organization_rate_limit_key)(bp)

    health = app.view_functions.get("health")
    if health is not None:
        limiter.exempt(health)

    app.logger.info(
        "Rate limiter configured - plan writes: %s, plan reads: %s",
        PLAN_WRITE_LIMIT, PLAN_READ_LIMIT,
    )
