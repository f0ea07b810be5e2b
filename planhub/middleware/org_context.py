"""
Organization Context Middleware - resolves who is calling, for which org.

Authentication itself happens upstream. An upstream auth layer sets
``g.jwt_organization_id``, ``g.jwt_user_id`` and ``g.jwt_email``; this
middleware copies them onto ``g.organization_id``, ``g.actor_id`` and
``g.actor_email`` and checks the organization exists and is active.

When API_AUTH_ENABLED is "false" (development / testing) the same values
are read from the X-Organization-Id, X-User-Id and X-User-Email headers.

Chain order:
  upstream auth  →  org_context.py  →  route handler
"""

import logging

from flask import g, request

from planhub.models import db
from planhub.models.organization import Organization
from planhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip organization context
ORG_SKIP_PREFIXES = (
    "/api/v1/health",
    "/api/v1/plan-items/import/template",
    "/static/",
)


def _header_int(name):
    raw = request.headers.get(name, "")
    raw = raw.strip()
    return int(raw) if raw.isdigit() else None


def init_org_context(app):
    """Register organization context middleware as a before_request hook."""

    auth_enabled = str(app.config.get("API_AUTH_ENABLED", "true")).lower() != "false"

    @app.before_request
    def _org_context():
        g.organization = None
        g.organization_id = getattr(g, "jwt_organization_id", None)
        g.actor_id = getattr(g, "jwt_user_id", None)
        g.actor_email = getattr(g, "jwt_email", None)

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ORG_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        if not auth_enabled:
            if g.organization_id is None:
                g.organization_id = _header_int("X-Organization-Id")
            if g.actor_id is None:
                g.actor_id = _header_int("X-User-Id")
            if g.actor_email is None:
                g.actor_email = request.headers.get("X-User-Email") or None

        if g.organization_id is None:
            return api_error(E.FORBIDDEN, "Organization context required")

        organization = db.session.get(Organization, g.organization_id)
        if organization is None:
            logger.warning("Organization %s not found", g.organization_id)
            return api_error(E.FORBIDDEN, "Organization not found")
        if not organization.is_active:
            logger.warning("Organization %s is deactivated", g.organization_id)
            return api_error(E.FORBIDDEN, "Organization is deactivated")

        g.organization = organization
        return None

    logger.info("Organization context middleware installed (auth_enabled=%s)", auth_enabled)
