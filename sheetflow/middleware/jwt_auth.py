"""
JWT Auth Middleware — parses the bearer token and sets the request identity.

    Authorization: Bearer <token>  →  g.actor_id, g.tenant_id, g.roles

A missing, expired or invalid token leaves the identity empty; endpoints
that need an actor call current_actor(), which turns that into a 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from sheetflow.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor_id = None
        g.tenant_id = None
        g.roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.debug("Invalid token on %s: %s", path, exc)
            return

        try:
            g.actor_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.tenant_id = payload.get("tenant_id")
        g.roles = list(payload.get("roles") or [])
