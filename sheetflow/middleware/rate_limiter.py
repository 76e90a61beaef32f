"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in sheetflow/__init__.py with no default
limits; this module applies limits per route category.

Usage:
    from sheetflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

# Blueprints that carry lifecycle mutations
WRITE_BLUEPRINTS = ("sheets", "revisions", "value_sets", "ratings")


def rate_limit_key():
    """Rate limit key: tenant_id if available, else remote IP."""
    tenant_id = getattr(g, "tenant_id", None)
    if tenant_id:
        return f"tenant:{tenant_id}"
    return flask_request.remote_addr or "unknown"


def _is_read_request() -> bool:
    return flask_request.method in ("GET", "HEAD", "OPTIONS")


def _is_write_request() -> bool:
    return not _is_read_request()


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per tenant, falling back to remote IP):
        - Write requests:  60/minute  (POST/PUT/PATCH/DELETE)
        - Read requests:   200/minute (GET)
        - Health check:    exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key, exempt_when=_is_read_request)(bp)
            limiter.limit(READ_LIMIT, key_func=rate_limit_key, exempt_when=_is_write_request)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: write %s, read %s", WRITE_LIMIT, READ_LIMIT)
