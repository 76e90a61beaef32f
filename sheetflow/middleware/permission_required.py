"""
Identity helpers and role decorators for route protection.

Usage:
    actor_id, tenant_id = current_actor()

    @bp.route("/api/v1/sheets/<int:sheet_id>/ratings/<int:block_id>/unlock", methods=["POST"])
    @require_role("admin")
    def unlock(sheet_id, block_id):
        ...

Services trust these checks; they never look at roles themselves.
"""

import functools
import logging

from flask import g

from sheetflow.core.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)


def current_actor() -> tuple[int, int]:
    """Return (actor_id, tenant_id) of the authenticated caller.

    Raises:
        UnauthorizedError: no valid token, or a token without tenant.
    """
    actor_id = getattr(g, "actor_id", None)
    tenant_id = getattr(g, "tenant_id", None)
    if actor_id is None or tenant_id is None:
        raise UnauthorizedError()
    return actor_id, tenant_id


def require_role(*roles: str):
    """
    Decorator: require the caller to hold at least ONE of *roles*.

    Unauthenticated → 401; authenticated without the role → 403.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor_id, _tenant_id = current_actor()
            held = set(getattr(g, "roles", None) or [])
            if not held.intersection(roles):
                logger.warning(
                    "Actor %s denied: requires role %s on %s",
                    actor_id, " or ".join(roles), f.__name__,
                    extra={"actor_id": actor_id, "event_type": "role_denied"},
                )
                raise UnauthorizedError(
                    f"Requires role: {' or '.join(roles)}", forbidden=True,
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
