"""Standardised API error responses.

Usage
-----
    from sheetflow.utils.errors import api_error, E, register_error_handlers

    return api_error(E.NOT_FOUND, "Sheet not found")
    return api_error(E.VALIDATION_REQUIRED, "party_id is required")

    register_error_handlers(sheets_bp)   # typed service exceptions → JSON
"""

from __future__ import annotations

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from sheetflow.core.exceptions import (
    CorruptDataError,
    NotFoundError,
    StateConflictError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500
    CORRUPT_DATA = "ERR_CORRUPT_DATA"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CORRUPT_DATA: 500,
    E.INTERNAL: 500,
}


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
        Extra structured payload (field issues, current/required state).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Blueprint wiring ──────────────────────────────────────────────────

def register_error_handlers(bp) -> None:
    """Map the typed service exceptions to JSON responses on *bp*."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, error.message, details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.debug("Not found: %s", error)
        return api_error(E.NOT_FOUND, error.public_message)

    @bp.errorhandler(StateConflictError)
    def _handle_conflict(error: StateConflictError):
        return api_error(E.CONFLICT_STATE, error.message, details=error.details)

    @bp.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):
        code = E.FORBIDDEN if error.forbidden else E.UNAUTHORIZED
        return api_error(code, error.message)

    @bp.errorhandler(CorruptDataError)
    def _handle_corrupt(error: CorruptDataError):
        logger.error(
            "Corrupt stored data: %s (%s id=%s) issues=%s",
            error.message, error.resource, error.resource_id, error.issues,
        )
        return api_error(E.CORRUPT_DATA, error.message)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unhandled error in %s: %s", bp.name, error)
        return api_error(E.INTERNAL, "Internal server error")
