"""
Platform-wide exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once (see utils.errors.register_error_handlers) and get
consistent HTTP status codes everywhere.

    ValidationError     400  malformed input shape
    NotFoundError       404  missing or cross-tenant entity
    StateConflictError  409  legal in form, illegal in current lifecycle state
    UnauthorizedError   401/403  missing identity / missing capability
    CorruptDataError    500  stored data failed validation on read

Usage:
    from sheetflow.core.exceptions import NotFoundError, StateConflictError

    raise NotFoundError(resource="Sheet", resource_id=42)
    raise StateConflictError("Sheet is not editable in status Approved",
                             current="Approved", required=["Draft"])
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: Used for BOTH genuinely missing records AND cross-tenant
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "Sheet", "ValueSet").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)

    @property
    def public_message(self) -> str:
        """Message safe for HTTP responses (no tenant scope)."""
        return f"{self.resource} not found"


class ValidationError(Exception):
    """Raised when input fails shape or business-rule validation.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field paths; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class StateConflictError(Exception):
    """Raised when an operation is illegal given current lifecycle state.

    Covers wrong sheet status, wrong value set status, locked ratings
    blocks and duplicate unique keys.  ``current`` and ``required`` name the
    states so a client can decide whether to refresh, retry or block.
    """

    def __init__(
        self,
        message: str,
        current: str | None = None,
        required: list[str] | str | None = None,
    ) -> None:
        self.message = message
        self.current = current
        self.required = required
        super().__init__(message)

    @property
    def details(self) -> dict:
        d = {}
        if self.current is not None:
            d["current"] = self.current
        if self.required is not None:
            d["required"] = self.required
        return d


class UnauthorizedError(Exception):
    """Raised when the acting identity is missing (401) or lacks a capability (403)."""

    def __init__(self, message: str = "Authentication required", *, forbidden: bool = False) -> None:
        self.message = message
        self.forbidden = forbidden
        super().__init__(message)


class CorruptDataError(Exception):
    """Raised when stored data fails validation on read.

    Signals a data-integrity bug or tampering, never a user mistake.
    Maps to HTTP 500; the underlying issues go to the log only.
    """

    def __init__(self, message: str, *, resource: str | None = None,
                 resource_id: int | None = None, issues: list | dict | None = None) -> None:
        self.message = message
        self.resource = resource
        self.resource_id = resource_id
        self.issues = issues or []
        super().__init__(message)
