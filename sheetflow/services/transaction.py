"""
Transaction runner with post-commit hooks.

Every lifecycle mutation runs inside exactly one ``run_in_transaction``
call.  Side effects that must not roll back with the mutation (or must not
run at all when it fails) are registered with ``after_commit`` and executed
only after a successful commit, each one best-effort.

Rollback rules:
    - begin fails          → no rollback attempted, begin error propagates
    - callback fails       → rollback, original callback error propagates
    - commit fails         → rollback attempted; the *commit* error propagates
                             even when that rollback fails too
    - IntegrityError       → translated to StateConflictError at this boundary

Nesting: a ``run_in_transaction`` issued while another one is active joins
the outer transaction; its hooks run when the outer one commits.

Usage:
    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        ...
        after_commit(NotificationService.notify, recipients, sheet.id, "...")
        return sheet.to_dict()

    result = run_in_transaction(_work)
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import scoped_session

from sheetflow.core.exceptions import StateConflictError
from sheetflow.models import db

logger = logging.getLogger(__name__)

_pending_hooks: ContextVar[list | None] = ContextVar("sheetflow_post_commit_hooks", default=None)


def after_commit(fn: Callable, *args, **kwargs) -> None:
    """Schedule *fn* to run once the active transaction commits.

    Outside a transaction the hook runs immediately (still best-effort).
    """
    hooks = _pending_hooks.get()
    if hooks is None:
        logger.warning("after_commit(%s) called outside a transaction; running now",
                       getattr(fn, "__name__", fn))
        _run_hook(fn, args, kwargs)
        return
    hooks.append((fn, args, kwargs))


def in_transaction_scope() -> bool:
    return _pending_hooks.get() is not None


def _run_hook(fn: Callable, args: tuple, kwargs: dict) -> None:
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("Post-commit hook %s failed (ignored)", getattr(fn, "__name__", fn))


def _safe_rollback(session, reason: str) -> None:
    try:
        session.rollback()
    except Exception:
        logger.exception("Rollback failed after %s", reason)


def _translate(exc: Exception) -> Exception:
    if isinstance(exc, IntegrityError):
        return StateConflictError(f"Duplicate or conflicting record: {exc.orig}")
    return exc


def run_in_transaction(fn: Callable[[], Any], *, session=None) -> Any:
    """Run *fn* inside one transaction, then fire post-commit hooks.

    Args:
        fn: Zero-argument callable doing the reads/writes.
        session: Session override (defaults to ``db.session``).

    Returns:
        Whatever *fn* returned.
    """
    if in_transaction_scope():
        return fn()

    session = session if session is not None else db.session
    # scoped_session proxies most Session methods but not in_transaction()
    if isinstance(session, scoped_session):
        session = session()

    try:
        if not session.in_transaction():
            session.begin()
    except Exception:
        logger.exception("Could not begin transaction")
        raise

    hooks: list = []
    token = _pending_hooks.set(hooks)
    try:
        try:
            result = fn()
        except Exception as exc:
            _safe_rollback(session, "callback error")
            translated = _translate(exc)
            if translated is exc:
                raise
            raise translated from exc

        try:
            session.commit()
        except Exception as exc:
            _safe_rollback(session, "commit error")
            translated = _translate(exc)
            if translated is exc:
                raise
            raise translated from exc
    finally:
        _pending_hooks.reset(token)

    for hook_fn, args, kwargs in hooks:
        _run_hook(hook_fn, args, kwargs)

    return result
