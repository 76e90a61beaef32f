"""
Revision Ledger — append-only, gapless snapshot sequence per sheet.

Responsibility:
    Mints SheetRevision rows numbered 1, 2, 3, … per sheet, lists them
    newest-first and returns single revisions with their decoded snapshot.

Concurrency:
    next_revision_number() takes ``SELECT ... FOR UPDATE`` on the owning
    sheet row, then reads max(revision_num) + 1.  The sheet row lock covers
    the empty-ledger case (a range lock on zero revision rows locks
    nothing on PostgreSQL), so concurrent writers on the same sheet
    serialize and writers on different sheets never contend.  The number
    is assigned and inserted inside the caller's transaction: a reader
    never observes a hole that is filled in later.

Rules:
    - Never commits.  The caller (run_in_transaction) owns the boundary,
      and a ledger failure aborts the whole mutation.
    - Snapshot is validated before anything is written.
    - Rows are never updated or deleted.
"""

from __future__ import annotations

import json
import logging

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from sheetflow.core.exceptions import CorruptDataError, StateConflictError, ValidationError
from sheetflow.models import db
from sheetflow.models.revision import SheetRevision
from sheetflow.models.sheet import Sheet
from sheetflow.services.snapshot_validator import SnapshotValidationError, validate_snapshot

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _page_limits() -> tuple[int, int]:
    if has_app_context():
        return (
            current_app.config.get("REVISION_PAGE_SIZE_DEFAULT", DEFAULT_PAGE_SIZE),
            current_app.config.get("REVISION_PAGE_SIZE_MAX", MAX_PAGE_SIZE),
        )
    return DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def next_revision_number(sheet_id: int) -> int:
    """Return max(revision_num) + 1 for *sheet_id* while holding the sheet row lock."""
    db.session.execute(
        select(Sheet.id).where(Sheet.id == sheet_id).with_for_update()
    )
    current_max = db.session.execute(
        select(func.max(SheetRevision.revision_num)).where(SheetRevision.sheet_id == sheet_id)
    ).scalar()
    return (current_max or 0) + 1


def create_revision(
    sheet_id: int,
    snapshot: dict,
    *,
    actor_id: int | None,
    status: str | None,
    comment: str | None = None,
) -> SheetRevision:
    """Validate *snapshot* and append it as the next revision of *sheet_id*.

    Raises:
        ValidationError: snapshot does not have the canonical document shape
                         (nothing is written).
        StateConflictError: revision number collision.
    """
    result = validate_snapshot(snapshot)
    if isinstance(result, SnapshotValidationError):
        logger.warning(
            "Refusing revision for sheet %s: %s", sheet_id, result.message,
            extra={"sheet_id": sheet_id, "event_type": "revision_rejected"},
        )
        raise ValidationError(result.message, details=result.as_details())

    revision_num = next_revision_number(sheet_id)
    revision = SheetRevision(
        sheet_id=sheet_id,
        revision_num=revision_num,
        snapshot_json=json.dumps(result.to_payload(), default=str),
        status=status,
        comment=comment,
        created_by_id=actor_id,
    )
    db.session.add(revision)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise StateConflictError(
            f"Revision #{revision_num} already exists for sheet {sheet_id}",
            current=str(revision_num - 1),
        ) from exc

    logger.info(
        "Revision #%d created for sheet %s", revision_num, sheet_id,
        extra={"sheet_id": sheet_id, "event_type": "revision_created"},
    )
    return revision


def list_revisions(sheet_id: int, page: int = 1, page_size: int | None = None) -> tuple[int, list[dict]]:
    """Newest-first page of revision summaries.

    ``page`` is floored at 1; ``page_size`` is clamped to 1..MAX regardless
    of what the caller asked for.
    """
    default_size, max_size = _page_limits()
    page = max(1, int(page or 1))
    if page_size is None:
        page_size = default_size
    page_size = min(max_size, max(1, int(page_size)))

    total = db.session.execute(
        select(func.count(SheetRevision.id)).where(SheetRevision.sheet_id == sheet_id)
    ).scalar() or 0

    rows = db.session.execute(
        select(SheetRevision)
        .where(SheetRevision.sheet_id == sheet_id)
        .order_by(SheetRevision.revision_num.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()

    return total, [r.to_summary() for r in rows]


def decode_snapshot(revision: SheetRevision) -> dict:
    """Deserialize the stored snapshot; undecodable data is corruption, never substituted."""
    try:
        data = json.loads(revision.snapshot_json)
    except (TypeError, ValueError) as exc:
        raise CorruptDataError(
            "Invalid snapshot JSON",
            resource="SheetRevision", resource_id=revision.id,
        ) from exc
    if not isinstance(data, dict):
        raise CorruptDataError(
            "Invalid snapshot JSON",
            resource="SheetRevision", resource_id=revision.id,
        )
    return data


def get_revision_row(sheet_id: int, revision_id: int) -> SheetRevision | None:
    return db.session.execute(
        select(SheetRevision).where(
            SheetRevision.id == revision_id,
            SheetRevision.sheet_id == sheet_id,
        )
    ).scalar_one_or_none()


def get_revision(sheet_id: int, revision_id: int) -> dict | None:
    """One revision scoped to its sheet, with decoded snapshot; None if absent."""
    revision = get_revision_row(sheet_id, revision_id)
    if revision is None:
        return None
    details = revision.to_summary()
    details["sheet_id"] = revision.sheet_id
    details["snapshot"] = decode_snapshot(revision)
    return details


def latest_revision_num(sheet_id: int) -> int:
    return db.session.execute(
        select(func.max(SheetRevision.revision_num)).where(SheetRevision.sheet_id == sheet_id)
    ).scalar() or 0
