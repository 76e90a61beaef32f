"""
Restore Coordinator — bring a sheet back to a stored revision.

Restore never rewrites history: the chosen snapshot is replayed onto the
live sheet and recorded as one new forward revision.

    lock sheet → load revision (scoped to sheet) → validate stored snapshot
    → replay via update_sheet(RESTORE_REPLAY) → rebuild document
    → create_revision(N+1)

All of it runs in a single transaction; the nested update_sheet call joins
it, so a ledger failure also rolls back the replay.
"""

import logging

from sheetflow.core.exceptions import CorruptDataError, NotFoundError
from sheetflow.services.helpers.scoped_queries import get_sheet_for_tenant
from sheetflow.services.revision_ledger import create_revision, decode_snapshot, get_revision_row
from sheetflow.services.sheet_lifecycle import WriteMode
from sheetflow.services.sheet_service import update_sheet
from sheetflow.services.sheet_snapshot import build_snapshot
from sheetflow.services.snapshot_validator import SnapshotValidationError, validate_snapshot
from sheetflow.services.transaction import run_in_transaction

logger = logging.getLogger(__name__)


def restore_revision(
    tenant_id: int,
    sheet_id: int,
    revision_id: int,
    actor_id,
    comment: str | None = None,
) -> dict:
    """Replay revision *revision_id* onto the sheet and append one new revision.

    Args:
        comment: revision comment, default "Restored from revision #N".

    The new revision always records the sheet status as re-read after the
    replay.

    Returns:
        {"sheet_id", "restored_from_revision_id", "new_revision_id",
         "revision_num", "message"}
    """
    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        source = get_revision_row(sheet.id, revision_id)
        if source is None:
            raise NotFoundError(resource="Revision", resource_id=revision_id)

        try:
            stored = decode_snapshot(source)
        except CorruptDataError as exc:
            raise CorruptDataError(
                "Invalid revision snapshot data",
                resource="SheetRevision", resource_id=source.id,
            ) from exc
        checked = validate_snapshot(stored)
        if isinstance(checked, SnapshotValidationError):
            logger.error(
                "Revision %s of sheet %s failed validation: %s",
                source.id, sheet.id, checked.message,
                extra={"sheet_id": sheet.id, "tenant_id": tenant_id, "event_type": "restore_corrupt"},
            )
            raise CorruptDataError(
                "Invalid revision snapshot data",
                resource="SheetRevision", resource_id=source.id, issues=checked.as_details(),
            )

        update_sheet(tenant_id, sheet.id, actor_id, stored, mode=WriteMode.RESTORE_REPLAY)

        revision = create_revision(
            sheet.id,
            build_snapshot(sheet),
            actor_id=actor_id,
            status=sheet.status,
            comment=comment or f"Restored from revision #{source.revision_num}",
        )
        logger.info(
            "Sheet %s restored from revision #%d as revision #%d",
            sheet.id, source.revision_num, revision.revision_num,
            extra={"sheet_id": sheet.id, "tenant_id": tenant_id, "event_type": "sheet_restored"},
        )
        return {
            "sheet_id": sheet.id,
            "restored_from_revision_id": source.id,
            "new_revision_id": revision.id,
            "revision_num": revision.revision_num,
            "message": f"Sheet restored from revision #{source.revision_num}",
        }

    return run_in_transaction(_work)
