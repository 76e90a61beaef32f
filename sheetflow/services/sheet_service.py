"""
Sheet Service — create, read and edit datasheets.

Every write goes through one run_in_transaction call and the same order:

    lock sheet → guard (status, identity headers) → apply header/values
    → audit → status → enqueue rebuild → revision (normal edits only)
    → post-commit: notify + SnapshotWorker.kick

Creation makes the sheet Draft with no revision; revision 1 is minted by
the first edit.  Restore replays a stored document through update_sheet
with WriteMode.RESTORE_REPLAY and mints its own revision afterwards.
"""

import logging

from sheetflow.core.exceptions import (
    CorruptDataError,
    StateConflictError,
    ValidationError,
)
from sheetflow.models import db
from sheetflow.models.audit import write_audit
from sheetflow.models.sheet import (
    HEADER_FIELDS,
    IDENTITY_HEADER_KEYS,
    STATUS_APPROVED,
    STATUS_DRAFT,
    FieldDefinition,
    Sheet,
    Subsheet,
)
from sheetflow.services.field_values import upsert_field_value, values_for_set
from sheetflow.services.helpers.scoped_queries import get_sheet_for_tenant
from sheetflow.services.notification import NotificationService
from sheetflow.services.revision_ledger import create_revision
from sheetflow.services.sheet_lifecycle import (
    WriteMode,
    clear_disposition,
    derive_restored_status,
    ensure_editable,
    mark_edited,
    notification_recipients,
)
from sheetflow.services.sheet_snapshot import build_snapshot
from sheetflow.services.snapshot_validator import SnapshotValidationError, validate_snapshot
from sheetflow.services.snapshot_worker import SnapshotWorker, enqueue_rebuild
from sheetflow.services.transaction import after_commit, run_in_transaction
from sheetflow.services.value_set_service import ensure_requirement_value_set

logger = logging.getLogger(__name__)


def _validated(payload):
    result = validate_snapshot(payload)
    if isinstance(result, SnapshotValidationError):
        raise ValidationError(result.message, details=result.as_details())
    return result


def _sheet_fields(sheet: Sheet) -> dict[int, FieldDefinition]:
    return {f.id: f for sub in sheet.subsheets for f in sub.fields}


def _schedule_post_commit(sheet: Sheet, actor_id, message: str) -> None:
    after_commit(
        NotificationService.notify,
        notification_recipients(sheet, actor_id), sheet.id, message,
        tenant_id=sheet.tenant_id,
    )
    after_commit(SnapshotWorker.kick)


# ═══════════════════════════════════════════════════════════════════════════
#  Create
# ═══════════════════════════════════════════════════════════════════════════


def create_sheet(tenant_id: int, actor_id, payload: dict, *,
                 template_id: int | None = None, is_template: bool = False) -> dict:
    """Create a Draft sheet from a full document payload.

    ``template_id`` records lineage only: it must name an Approved template
    of the same tenant.  The structure always comes from the payload.
    """
    doc = _validated(payload)

    def _work():
        parent_id = None
        if template_id is not None:
            template = get_sheet_for_tenant(template_id, tenant_id)
            if not template.is_template:
                raise ValidationError(f"Sheet {template_id} is not a template",
                                      details={"template_id": "must reference a template"})
            if template.status != STATUS_APPROVED:
                raise ValidationError(
                    f"Template {template_id} is not Approved (status {template.status})",
                    details={"template_id": "template must be Approved"},
                )
            parent_id = template.id

        sheet = Sheet(
            tenant_id=tenant_id,
            status=STATUS_DRAFT,
            is_template=bool(is_template),
            parent_sheet_id=parent_id,
            created_by_id=actor_id,
            modified_by_id=actor_id,
        )
        for key, col in HEADER_FIELDS:
            setattr(sheet, col, doc.header.get(key))
        db.session.add(sheet)
        db.session.flush()

        for sub_index, sub_doc in enumerate(doc.subsheets):
            sub = Subsheet(sheet_id=sheet.id, name=sub_doc.name, order_index=sub_index)
            db.session.add(sub)
            db.session.flush()
            for f_doc in sub_doc.fields:
                field_def = FieldDefinition(
                    subsheet_id=sub.id,
                    label=f_doc.label,
                    info_type=f_doc.info_type,
                    uom=f_doc.uom,
                    order_index=int(f_doc.sort_order),
                    required=f_doc.required,
                    options=list(f_doc.options) or None,
                )
                db.session.add(field_def)
                db.session.flush()
                if f_doc.value is not None:
                    upsert_field_value(sheet.id, field_def.id, f_doc.value, uom=f_doc.uom)

        ensure_requirement_value_set(sheet.id, actor_id)
        write_audit(
            entity_type="sheet", entity_id=sheet.id, action="sheet.create",
            tenant_id=tenant_id, actor_id=actor_id,
            diff={"sheet_name": sheet.sheet_name, "is_template": sheet.is_template,
                  "parent_sheet_id": parent_id},
        )
        enqueue_rebuild(sheet.id)
        logger.info(
            "Sheet %s created (%s)", sheet.id, sheet.sheet_name,
            extra={"sheet_id": sheet.id, "tenant_id": tenant_id, "event_type": "sheet_created"},
        )
        _schedule_post_commit(sheet, actor_id, f"Sheet #{sheet.id} '{sheet.sheet_name}' was created")
        db.session.expire(sheet, ["subsheets"])
        return {**sheet.to_dict(), "document": build_snapshot(sheet)}

    return run_in_transaction(_work)


# ═══════════════════════════════════════════════════════════════════════════
#  Read
# ═══════════════════════════════════════════════════════════════════════════


def get_sheet(tenant_id: int, sheet_id: int) -> dict:
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    return {**sheet.to_dict(), "document": build_snapshot(sheet)}


# ═══════════════════════════════════════════════════════════════════════════
#  Update
# ═══════════════════════════════════════════════════════════════════════════


def _guard_identity_headers(sheet: Sheet, header: dict) -> None:
    if sheet.status == STATUS_DRAFT:
        return
    for key, col in HEADER_FIELDS:
        if key in IDENTITY_HEADER_KEYS and header.get(key) != getattr(sheet, col):
            raise StateConflictError(
                f"Header '{key}' is read-only once the sheet has left Draft (status {sheet.status})",
                current=sheet.status, required=STATUS_DRAFT,
            )


def update_sheet(
    tenant_id: int,
    sheet_id: int,
    actor_id,
    payload: dict,
    *,
    mode: WriteMode = WriteMode.NORMAL_EDIT,
    comment: str | None = None,
) -> dict:
    """Apply a full document to an existing sheet.

    Fields are matched by ``fieldId``; values are upserted in place.

    NORMAL_EDIT:     sheet must be editable, identity headers frozen after
                     Draft, unknown fieldId → ValidationError, status moves
                     to Modified Draft, a revision is minted.
    RESTORE_REPLAY:  no status guard, all headers rewritten, unknown fieldId
                     → CorruptDataError, status re-derived from the document,
                     no revision minted here.

    Returns:
        {"sheet", "previous_status", "changes", "revision_id", "revision_num"}
    """
    if mode is WriteMode.RESTORE_REPLAY:
        result = validate_snapshot(payload)
        if isinstance(result, SnapshotValidationError):
            raise CorruptDataError("Invalid revision snapshot data", resource="Sheet",
                                   resource_id=sheet_id, issues=result.as_details())
        doc = result
    else:
        doc = _validated(payload)

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        if mode is WriteMode.NORMAL_EDIT:
            ensure_editable(sheet)
            _guard_identity_headers(sheet, doc.header)

        known = _sheet_fields(sheet)
        current = values_for_set(sheet.id, None)
        header_changes = {}
        field_changes = {}

        for key, col in HEADER_FIELDS:
            old, new = getattr(sheet, col), doc.header.get(key)
            if old != new:
                setattr(sheet, col, new)
                header_changes[key] = {"old": old, "new": new}

        for f_doc in doc.iter_fields():
            field_def = known.get(f_doc.field_id)
            if field_def is None:
                path = {"fieldId": f"{f_doc.field_id!r} is not a field of sheet {sheet.id}"}
                if mode is WriteMode.RESTORE_REPLAY:
                    raise CorruptDataError("Invalid revision snapshot data", resource="Sheet",
                                           resource_id=sheet.id, issues=path)
                raise ValidationError(f"Unknown field '{f_doc.label}'", details=path)
            existing = current.get(field_def.id)
            if existing is None and f_doc.value is None:
                continue
            _row, previous, changed = upsert_field_value(
                sheet.id, field_def.id, f_doc.value, uom=f_doc.uom,
            )
            if changed:
                field_changes[str(field_def.id)] = {"old": previous, "new": f_doc.value}

        if mode is WriteMode.NORMAL_EDIT:
            previous_status = mark_edited(sheet, actor_id)
        else:
            previous_status = sheet.status
            sheet.status = derive_restored_status(doc.status)
            clear_disposition(sheet)
            sheet.modified_by_id = actor_id

        changes = {}
        if header_changes:
            changes["header"] = header_changes
        if field_changes:
            changes["fields"] = field_changes
        if previous_status != sheet.status:
            changes["status"] = {"old": previous_status, "new": sheet.status}

        write_audit(
            entity_type="sheet", entity_id=sheet.id,
            action="sheet.update" if mode is WriteMode.NORMAL_EDIT else "sheet.restore",
            tenant_id=tenant_id, actor_id=actor_id, diff=changes,
        )
        db.session.flush()
        enqueue_rebuild(sheet.id)

        revision = None
        if mode is WriteMode.NORMAL_EDIT:
            revision = create_revision(
                sheet.id, build_snapshot(sheet),
                actor_id=actor_id, status=sheet.status, comment=comment,
            )

        logger.info(
            "Sheet %s updated (%s): %d header, %d field change(s)",
            sheet.id, mode.value, len(header_changes), len(field_changes),
            extra={"sheet_id": sheet.id, "tenant_id": tenant_id, "event_type": "sheet_updated"},
        )
        _schedule_post_commit(sheet, actor_id, f"Sheet #{sheet.id} '{sheet.sheet_name}' was updated")
        return {
            "sheet": sheet.to_dict(),
            "previous_status": previous_status,
            "changes": changes,
            "revision_id": revision.id if revision else None,
            "revision_num": revision.revision_num if revision else None,
        }

    return run_in_transaction(_work)
