"""
Sheet Lifecycle Service — status machine for datasheets.

Manages sheet status transitions with:
  - Transition validation (SHEET_TRANSITIONS)
  - Editability guard for document edits (header + field values)
  - Side effects (verify/reject/approve stamps, rejection annotation)
  - Audit trail via write_audit, notifications after commit

Statuses:
  Draft → (edit) → Modified Draft → (verify) → Verified → (approve) → Approved
  Draft / Modified Draft / Verified → (reject, comment required) → Rejected
  Rejected → (edit) → Modified Draft   (rejection annotation cleared)

Verified and Approved are closed to ordinary edits.  Only a restore replay
(WriteMode.RESTORE_REPLAY) writes through them, and it re-derives an
editable status from the replayed snapshot.

Usage:
    from sheetflow.services.sheet_lifecycle import approve_sheet

    result = approve_sheet(tenant_id=1, sheet_id=42, actor_id=7)
"""

import enum
import logging
from datetime import datetime, timezone

from sheetflow.core.exceptions import StateConflictError, ValidationError
from sheetflow.models.audit import write_audit
from sheetflow.models.sheet import (
    EDITABLE_STATUSES,
    STATUS_APPROVED,
    STATUS_DRAFT,
    STATUS_MODIFIED_DRAFT,
    STATUS_REJECTED,
    STATUS_VERIFIED,
    Sheet,
)
from sheetflow.services.helpers.scoped_queries import get_sheet_for_tenant
from sheetflow.services.notification import NotificationService
from sheetflow.services.transaction import after_commit, run_in_transaction

logger = logging.getLogger(__name__)


class WriteMode(enum.Enum):
    """How the mutation path treats a write.

    NORMAL_EDIT     status guard on, identity headers frozen after Draft,
                    a revision is minted for the change.
    RESTORE_REPLAY  writes through any status, rewrites every header,
                    re-derives status from the snapshot, mints no revision
                    (the restore coordinator mints exactly one afterwards).
    """

    NORMAL_EDIT = "normal_edit"
    RESTORE_REPLAY = "restore_replay"


SHEET_TRANSITIONS = {
    "edit": {"from": [STATUS_DRAFT, STATUS_MODIFIED_DRAFT, STATUS_REJECTED], "to": STATUS_MODIFIED_DRAFT},
    "verify": {"from": [STATUS_DRAFT, STATUS_MODIFIED_DRAFT], "to": STATUS_VERIFIED},
    "reject": {"from": [STATUS_DRAFT, STATUS_MODIFIED_DRAFT, STATUS_VERIFIED], "to": STATUS_REJECTED},
    "approve": {"from": [STATUS_VERIFIED], "to": STATUS_APPROVED},
}

# Actions executed through transition_sheet (edit goes through sheet_service)
DISPOSITION_ACTIONS = ("verify", "reject", "approve")


def _utcnow():
    return datetime.now(timezone.utc)


def _required_text(statuses) -> str:
    statuses = list(statuses)
    if len(statuses) == 1:
        return statuses[0]
    return ", ".join(statuses[:-1]) + " or " + statuses[-1]


def validate_transition(sheet: Sheet, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = SHEET_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": sheet.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if sheet.status not in rule["from"]:
        return {"valid": False, "from": sheet.status, "to": rule["to"],
                "reason": f"Cannot '{action}' sheet in status {sheet.status} "
                          f"(requires {_required_text(rule['from'])})"}

    return {"valid": True, "from": sheet.status, "to": rule["to"], "reason": None}


def ensure_editable(sheet: Sheet) -> None:
    """Raise StateConflictError unless ordinary edits are allowed."""
    if sheet.status not in EDITABLE_STATUSES:
        raise StateConflictError(
            f"Sheet is not editable in status {sheet.status} "
            f"(requires {_required_text(EDITABLE_STATUSES)})",
            current=sheet.status,
            required=list(EDITABLE_STATUSES),
        )


def clear_rejection(sheet: Sheet) -> None:
    sheet.rejected_by_id = None
    sheet.rejected_at = None
    sheet.reject_comment = None


def mark_edited(sheet: Sheet, actor_id) -> str:
    """Apply the 'edit' transition after a successful write; returns the old status."""
    old = sheet.status
    if old == STATUS_REJECTED:
        clear_rejection(sheet)
    sheet.status = STATUS_MODIFIED_DRAFT
    sheet.modified_by_id = actor_id
    sheet.modified_at = _utcnow()
    return old


def derive_restored_status(snapshot_status: str | None) -> str:
    """Status a sheet takes after replaying a snapshot.

    Draft / Modified Draft snapshots keep their status; anything else
    (disposition states, missing status) lands in Modified Draft.
    """
    if snapshot_status in (STATUS_DRAFT, STATUS_MODIFIED_DRAFT):
        return snapshot_status
    return STATUS_MODIFIED_DRAFT


def clear_disposition(sheet: Sheet) -> None:
    """Drop verification/approval/rejection stamps once a sheet is editable again."""
    sheet.verified_by_id = None
    sheet.verified_at = None
    sheet.approved_by_id = None
    sheet.approved_at = None
    clear_rejection(sheet)


def notification_recipients(sheet: Sheet, actor_id) -> list:
    return [r for r in {sheet.created_by_id, sheet.prepared_by_id} if r is not None and r != actor_id]


def transition_sheet(
    tenant_id: int,
    sheet_id: int,
    action: str,
    actor_id: int,
    *,
    comment: str | None = None,
) -> dict:
    """
    Execute a sheet disposition transition (verify / reject / approve).

    Order: pre-checks → lock + validate → execute → audit → notify after commit.

    Returns:
        {"sheet_id", "action", "previous_status", "new_status", "sheet"}
    """
    if action not in DISPOSITION_ACTIONS:
        raise ValidationError(
            f"Unknown action '{action}'",
            details={"action": f"must be one of {list(DISPOSITION_ACTIONS)}"},
        )
    comment = (comment or "").strip() or None
    if action == "reject" and not comment:
        raise ValidationError("A rejection comment is required", details={"comment": "required"})

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        check = validate_transition(sheet, action)
        if not check["valid"]:
            raise StateConflictError(
                check["reason"], current=sheet.status,
                required=SHEET_TRANSITIONS[action]["from"],
            )

        previous = sheet.status
        now = _utcnow()
        sheet.status = check["to"]

        if action == "verify":
            sheet.verified_by_id = actor_id
            sheet.verified_at = now
            clear_rejection(sheet)
        elif action == "reject":
            sheet.rejected_by_id = actor_id
            sheet.rejected_at = now
            sheet.reject_comment = comment
        elif action == "approve":
            sheet.approved_by_id = actor_id
            sheet.approved_at = now

        write_audit(
            entity_type="sheet", entity_id=sheet.id, action=f"sheet.{action}",
            tenant_id=tenant_id, actor_id=actor_id,
            diff={"status": {"old": previous, "new": sheet.status},
                  **({"comment": comment} if comment else {})},
        )
        logger.info(
            "Sheet %s %s: %s → %s", sheet.id, action, previous, sheet.status,
            extra={"sheet_id": sheet.id, "tenant_id": tenant_id, "event_type": f"sheet_{action}"},
        )

        after_commit(
            NotificationService.notify,
            notification_recipients(sheet, actor_id), sheet.id,
            f"Sheet #{sheet.id} '{sheet.sheet_name}' is now {sheet.status}",
            tenant_id=tenant_id,
        )
        return {
            "sheet_id": sheet.id,
            "action": action,
            "previous_status": previous,
            "new_status": sheet.status,
            "sheet": sheet.to_dict(),
        }

    return run_in_transaction(_work)


def verify_sheet(tenant_id: int, sheet_id: int, actor_id: int) -> dict:
    return transition_sheet(tenant_id, sheet_id, "verify", actor_id)


def reject_sheet(tenant_id: int, sheet_id: int, actor_id: int, comment: str | None) -> dict:
    return transition_sheet(tenant_id, sheet_id, "reject", actor_id, comment=comment)


def approve_sheet(tenant_id: int, sheet_id: int, actor_id: int) -> dict:
    return transition_sheet(tenant_id, sheet_id, "approve", actor_id)


def get_available_transitions(tenant_id: int, sheet_id: int) -> dict:
    """Return all actions legal from the sheet's current status."""
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    available = []
    for action, rule in SHEET_TRANSITIONS.items():
        if sheet.status in rule["from"]:
            available.append({"action": action, "to": rule["to"]})
    return {"sheet_id": sheet.id, "status": sheet.status, "available": available}
