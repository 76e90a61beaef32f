"""
Ratings Lock Coordinator — nameplate/ratings blocks of a sheet.

Blocks are edited freely while unlocked, independent of sheet status.
Locking freezes a block and is only possible once the sheet is Approved;
unlocking is an administrative action (require_role("admin") at the
blueprint) and always succeeds.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from sheetflow.core.exceptions import StateConflictError, ValidationError
from sheetflow.models import db
from sheetflow.models.audit import write_audit
from sheetflow.models.ratings import RatingsBlock, RatingsEntry
from sheetflow.models.sheet import STATUS_APPROVED
from sheetflow.models.value_set import ValueSet
from sheetflow.services.helpers.scoped_queries import get_child_scoped, get_sheet_for_tenant
from sheetflow.services.transaction import run_in_transaction

logger = logging.getLogger(__name__)

LOCKED_MESSAGE = "Ratings block is locked"


def _utcnow():
    return datetime.now(timezone.utc)


def _parse_entries(entries) -> list[dict]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValidationError("entries must be a list", details={"entries": "must be a list"})
    parsed = []
    for i, item in enumerate(entries):
        key = item.get("key") if isinstance(item, dict) else None
        if not isinstance(key, str) or not key.strip():
            raise ValidationError(f"entries[{i}].key is required",
                                  details={f"entries[{i}].key": "must be a non-empty string"})
        value = item.get("value")
        parsed.append({
            "key": key.strip(),
            "value": None if value is None else str(value),
            "uom": item.get("uom"),
        })
    return parsed


def _replace_entries(block: RatingsBlock, entries: list[dict]) -> None:
    block.entries.clear()
    db.session.flush()
    for i, e in enumerate(entries):
        block.entries.append(RatingsEntry(key=e["key"], value=e["value"], uom=e["uom"], order_index=i))


def _check_source_value_set(sheet_id: int, value_set_id) -> None:
    if value_set_id is None:
        return
    found = db.session.execute(
        select(ValueSet.id).where(ValueSet.id == value_set_id, ValueSet.sheet_id == sheet_id)
    ).scalar_one_or_none()
    if found is None:
        raise ValidationError("source_value_set_id does not belong to this sheet",
                              details={"source_value_set_id": value_set_id})


def _log(block: RatingsBlock, tenant_id: int, event: str) -> None:
    logger.info(
        "Ratings block %s %s (sheet %s)", block.id, event, block.sheet_id,
        extra={"sheet_id": block.sheet_id, "tenant_id": tenant_id, "event_type": f"ratings_{event}"},
    )


# ── Read ─────────────────────────────────────────────────────────────────────


def list_ratings_blocks(tenant_id: int, sheet_id: int) -> list[dict]:
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    blocks = db.session.execute(
        select(RatingsBlock).where(RatingsBlock.sheet_id == sheet.id).order_by(RatingsBlock.id)
    ).scalars().all()
    return [b.to_dict() for b in blocks]


def get_ratings_block(tenant_id: int, sheet_id: int, block_id: int) -> dict:
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    block = get_child_scoped(RatingsBlock, block_id, sheet_id=sheet.id)
    return block.to_dict(include_entries=True)


# ── Write ────────────────────────────────────────────────────────────────────


def create_ratings_block(tenant_id: int, sheet_id: int, data: dict, actor_id) -> dict:
    entries = _parse_entries(data.get("entries"))
    block_type = (data.get("block_type") or "nameplate").strip()

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        _check_source_value_set(sheet.id, data.get("source_value_set_id"))
        block = RatingsBlock(
            sheet_id=sheet.id,
            block_type=block_type,
            notes=data.get("notes"),
            source_value_set_id=data.get("source_value_set_id"),
        )
        db.session.add(block)
        db.session.flush()
        _replace_entries(block, entries)
        write_audit(
            entity_type="ratings_block", entity_id=block.id, action="ratings.create",
            tenant_id=tenant_id, actor_id=actor_id,
            diff={"sheet_id": sheet.id, "block_type": block_type, "entries": len(entries)},
        )
        _log(block, tenant_id, "created")
        db.session.flush()
        return block.to_dict(include_entries=True)

    return run_in_transaction(_work)


def update_ratings_block(tenant_id: int, sheet_id: int, block_id: int, data: dict, actor_id) -> dict:
    """Patch notes/block_type/source_value_set_id; ``entries`` (if given) replaces all rows."""
    entries = _parse_entries(data["entries"]) if "entries" in data else None

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        block = get_child_scoped(RatingsBlock, block_id, sheet_id=sheet.id, for_update=True)
        if block.is_locked:
            raise StateConflictError(LOCKED_MESSAGE, current="Locked", required="Unlocked")

        diff = {}
        for attr in ("block_type", "notes", "source_value_set_id"):
            if attr in data and getattr(block, attr) != data[attr]:
                if attr == "source_value_set_id":
                    _check_source_value_set(sheet.id, data[attr])
                diff[attr] = {"old": getattr(block, attr), "new": data[attr]}
                setattr(block, attr, data[attr])
        if entries is not None:
            _replace_entries(block, entries)
            diff["entries"] = len(entries)

        block.updated_at = _utcnow()
        write_audit(
            entity_type="ratings_block", entity_id=block.id, action="ratings.update",
            tenant_id=tenant_id, actor_id=actor_id, diff=diff,
        )
        _log(block, tenant_id, "updated")
        db.session.flush()
        return block.to_dict(include_entries=True)

    return run_in_transaction(_work)


def delete_ratings_block(tenant_id: int, sheet_id: int, block_id: int, actor_id) -> None:
    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        block = get_child_scoped(RatingsBlock, block_id, sheet_id=sheet.id, for_update=True)
        if block.is_locked:
            raise StateConflictError(LOCKED_MESSAGE, current="Locked", required="Unlocked")
        write_audit(
            entity_type="ratings_block", entity_id=block.id, action="ratings.delete",
            tenant_id=tenant_id, actor_id=actor_id, diff={"sheet_id": sheet.id},
        )
        _log(block, tenant_id, "deleted")
        db.session.delete(block)

    run_in_transaction(_work)


def lock_ratings_block(tenant_id: int, sheet_id: int, block_id: int, actor_id) -> dict:
    """Freeze a block.  Already locked → returned unchanged; sheet not Approved → 409."""

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        block = get_child_scoped(RatingsBlock, block_id, sheet_id=sheet.id, for_update=True)
        if block.is_locked:
            return block.to_dict(include_entries=True)
        if sheet.status != STATUS_APPROVED:
            raise StateConflictError(
                "Ratings can only be locked for approved datasheets.",
                current=sheet.status, required=STATUS_APPROVED,
            )
        block.locked_at = _utcnow()
        block.locked_by_id = actor_id
        write_audit(
            entity_type="ratings_block", entity_id=block.id, action="ratings.lock",
            tenant_id=tenant_id, actor_id=actor_id, diff={"locked_by_id": actor_id},
        )
        _log(block, tenant_id, "locked")
        return block.to_dict(include_entries=True)

    return run_in_transaction(_work)


def unlock_ratings_block(tenant_id: int, sheet_id: int, block_id: int, actor_id) -> dict:
    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        block = get_child_scoped(RatingsBlock, block_id, sheet_id=sheet.id, for_update=True)
        previous = block.locked_by_id
        block.locked_at = None
        block.locked_by_id = None
        write_audit(
            entity_type="ratings_block", entity_id=block.id, action="ratings.unlock",
            tenant_id=tenant_id, actor_id=actor_id, diff={"previous_locked_by_id": previous},
        )
        _log(block, tenant_id, "unlocked")
        return block.to_dict(include_entries=True)

    return run_in_transaction(_work)
