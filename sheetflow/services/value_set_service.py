"""
Value-Context Engine — Requirement / Offered / AsBuilt value sets.

Responsibilities:
  - Idempotent value set creation (Requirement auto-created; Offered per
    party and AsBuilt created explicitly, pre-filled from Requirement)
  - Per-set status machine: Draft → Locked (Requirement, Offered),
    Draft → Verified (AsBuilt); nothing else
  - Variance overrides on Offered/AsBuilt while the set is Draft
  - Read-only compare aggregation across all contexts

Value sets run their own status machines: the sheet status is never
checked or changed here, so AsBuilt sets can be recorded after approval.
Only the value set status (Draft or not) gates a mutation.

Effective Requirement values: rows of the Requirement set win; fields the
set has no row for fall back to the sheet's authored values.

db.session.commit() happens only through run_in_transaction.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from sheetflow.core.exceptions import NotFoundError, StateConflictError, ValidationError
from sheetflow.models import db
from sheetflow.models.audit import write_audit
from sheetflow.models.sheet import FieldDefinition, Sheet, Subsheet
from sheetflow.models.value_set import (
    CONTEXT_AS_BUILT,
    CONTEXT_OFFERED,
    CONTEXT_REQUIREMENT,
    CONTEXT_SORT_ORDER,
    VALUE_SET_CONTEXTS,
    VALUE_SET_TRANSITIONS,
    VARIANCE_STATUSES,
    VS_STATUS_DRAFT,
    ValueSet,
    VarianceOverride,
)
from sheetflow.services.field_values import upsert_field_value, values_for_set
from sheetflow.services.helpers.scoped_queries import get_sheet_for_tenant
from sheetflow.services.transaction import run_in_transaction

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  Lookups (no commit)
# ═══════════════════════════════════════════════════════════════════════════


def find_value_set(sheet_id: int, context: str, party_id: int | None) -> ValueSet | None:
    stmt = select(ValueSet).where(ValueSet.sheet_id == sheet_id, ValueSet.context == context)
    if party_id is None:
        stmt = stmt.where(ValueSet.party_id.is_(None))
    else:
        stmt = stmt.where(ValueSet.party_id == party_id)
    return db.session.execute(stmt.order_by(ValueSet.id)).scalars().first()


def _insert_value_set(sheet_id: int, context: str, party_id: int | None, actor_id) -> ValueSet:
    vs = ValueSet(sheet_id=sheet_id, context=context, party_id=party_id,
                  status=VS_STATUS_DRAFT, created_by_id=actor_id)
    db.session.add(vs)
    db.session.flush()
    logger.info(
        "ValueSet %s created (%s party=%s) for sheet %s", vs.id, context, party_id, sheet_id,
        extra={"sheet_id": sheet_id, "event_type": "value_set_created"},
    )
    return vs


def ensure_requirement_value_set(sheet_id: int, actor_id) -> ValueSet:
    """Exactly one Requirement set per sheet; created on first touch."""
    existing = find_value_set(sheet_id, CONTEXT_REQUIREMENT, None)
    if existing is not None:
        return existing
    return _insert_value_set(sheet_id, CONTEXT_REQUIREMENT, None, actor_id)


def effective_requirement_values(sheet_id: int, requirement_vs_id: int | None) -> dict:
    """field_id → FieldValue, preferring Requirement-set rows over authored rows."""
    effective = dict(values_for_set(sheet_id, None))
    if requirement_vs_id is not None:
        effective.update(values_for_set(sheet_id, requirement_vs_id))
    return effective


def _prefill_from_requirement(sheet_id: int, target: ValueSet, requirement: ValueSet) -> int:
    """Copy effective Requirement values into *target* for fields it lacks."""
    existing = values_for_set(sheet_id, target.id)
    inserted = 0
    for field_id, src in effective_requirement_values(sheet_id, requirement.id).items():
        if field_id in existing:
            continue
        upsert_field_value(sheet_id, field_id, src.value, uom=src.uom or "", value_set_id=target.id)
        inserted += 1
    return inserted


def _get_value_set_for_sheet(sheet: Sheet, value_set_id: int, *, for_update: bool = False) -> ValueSet:
    """Load a value set and check it belongs to *sheet*.

    Missing or other-tenant → NotFoundError; another sheet of the same
    tenant → ValidationError.
    """
    stmt = select(ValueSet).where(ValueSet.id == value_set_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    vs = db.session.execute(stmt).scalar_one_or_none()
    if vs is None:
        raise NotFoundError(resource="ValueSet", resource_id=value_set_id)
    if vs.sheet_id != sheet.id:
        owner_tenant = db.session.execute(
            select(Sheet.tenant_id).where(Sheet.id == vs.sheet_id)
        ).scalar_one_or_none()
        if owner_tenant != sheet.tenant_id:
            raise NotFoundError(resource="ValueSet", resource_id=value_set_id)
        raise ValidationError("ValueSet does not belong to this sheet",
                              details={"value_set_id": value_set_id})
    return vs


def _sheet_field_ids(sheet_id: int) -> set[int]:
    return set(db.session.execute(
        select(FieldDefinition.id)
        .join(Subsheet, Subsheet.id == FieldDefinition.subsheet_id)
        .where(Subsheet.sheet_id == sheet_id)
    ).scalars().all())


# ═══════════════════════════════════════════════════════════════════════════
#  Operations
# ═══════════════════════════════════════════════════════════════════════════


def ensure_value_set(tenant_id: int, sheet_id: int, context: str,
                     party_id: int | None, actor_id) -> dict:
    """Create-or-return the value set for (context, party).

    Requirement and AsBuilt ignore party_id (always NULL); Offered
    requires it.  Offered/AsBuilt are pre-filled from effective Requirement
    values, inserting only fields they do not have yet.

    Returns:
        {"value_set_id", "context", "party_id", "created": bool, "prefilled": int}
    """
    if context not in VALUE_SET_CONTEXTS:
        raise ValidationError(
            f"Invalid context '{context}'",
            details={"context": f"must be one of {sorted(VALUE_SET_CONTEXTS, key=CONTEXT_SORT_ORDER.get)}"},
        )
    if context == CONTEXT_OFFERED:
        if party_id is None:
            raise ValidationError("party_id is required for Offered value sets",
                                  details={"party_id": "required"})
    else:
        party_id = None

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)

        requirement = find_value_set(sheet.id, CONTEXT_REQUIREMENT, None)
        req_created = requirement is None
        if req_created:
            requirement = _insert_value_set(sheet.id, CONTEXT_REQUIREMENT, None, actor_id)

        if context == CONTEXT_REQUIREMENT:
            vs, created, prefilled = requirement, req_created, 0
        else:
            vs = find_value_set(sheet.id, context, party_id)
            created = vs is None
            if created:
                vs = _insert_value_set(sheet.id, context, party_id, actor_id)
            prefilled = _prefill_from_requirement(sheet.id, vs, requirement)

        if created:
            write_audit(
                entity_type="value_set", entity_id=vs.id, action="value_set.create",
                tenant_id=tenant_id, actor_id=actor_id,
                diff={"sheet_id": sheet.id, "context": context, "party_id": party_id,
                      "prefilled": prefilled},
            )
        return {
            "value_set_id": vs.id,
            "context": vs.context,
            "party_id": vs.party_id,
            "status": vs.status,
            "created": created,
            "prefilled": prefilled,
        }

    return run_in_transaction(_work)


def list_value_sets(tenant_id: int, sheet_id: int) -> list[dict]:
    """Value sets of a sheet ordered by context (Requirement, Offered, AsBuilt), then id."""
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    rows = db.session.execute(
        select(ValueSet).where(ValueSet.sheet_id == sheet.id)
    ).scalars().all()
    rows = sorted(rows, key=lambda vs: (CONTEXT_SORT_ORDER.get(vs.context, 99), vs.id))
    return [vs.to_dict() for vs in rows]


def get_value_set_values(tenant_id: int, sheet_id: int, value_set_id: int) -> dict:
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)
    vs = _get_value_set_for_sheet(sheet, value_set_id)
    values = values_for_set(sheet.id, vs.id)
    variances = _variances_for(vs.id)
    return {
        **vs.to_dict(),
        "values": [
            {"field_id": fid, "value": fv.value, "uom": fv.uom,
             "variance_status": variances.get(fid)}
            for fid, fv in sorted(values.items())
        ],
    }


def set_value_set_values(tenant_id: int, sheet_id: int, value_set_id: int,
                         values: list[dict], actor_id) -> dict:
    """Upsert values of one Draft value set.

    Args:
        values: [{"field_id": int, "value": str|None, "uom": str?}, ...]
    """
    if not isinstance(values, list) or not values:
        raise ValidationError("values must be a non-empty list", details={"values": "required"})

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        vs = _get_value_set_for_sheet(sheet, value_set_id, for_update=True)
        if vs.status != VS_STATUS_DRAFT:
            raise StateConflictError(
                f"Cannot change values when ValueSet status is {vs.status}",
                current=vs.status, required=VS_STATUS_DRAFT,
            )

        known = _sheet_field_ids(sheet.id)
        changes = {}
        for i, item in enumerate(values):
            field_id = item.get("field_id") if isinstance(item, dict) else None
            if field_id not in known:
                raise ValidationError(f"Unknown field_id at values[{i}]",
                                      details={f"values[{i}].field_id": "not a field of this sheet"})
            value = item.get("value")
            value = None if value is None else str(value)
            _row, previous, changed = upsert_field_value(
                sheet.id, field_id, value, uom=item.get("uom"), value_set_id=vs.id,
            )
            if changed:
                changes[str(field_id)] = {"old": previous, "new": value}

        if changes:
            write_audit(
                entity_type="value_set", entity_id=vs.id, action="value_set.values",
                tenant_id=tenant_id, actor_id=actor_id, diff=changes,
            )
        return {"value_set_id": vs.id, "updated": len(changes)}

    return run_in_transaction(_work)


def patch_variance(tenant_id: int, sheet_id: int, value_set_id: int, field_id: int,
                   status: str | None, actor_id) -> dict | None:
    """Set (upsert) or clear (status=None) a variance override.

    Check order: value set exists → belongs to sheet → not Requirement →
    status is Draft.  Returns the override dict, or None when cleared.
    """
    if status is not None and status not in VARIANCE_STATUSES:
        raise ValidationError(
            "Invalid status (DeviatesAccepted, DeviatesRejected, or null)",
            details={"status": f"must be one of {sorted(VARIANCE_STATUSES)} or null"},
        )

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        vs = _get_value_set_for_sheet(sheet, value_set_id, for_update=True)
        if vs.context == CONTEXT_REQUIREMENT:
            raise ValidationError("Variances are not allowed on Requirement ValueSet",
                                  details={"value_set_id": vs.id})
        if vs.status != VS_STATUS_DRAFT:
            raise StateConflictError(
                f"Cannot change variance when ValueSet status is {vs.status}",
                current=vs.status, required=VS_STATUS_DRAFT,
            )
        if field_id not in _sheet_field_ids(sheet.id):
            raise ValidationError("Unknown field_id", details={"field_id": "not a field of this sheet"})

        override = db.session.execute(
            select(VarianceOverride).where(
                VarianceOverride.value_set_id == vs.id,
                VarianceOverride.field_id == field_id,
            )
        ).scalar_one_or_none()
        previous = override.status if override else None

        if status is None:
            if override is not None:
                db.session.delete(override)
            result = None
        else:
            if override is None:
                override = VarianceOverride(value_set_id=vs.id, field_id=field_id)
                db.session.add(override)
            override.status = status
            override.reviewed_by_id = actor_id
            override.reviewed_at = _utcnow()
            db.session.flush()
            result = override.to_dict()

        write_audit(
            entity_type="value_set", entity_id=vs.id, action="value_set.variance",
            tenant_id=tenant_id, actor_id=actor_id,
            diff={"field_id": field_id, "status": {"old": previous, "new": status}},
        )
        return result

    return run_in_transaction(_work)


def transition_value_set_status(tenant_id: int, sheet_id: int, value_set_id: int,
                                target: str, actor_id) -> dict:
    """Advance a value set: Draft→Locked (Requirement/Offered) or Draft→Verified (AsBuilt).

    The current status is re-read under a row lock in the same transaction
    as the write, so two concurrent Draft→Locked requests cannot both win.
    """

    def _work():
        sheet = get_sheet_for_tenant(sheet_id, tenant_id, for_update=True)
        vs = _get_value_set_for_sheet(sheet, value_set_id, for_update=True)

        if vs.status != VS_STATUS_DRAFT:
            raise StateConflictError(
                f"Invalid transition: current status is {vs.status}",
                current=vs.status, required=VS_STATUS_DRAFT,
            )
        allowed = VALUE_SET_TRANSITIONS[vs.context]
        if target != allowed:
            raise StateConflictError(
                f"Invalid transition: {vs.context} ValueSet can only move Draft → {allowed}, not {target}",
                current=vs.status, required=allowed,
            )

        previous = vs.status
        vs.status = target
        vs.status_changed_at = _utcnow()
        write_audit(
            entity_type="value_set", entity_id=vs.id, action="value_set.transition",
            tenant_id=tenant_id, actor_id=actor_id,
            diff={"status": {"old": previous, "new": target}, "context": vs.context},
        )
        logger.info(
            "ValueSet %s %s: %s → %s", vs.id, vs.context, previous, target,
            extra={"sheet_id": sheet.id, "tenant_id": tenant_id, "event_type": "value_set_transition"},
        )
        return {"value_set_id": vs.id, "status": vs.status}

    return run_in_transaction(_work)


# ═══════════════════════════════════════════════════════════════════════════
#  Compare (read-only)
# ═══════════════════════════════════════════════════════════════════════════


def _variances_for(value_set_id: int) -> dict[int, str]:
    rows = db.session.execute(
        select(VarianceOverride).where(VarianceOverride.value_set_id == value_set_id)
    ).scalars().all()
    return {r.field_id: r.status for r in rows}


def _cell(fv, default_uom) -> dict:
    return {
        "value": (fv.value if fv is not None and fv.value is not None else ""),
        "uom": (fv.uom if fv is not None and fv.uom else (default_uom or "")),
    }


def get_compare_data(tenant_id: int, sheet_id: int, party_id: int | None = None) -> dict:
    """Requirement vs Offered vs AsBuilt, one row per field, grouped by subsheet."""
    sheet = get_sheet_for_tenant(sheet_id, tenant_id)

    sets = db.session.execute(
        select(ValueSet).where(ValueSet.sheet_id == sheet.id).order_by(ValueSet.id)
    ).scalars().all()
    requirement = next((s for s in sets if s.context == CONTEXT_REQUIREMENT), None)
    as_built = next((s for s in sets if s.context == CONTEXT_AS_BUILT), None)
    offered = [
        s for s in sets
        if s.context == CONTEXT_OFFERED and (party_id is None or s.party_id == party_id)
    ]

    req_values = effective_requirement_values(sheet.id, requirement.id if requirement else None)
    offered_data = [(s, values_for_set(sheet.id, s.id), _variances_for(s.id)) for s in offered]
    as_built_data = (
        (values_for_set(sheet.id, as_built.id), _variances_for(as_built.id)) if as_built else None
    )

    subsheets = []
    for sub in sorted(sheet.subsheets, key=lambda s: (s.order_index, s.id)):
        fields = []
        for f in sorted(sub.fields, key=lambda x: (x.order_index, x.id)):
            offered_cells = []
            for vs, values, variances in offered_data:
                cell = {"party_id": vs.party_id, "value_set_id": vs.id, **_cell(values.get(f.id), f.uom)}
                if f.id in variances:
                    cell["variance_status"] = variances[f.id]
                offered_cells.append(cell)

            as_built_cell = None
            if as_built_data is not None:
                values, variances = as_built_data
                as_built_cell = _cell(values.get(f.id), f.uom)
                if f.id in variances:
                    as_built_cell["variance_status"] = variances[f.id]

            fields.append({
                "field_id": f.id,
                "label": f.label,
                "order_index": f.order_index,
                "requirement": _cell(req_values.get(f.id), f.uom),
                "offered": offered_cells,
                "as_built": as_built_cell,
            })
        subsheets.append({"subsheet_id": sub.id, "name": sub.name, "fields": fields})

    return {"sheet_id": sheet.id, "subsheets": subsheets}
