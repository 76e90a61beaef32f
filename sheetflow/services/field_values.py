"""
FieldValue upsert + lookup helpers.

FieldValue rows are upserted in place, never deleted and re-inserted, so
a failed or partial write can never erase previously committed values
mid-transaction.  Uniqueness of (sheet_id, field_id, value_set_id) holds
for the NULL value-set key too because every write goes through
upsert_field_value().
"""

from sqlalchemy import select

from sheetflow.models import db
from sheetflow.models.sheet import FieldValue


def _key_clause(sheet_id: int, field_id: int, value_set_id: int | None):
    clauses = [FieldValue.sheet_id == sheet_id, FieldValue.field_id == field_id]
    if value_set_id is None:
        clauses.append(FieldValue.value_set_id.is_(None))
    else:
        clauses.append(FieldValue.value_set_id == value_set_id)
    return clauses


def upsert_field_value(
    sheet_id: int,
    field_id: int,
    value: str | None,
    *,
    uom: str | None = None,
    value_set_id: int | None = None,
) -> tuple[FieldValue, str | None, bool]:
    """Insert or update one value.

    Returns:
        (row, previous_value, changed)
    """
    row = db.session.execute(
        select(FieldValue).where(*_key_clause(sheet_id, field_id, value_set_id))
    ).scalar_one_or_none()

    if row is None:
        row = FieldValue(
            sheet_id=sheet_id, field_id=field_id, value_set_id=value_set_id,
            value=value, uom=uom,
        )
        db.session.add(row)
        db.session.flush()
        return row, None, value is not None

    previous = row.value
    changed = previous != value or (uom is not None and row.uom != uom)
    if changed:
        row.value = value
        if uom is not None:
            row.uom = uom
    return row, previous, changed


def values_for_set(sheet_id: int, value_set_id: int | None) -> dict[int, FieldValue]:
    """field_id → FieldValue for one value set (None = authored values)."""
    stmt = select(FieldValue).where(FieldValue.sheet_id == sheet_id)
    if value_set_id is None:
        stmt = stmt.where(FieldValue.value_set_id.is_(None))
    else:
        stmt = stmt.where(FieldValue.value_set_id == value_set_id)
    return {r.field_id: r for r in db.session.execute(stmt).scalars().all()}
