"""
Current-state document builder.

Renders a sheet (header + subsheets + authored values) into the canonical
snapshot shape accepted by snapshot_validator.  Used by the revision
ledger callers, the restore coordinator and the snapshot rebuild worker.
"""

from sheetflow.models.sheet import Sheet
from sheetflow.services.field_values import values_for_set


def build_snapshot(sheet: Sheet) -> dict:
    """Canonical document payload for the sheet's current state."""
    values = values_for_set(sheet.id, None)
    subsheets = []
    for sub in sorted(sheet.subsheets, key=lambda s: (s.order_index, s.id)):
        fields = []
        for f in sorted(sub.fields, key=lambda x: (x.order_index, x.id)):
            fv = values.get(f.id)
            fields.append({
                "fieldId": f.id,
                "label": f.label,
                "infoType": f.info_type,
                "sortOrder": f.order_index,
                "required": bool(f.required),
                "uom": f.uom,
                "options": list(f.options or []),
                "value": fv.value if fv is not None else None,
            })
        subsheets.append({"subsheetId": sub.id, "name": sub.name, "fields": fields})

    payload = sheet.header_dict()
    payload["status"] = sheet.status
    payload["subsheets"] = subsheets
    return payload
