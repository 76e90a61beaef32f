"""
Snapshot Validator — canonical document shape check.

Pure function, no database access, never raises on bad input:

    result = validate_snapshot(candidate)
    if isinstance(result, SnapshotValidationError):
        ...  # client payload → ValidationError (400)
             # stored revision → CorruptDataError (500)
    else:
        doc: ValidDocument = result

The same shape is used for create/update payloads, for the snapshot the
ledger stores, and for the snapshot a restore replays, so anything that
made it into the ledger can be replayed.

Document shape (camelCase keys, as stored):
    {
      "sheetName": str, "sheetDesc": str, ... header keys ...,
      "status": "Draft" | ... (optional),
      "subsheets": [
        {"subsheetId": int?, "name": str, "fields": [
            {"fieldId": int?, "label": str, "infoType": "int|decimal|varchar",
             "sortOrder": number, "required": bool, "uom": str?,
             "options": [str]?, "value": str | number | null}
        ]}
      ]
    }
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from sheetflow.models.sheet import HEADER_FIELDS, INFO_TYPES, SHEET_STATUSES

_INT_RE = re.compile(r"^-?\d+$")
_DECIMAL_RE = re.compile(r"^-?\d+(\.\d+)?$")

# Header rules: key → kind
#   text      non-empty string
#   str       any string
#   pos       number > 0
#   num       any number
#   opt_str   string or missing/None
_HEADER_RULES = {
    "sheetName": "text",
    "sheetDesc": "text",
    "sheetDesc2": "opt_str",
    "clientDocNum": "pos",
    "clientProjectNum": "pos",
    "companyDocNum": "pos",
    "companyProjectNum": "pos",
    "areaId": "pos",
    "packageName": "str",
    "revisionNum": "num",
    "revisionDate": "str",
    "preparedById": "num",
    "preparedByDate": "str",
    "itemLocation": "str",
    "requiredQty": "pos",
    "equipmentName": "str",
    "equipmentTagNum": "str",
    "serviceName": "str",
    "equipSize": "num",
    "modelNum": "opt_str",
    "installPackNum": "opt_str",
    "categoryId": "pos",
    "clientId": "pos",
    "projectId": "pos",
    "manuId": "pos",
    "suppId": "pos",
}


# ── Result types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldSnapshot:
    label: str
    info_type: str
    sort_order: float
    required: bool
    value: str | None
    uom: str | None = None
    options: tuple[str, ...] = ()
    field_id: int | None = None

    def to_payload(self) -> dict:
        return {
            "fieldId": self.field_id,
            "label": self.label,
            "infoType": self.info_type,
            "sortOrder": self.sort_order,
            "required": self.required,
            "uom": self.uom,
            "options": list(self.options),
            "value": self.value,
        }


@dataclass(frozen=True)
class SubsheetSnapshot:
    name: str
    fields: tuple[FieldSnapshot, ...]
    subsheet_id: int | None = None

    def to_payload(self) -> dict:
        return {
            "subsheetId": self.subsheet_id,
            "name": self.name,
            "fields": [f.to_payload() for f in self.fields],
        }


@dataclass(frozen=True)
class ValidDocument:
    """A document that passed validation.  Values are normalised to str | None."""

    header: dict
    subsheets: tuple[SubsheetSnapshot, ...]
    status: str | None = None

    def iter_fields(self):
        for sub in self.subsheets:
            yield from sub.fields

    def to_payload(self) -> dict:
        payload = dict(self.header)
        if self.status is not None:
            payload["status"] = self.status
        payload["subsheets"] = [s.to_payload() for s in self.subsheets]
        return payload


@dataclass(frozen=True)
class SnapshotValidationError:
    """Validation failure: ordered (path, message) issues."""

    issues: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def message(self) -> str:
        if not self.issues:
            return "Invalid document"
        path, msg = self.issues[0]
        extra = f" (+{len(self.issues) - 1} more)" if len(self.issues) > 1 else ""
        return f"Invalid document: {path}: {msg}{extra}"

    def as_details(self) -> dict:
        return {path: msg for path, msg in self.issues}


# ── Primitive checks ─────────────────────────────────────────────────────────


def _is_number(v) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _check_header(candidate: dict, issues: list) -> dict:
    header = {}
    for key, rule in _HEADER_RULES.items():
        v = candidate.get(key)
        if rule == "text":
            if not isinstance(v, str) or not v.strip():
                issues.append((key, "must be a non-empty string"))
        elif rule == "str":
            if not isinstance(v, str):
                issues.append((key, "must be a string"))
        elif rule == "opt_str":
            if v is not None and not isinstance(v, str):
                issues.append((key, "must be a string or null"))
        elif rule == "pos":
            if not _is_number(v) or v <= 0:
                issues.append((key, "must be a number greater than 0"))
        elif rule == "num":
            if not _is_number(v):
                issues.append((key, "must be a number"))
        header[key] = v
    return header


def _normalise_value(v) -> str | None:
    if v is None:
        return None
    if isinstance(v, str):
        return v
    return str(v)


def _check_field(raw, path: str, issues: list) -> FieldSnapshot | None:
    if not isinstance(raw, dict):
        issues.append((path, "must be an object"))
        return None

    start = len(issues)
    label = raw.get("label")
    if not isinstance(label, str) or not label.strip():
        issues.append((f"{path}.label", "must be a non-empty string"))

    info_type = raw.get("infoType")
    if info_type not in INFO_TYPES:
        issues.append((f"{path}.infoType", f"must be one of {sorted(INFO_TYPES)}"))

    sort_order = raw.get("sortOrder")
    if not _is_number(sort_order):
        issues.append((f"{path}.sortOrder", "must be a number"))

    required = raw.get("required")
    if not isinstance(required, bool):
        issues.append((f"{path}.required", "must be a boolean"))

    uom = raw.get("uom")
    if uom is not None and not isinstance(uom, str):
        issues.append((f"{path}.uom", "must be a string"))

    options = raw.get("options")
    if options is None:
        options = []
    elif not isinstance(options, list) or not all(isinstance(o, str) for o in options):
        issues.append((f"{path}.options", "must be a list of strings"))
        options = []

    field_id = raw.get("fieldId")
    if field_id is not None and (not isinstance(field_id, int) or isinstance(field_id, bool)):
        issues.append((f"{path}.fieldId", "must be an integer"))

    raw_value = raw.get("value")
    if raw_value is not None and not isinstance(raw_value, str) and not _is_number(raw_value):
        issues.append((f"{path}.value", "must be a string, number or null"))
        raw_value = None
    value = _normalise_value(raw_value)
    text = (value or "").strip()

    if required is True and not text:
        issues.append((f"{path}.value", "is required"))
    elif text and info_type == "int" and not _INT_RE.match(text):
        issues.append((f"{path}.value", "must be an integer"))
    elif text and info_type == "decimal" and not _DECIMAL_RE.match(text):
        issues.append((f"{path}.value", "must be numeric"))

    if len(issues) > start:
        return None
    return FieldSnapshot(
        label=label,
        info_type=info_type,
        sort_order=sort_order,
        required=required,
        value=value,
        uom=uom,
        options=tuple(options),
        field_id=field_id,
    )


def _check_subsheet(raw, path: str, issues: list) -> SubsheetSnapshot | None:
    if not isinstance(raw, dict):
        issues.append((path, "must be an object"))
        return None

    start = len(issues)
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        issues.append((f"{path}.name", "must be a non-empty string"))

    subsheet_id = raw.get("subsheetId")
    if subsheet_id is not None and (not isinstance(subsheet_id, int) or isinstance(subsheet_id, bool)):
        issues.append((f"{path}.subsheetId", "must be an integer"))

    raw_fields = raw.get("fields")
    fields = []
    if not isinstance(raw_fields, list) or not raw_fields:
        issues.append((f"{path}.fields", "must contain at least one field"))
    else:
        for i, raw_field in enumerate(raw_fields):
            f = _check_field(raw_field, f"{path}.fields[{i}]", issues)
            if f is not None:
                fields.append(f)

    if len(issues) > start:
        return None
    return SubsheetSnapshot(name=name, fields=tuple(fields), subsheet_id=subsheet_id)


# ── Entry point ──────────────────────────────────────────────────────────────


def validate_snapshot(candidate) -> ValidDocument | SnapshotValidationError:
    """Validate an untrusted document payload.

    Returns a ValidDocument on success or a SnapshotValidationError listing
    every issue found; never raises for malformed input.
    """
    if not isinstance(candidate, dict):
        return SnapshotValidationError(issues=(("$", "document must be an object"),))

    issues: list[tuple[str, str]] = []
    header = _check_header(candidate, issues)

    status = candidate.get("status")
    if status is not None and status not in SHEET_STATUSES:
        issues.append(("status", f"must be one of {sorted(SHEET_STATUSES)}"))

    raw_subsheets = candidate.get("subsheets")
    subsheets = []
    if not isinstance(raw_subsheets, list) or not raw_subsheets:
        issues.append(("subsheets", "must contain at least one subsheet"))
    else:
        for i, raw_sub in enumerate(raw_subsheets):
            sub = _check_subsheet(raw_sub, f"subsheets[{i}]", issues)
            if sub is not None:
                subsheets.append(sub)

    if issues:
        return SnapshotValidationError(issues=tuple(issues))

    ordered_header = {key: header.get(key) for key, _col in HEADER_FIELDS}
    return ValidDocument(header=ordered_header, subsheets=tuple(subsheets), status=status)
