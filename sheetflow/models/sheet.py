"""
SheetFlow
Datasheet domain model.

Models:
    - Sheet: aggregate root (filled datasheet or template)
    - Subsheet: ordered section of a sheet
    - FieldDefinition: one information template row inside a subsheet
    - FieldValue: (sheet, field, value set) → value binding

Architecture notes:
    - Sheets are never deleted; they only move through SHEET_STATUSES.
    - FieldValue rows are upserted in place.  value_set_id NULL marks the
      sheet's authored values; Requirement/Offered/AsBuilt rows carry the
      owning value set id.
"""

from datetime import datetime, timezone

from sheetflow.models import db
from sheetflow.models.base import TenantModel


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_DRAFT = "Draft"
STATUS_MODIFIED_DRAFT = "Modified Draft"
STATUS_VERIFIED = "Verified"
STATUS_APPROVED = "Approved"
STATUS_REJECTED = "Rejected"

SHEET_STATUSES = frozenset({
    STATUS_DRAFT, STATUS_MODIFIED_DRAFT, STATUS_VERIFIED, STATUS_APPROVED, STATUS_REJECTED,
})

# Statuses in which field values may be written by an ordinary edit
EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_MODIFIED_DRAFT, STATUS_REJECTED)

INFO_TYPES = frozenset({"int", "decimal", "varchar"})

# Snapshot key → Sheet column.  Order is the order headers appear in snapshots.
HEADER_FIELDS = (
    ("sheetName", "sheet_name"),
    ("sheetDesc", "sheet_desc"),
    ("sheetDesc2", "sheet_desc2"),
    ("clientDocNum", "client_doc_num"),
    ("clientProjectNum", "client_project_num"),
    ("companyDocNum", "company_doc_num"),
    ("companyProjectNum", "company_project_num"),
    ("areaId", "area_id"),
    ("packageName", "package_name"),
    ("revisionNum", "revision_num"),
    ("revisionDate", "revision_date"),
    ("preparedById", "prepared_by_id"),
    ("preparedByDate", "prepared_by_date"),
    ("itemLocation", "item_location"),
    ("requiredQty", "required_qty"),
    ("equipmentName", "equipment_name"),
    ("equipmentTagNum", "equipment_tag_num"),
    ("serviceName", "service_name"),
    ("equipSize", "equip_size"),
    ("modelNum", "model_num"),
    ("installPackNum", "install_pack_num"),
    ("categoryId", "category_id"),
    ("clientId", "client_id"),
    ("projectId", "project_id"),
    ("manuId", "manu_id"),
    ("suppId", "supp_id"),
)

# Identity headers: read-only for ordinary edits once the sheet has left Draft
IDENTITY_HEADER_KEYS = frozenset({
    "sheetName", "sheetDesc", "clientDocNum", "companyDocNum", "equipmentTagNum",
})


class Sheet(TenantModel):
    """
    Engineering datasheet — filled instance or template.

    Header columns mirror the snapshot header keys in HEADER_FIELDS so a
    stored revision can be replayed onto the row without translation tables.
    """

    __tablename__ = "sheets"
    __table_args__ = (
        db.Index("ix_sheets_tenant_status", "tenant_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Header
    sheet_name = db.Column(db.String(255), nullable=False)
    sheet_desc = db.Column(db.String(500), nullable=False)
    sheet_desc2 = db.Column(db.String(500), nullable=True)
    client_doc_num = db.Column(db.Integer, nullable=True)
    client_project_num = db.Column(db.Integer, nullable=True)
    company_doc_num = db.Column(db.Integer, nullable=True)
    company_project_num = db.Column(db.Integer, nullable=True)
    area_id = db.Column(db.Integer, nullable=True)
    package_name = db.Column(db.String(100), default="")
    revision_num = db.Column(db.Integer, default=0)
    revision_date = db.Column(db.String(30), default="")
    prepared_by_id = db.Column(db.Integer, nullable=True)
    prepared_by_date = db.Column(db.String(30), default="")
    item_location = db.Column(db.String(255), default="")
    required_qty = db.Column(db.Integer, default=1)
    equipment_name = db.Column(db.String(255), default="")
    equipment_tag_num = db.Column(db.String(100), default="", index=True)
    service_name = db.Column(db.String(255), default="")
    equip_size = db.Column(db.Float, default=0)
    model_num = db.Column(db.String(100), nullable=True)
    install_pack_num = db.Column(db.String(100), nullable=True)
    category_id = db.Column(db.Integer, nullable=True)
    client_id = db.Column(db.Integer, nullable=True)
    project_id = db.Column(db.Integer, nullable=True)
    manu_id = db.Column(db.Integer, nullable=True)
    supp_id = db.Column(db.Integer, nullable=True)

    # Lifecycle
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_DRAFT,
        comment="Draft | Modified Draft | Verified | Approved | Rejected",
    )
    is_template = db.Column(db.Boolean, nullable=False, default=False)
    parent_sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="SET NULL"), nullable=True,
        comment="Template this sheet was filled from",
    )

    verified_by_id = db.Column(db.Integer, nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_id = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reject_comment = db.Column(db.Text, nullable=True)
    approved_by_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    modified_by_id = db.Column(db.Integer, nullable=True)
    modified_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    subsheets = db.relationship(
        "Subsheet", backref="sheet", lazy="select",
        cascade="all, delete-orphan", order_by="Subsheet.order_index",
    )

    def header_dict(self) -> dict:
        return {key: getattr(self, col) for key, col in HEADER_FIELDS}

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            **self.header_dict(),
            "status": self.status,
            "is_template": self.is_template,
            "parent_sheet_id": self.parent_sheet_id,
            "verified_by_id": self.verified_by_id,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "rejected_by_id": self.rejected_by_id,
            "rejected_at": self.rejected_at.isoformat() if self.rejected_at else None,
            "reject_comment": self.reject_comment,
            "approved_by_id": self.approved_by_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "modified_by_id": self.modified_by_id,
            "modified_at": self.modified_at.isoformat() if self.modified_at else None,
        }

    def __repr__(self):
        return f"<Sheet {self.id}: {self.sheet_name} [{self.status}]>"


class Subsheet(db.Model):
    __tablename__ = "subsheets"

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    fields = db.relationship(
        "FieldDefinition", backref="subsheet", lazy="select",
        cascade="all, delete-orphan", order_by="FieldDefinition.order_index",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "sheet_id": self.sheet_id,
            "name": self.name,
            "order_index": self.order_index,
        }


class FieldDefinition(db.Model):
    """One information template row: label, type and ordering of a field."""

    __tablename__ = "field_definitions"

    id = db.Column(db.Integer, primary_key=True)
    subsheet_id = db.Column(
        db.Integer, db.ForeignKey("subsheets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    label = db.Column(db.String(255), nullable=False)
    info_type = db.Column(db.String(10), nullable=False, default="varchar", comment="int | decimal | varchar")
    uom = db.Column(db.String(30), nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    required = db.Column(db.Boolean, nullable=False, default=False)
    options = db.Column(db.JSON, nullable=True, comment='["option A", "option B"]')

    def to_dict(self):
        return {
            "id": self.id,
            "subsheet_id": self.subsheet_id,
            "label": self.label,
            "info_type": self.info_type,
            "uom": self.uom,
            "order_index": self.order_index,
            "required": self.required,
            "options": self.options or [],
        }


class FieldValue(db.Model):
    """
    Value of one field for one sheet, optionally inside a value set.

    At most one row per (sheet_id, field_id, value_set_id).  The unique
    constraint covers non-NULL value sets; the NULL key is guarded by the
    upsert helper in sheet_service.
    """

    __tablename__ = "field_values"
    __table_args__ = (
        db.UniqueConstraint("sheet_id", "field_id", "value_set_id", name="uq_field_value_key"),
        db.Index("ix_field_values_value_set", "value_set_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    field_id = db.Column(
        db.Integer, db.ForeignKey("field_definitions.id", ondelete="CASCADE"), nullable=False,
    )
    value_set_id = db.Column(
        db.Integer, db.ForeignKey("value_sets.id", ondelete="CASCADE"), nullable=True,
    )
    value = db.Column(db.Text, nullable=True)
    uom = db.Column(db.String(30), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "sheet_id": self.sheet_id,
            "field_id": self.field_id,
            "value_set_id": self.value_set_id,
            "value": self.value,
            "uom": self.uom,
        }
