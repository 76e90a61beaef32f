"""
SheetFlow
Value-context domain model.

Models:
    - ValueSet: independently-stateful bundle of field values for one
      context (Requirement / Offered per party / AsBuilt).
    - VarianceOverride: accept/reject annotation on a discrepancy between an
      Offered/AsBuilt value and the Requirement value.
"""

from datetime import datetime, timezone

from sheetflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

CONTEXT_REQUIREMENT = "Requirement"
CONTEXT_OFFERED = "Offered"
CONTEXT_AS_BUILT = "AsBuilt"

# Listing order for value sets of one sheet
CONTEXT_SORT_ORDER = {
    CONTEXT_REQUIREMENT: 1,
    CONTEXT_OFFERED: 2,
    CONTEXT_AS_BUILT: 3,
}

VALUE_SET_CONTEXTS = frozenset(CONTEXT_SORT_ORDER)

VS_STATUS_DRAFT = "Draft"
VS_STATUS_LOCKED = "Locked"
VS_STATUS_VERIFIED = "Verified"

VALUE_SET_STATUSES = frozenset({VS_STATUS_DRAFT, VS_STATUS_LOCKED, VS_STATUS_VERIFIED})

# context → only legal target status (always from Draft)
VALUE_SET_TRANSITIONS = {
    CONTEXT_REQUIREMENT: VS_STATUS_LOCKED,
    CONTEXT_OFFERED: VS_STATUS_LOCKED,
    CONTEXT_AS_BUILT: VS_STATUS_VERIFIED,
}

VARIANCE_ACCEPTED = "DeviatesAccepted"
VARIANCE_REJECTED = "DeviatesRejected"

VARIANCE_STATUSES = frozenset({VARIANCE_ACCEPTED, VARIANCE_REJECTED})


class ValueSet(db.Model):
    """
    One value context attached to a sheet.

    party_id is NULL for Requirement and AsBuilt; Offered sets carry the
    counterparty id.  SQL unique constraints treat NULLs as distinct, so the
    single-Requirement / single-AsBuilt rule is enforced by the idempotent
    ensure path in value_set_service.
    """

    __tablename__ = "value_sets"
    __table_args__ = (
        db.UniqueConstraint("sheet_id", "context", "party_id", name="uq_value_set_context_party"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    context = db.Column(db.String(20), nullable=False, comment="Requirement | Offered | AsBuilt")
    party_id = db.Column(db.Integer, nullable=True, comment="Counterparty for Offered sets")
    status = db.Column(db.String(20), nullable=False, default=VS_STATUS_DRAFT,
                       comment="Draft | Locked | Verified")
    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "value_set_id": self.id,
            "sheet_id": self.sheet_id,
            "context": self.context,
            "party_id": self.party_id,
            "status": self.status,
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ValueSet {self.id}: {self.context} party={self.party_id} [{self.status}]>"


class VarianceOverride(db.Model):
    __tablename__ = "variance_overrides"
    __table_args__ = (
        db.UniqueConstraint("value_set_id", "field_id", name="uq_variance_value_set_field"),
    )

    id = db.Column(db.Integer, primary_key=True)
    value_set_id = db.Column(
        db.Integer, db.ForeignKey("value_sets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    field_id = db.Column(
        db.Integer, db.ForeignKey("field_definitions.id", ondelete="CASCADE"), nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, comment="DeviatesAccepted | DeviatesRejected")
    reviewed_by_id = db.Column(db.Integer, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "value_set_id": self.value_set_id,
            "field_id": self.field_id,
            "status": self.status,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }
