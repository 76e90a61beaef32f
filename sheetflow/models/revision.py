"""
SheetFlow
Revision ledger model.

Models:
    - SheetRevision: immutable, sequence-numbered snapshot of a sheet.

Rows are append-only: no update or delete path exists anywhere in the
service layer.  revision_num is assigned by revision_ledger under a row
lock; the unique constraint is the last line if two writers ever raced.
"""

from datetime import datetime, timezone

from sheetflow.models import db


class SheetRevision(db.Model):
    __tablename__ = "sheet_revisions"
    __table_args__ = (
        db.UniqueConstraint("sheet_id", "revision_num", name="uq_sheet_revision_num"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    revision_num = db.Column(db.Integer, nullable=False, comment="1, 2, 3, … per sheet, no gaps")
    snapshot_json = db.Column(db.Text, nullable=False, comment="Serialized validated document")
    status = db.Column(db.String(20), nullable=True, comment="Sheet status captured with the snapshot")
    comment = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_summary(self):
        return {
            "revision_id": self.id,
            "revision_num": self.revision_num,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by_id": self.created_by_id,
            "status": self.status,
            "comment": self.comment,
        }

    def __repr__(self):
        return f"<SheetRevision sheet={self.sheet_id} #{self.revision_num}>"
