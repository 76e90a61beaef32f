"""
SheetFlow
Ratings domain model.

Models:
    - RatingsBlock: nameplate/ratings block attached to a sheet, lockable
      once the sheet is Approved.
    - RatingsEntry: ordered key/value/uom rows of a block.
"""

from datetime import datetime, timezone

from sheetflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class RatingsBlock(db.Model):
    __tablename__ = "ratings_blocks"

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    block_type = db.Column(db.String(50), nullable=False, default="nameplate")
    notes = db.Column(db.Text, nullable=True)
    source_value_set_id = db.Column(
        db.Integer, db.ForeignKey("value_sets.id", ondelete="SET NULL"), nullable=True,
    )
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    locked_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    entries = db.relationship(
        "RatingsEntry", backref="block", lazy="select",
        cascade="all, delete-orphan", order_by="RatingsEntry.order_index",
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def to_dict(self, include_entries: bool = False):
        d = {
            "ratings_block_id": self.id,
            "sheet_id": self.sheet_id,
            "block_type": self.block_type,
            "notes": self.notes,
            "source_value_set_id": self.source_value_set_id,
            "is_locked": self.is_locked,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "locked_by_id": self.locked_by_id,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_entries:
            d["entries"] = [e.to_dict() for e in self.entries]
        return d


class RatingsEntry(db.Model):
    __tablename__ = "ratings_entries"

    id = db.Column(db.Integer, primary_key=True)
    ratings_block_id = db.Column(
        db.Integer, db.ForeignKey("ratings_blocks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    key = db.Column(db.String(100), nullable=False)
    value = db.Column(db.String(255), nullable=True)
    uom = db.Column(db.String(30), nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "key": self.key,
            "value": self.value,
            "uom": self.uom,
            "order_index": self.order_index,
        }
