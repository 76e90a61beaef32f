"""
SheetFlow
Derived snapshot cache + rebuild queue.

Models:
    - SnapshotRebuildJob: one pending rebuild per sheet (queue row)
    - SheetSnapshotCache: last rebuilt current-state document per sheet

The queue is written inside mutation transactions; the worker in
services/snapshot_worker.py drains it outside of them.
"""

from datetime import datetime, timezone

from sheetflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class SnapshotRebuildJob(db.Model):
    __tablename__ = "snapshot_rebuild_jobs"

    id = db.Column(db.Integer, primary_key=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    attempts = db.Column(db.Integer, nullable=False, default=0)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True,
                           comment="Set while a worker is processing the row")
    last_error = db.Column(db.String(500), nullable=True)
    enqueued_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "sheet_id": self.sheet_id,
            "attempts": self.attempts,
            "claimed_at": self.claimed_at.isoformat() if self.claimed_at else None,
            "last_error": self.last_error,
            "enqueued_at": self.enqueued_at.isoformat() if self.enqueued_at else None,
        }


class SheetSnapshotCache(db.Model):
    __tablename__ = "sheet_snapshot_cache"

    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), primary_key=True,
    )
    snapshot_json = db.Column(db.Text, nullable=False)
    rebuilt_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
