"""
SheetFlow
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from sheetflow.models import db


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.  Written after the owning
    mutation has committed, in its own short transaction.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    recipient_id = db.Column(db.Integer, nullable=False, index=True)
    sheet_id = db.Column(
        db.Integer, db.ForeignKey("sheets.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "recipient_id": self.recipient_id,
            "sheet_id": self.sheet_id,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
