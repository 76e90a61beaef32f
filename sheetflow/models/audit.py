"""
SheetFlow
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for lifecycle events.
"""

import json
from datetime import UTC, datetime

from sheetflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"sheet", "value_set", "ratings_block"}

AUDIT_ACTIONS = {
    # Sheet lifecycle
    "sheet.create",
    "sheet.update",
    "sheet.verify",
    "sheet.reject",
    "sheet.approve",
    "sheet.restore",
    # Value contexts
    "value_set.create",
    "value_set.transition",
    "value_set.variance",
    "value_set.values",
    # Ratings
    "ratings.create",
    "ratings.update",
    "ratings.delete",
    "ratings.lock",
    "ratings.unlock",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action.  ``diff_json`` carries {field: {old, new}} for
    sheet edits and a small context dict for everything else.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="sheet | value_set | ratings_block",
    )
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(
        db.String(60), nullable=False,
        comment="sheet.approve | value_set.transition | ratings.lock | …",
    )
    actor_id = db.Column(db.Integer, nullable=True, index=True,
                         comment="Acting user id (NULL for system entries)")

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    tenant_id: int | None = None,
    actor_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back with the mutation
    it describes.
    """
    log = AuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
