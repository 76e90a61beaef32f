"""
TenantModel — Abstract base class for tenant-scoped models.

Sheets are the only aggregate root that carries tenant_id directly;
every child row (values, revisions, value sets, ratings) is reached
through its sheet.  This adds:
  - tenant_id FK column with index
  - query_for_tenant(tenant_id) classmethod
"""

from datetime import datetime, timezone

from sheetflow.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
