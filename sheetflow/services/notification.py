"""
SheetFlow
Notification Service.

Post-commit dispatcher for sheet lifecycle events.  Always invoked through
``after_commit`` so a notification can never be written for a mutation
that rolled back.  Delivery beyond the in-app record is out of scope.

Failures are logged and swallowed: a broken notification table must not
turn a committed approval into an error response.
"""

import logging

from sheetflow.models import db
from sheetflow.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    @staticmethod
    def notify(recipient_ids, sheet_id, message, *, title=None, tenant_id=None):
        """
        Write one notification per distinct recipient in its own short transaction.

        Returns:
            Number of notifications written (0 on failure).
        """
        targets = sorted({r for r in (recipient_ids or []) if r is not None})
        if not targets:
            return 0

        try:
            for rid in targets:
                db.session.add(Notification(
                    tenant_id=tenant_id,
                    recipient_id=rid,
                    sheet_id=sheet_id,
                    title=title or f"Sheet #{sheet_id}",
                    message=message,
                ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception(
                "Notification dispatch failed for sheet %s", sheet_id,
                extra={"sheet_id": sheet_id, "event_type": "notify_failed"},
            )
            return 0

        logger.debug("Notified %d recipient(s) about sheet %s", len(targets), sheet_id)
        return len(targets)

    @staticmethod
    def list_for_recipient(recipient_id, *, tenant_id=None, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if tenant_id is not None:
            q = q.filter_by(tenant_id=tenant_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()) \
                 .offset(offset).limit(limit).all()
        return items, total
