"""
Payflow
Notification Service.

Inbox operations over the in-app notifications the approval alerts write.
Delivery beyond the inbox is out of scope; rows are the whole contract.
"""

from datetime import datetime, timezone

from payflow.core.exceptions import NotFoundError, ValidationError
from payflow.models import db
from payflow.models.notification import NOTIFICATION_TYPES, Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", type="info", payment_request_id=None,
               department_id=None, site_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).

        Raises:
            ValidationError: unknown notification type.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(f"Unknown notification type '{type}'",
                                  details={"allowed": sorted(NOTIFICATION_TYPES)})
        notif = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            payment_request_id=payment_request_id,
            department_id=department_id,
            site_id=site_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id=None):
        """Mark a single notification as read.

        Raises:
            NotFoundError: unknown id, or it belongs to another user.
        """
        notif = db.session.get(Notification, notification_id)
        if notif is None or (user_id is not None and notif.user_id != user_id):
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read.  Returns the count updated."""
        now = datetime.now(timezone.utc)
        q = Notification.query.filter_by(user_id=user_id, is_read=False)
        count = q.count()
        if count:
            q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
            db.session.commit()
        return count
