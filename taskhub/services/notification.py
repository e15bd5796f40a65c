"""
Task Tracking Engine
Notification Service.

Central service for creating and querying per-user notifications.
Triggered by assignment and status-change events in the task services.

Design choice: notifications are written AFTER the primary mutation has
committed, as best-effort writes (``notify_safely``). A failed notification
insert is rolled back and logged; it never undoes or fails the task change.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from taskhub.core.exceptions import NotFoundError, ValidationError
from taskhub.models import db
from taskhub.models.notification import NOTIFICATION_TYPES, Notification

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, task_id, notification_type, title, message=""):
        """
        Create a single notification record with is_read=False.

        Returns:
            The created Notification instance (already committed).
        """
        if notification_type not in NOTIFICATION_TYPES:
            raise ValidationError(
                f"Invalid notification_type. Must be one of: {sorted(NOTIFICATION_TYPES)}",
                details={"notification_type": notification_type},
            )
        notif = Notification(
            user_id=user_id,
            task_id=task_id,
            notification_type=notification_type,
            title=title,
            message=message,
        )
        db.session.add(notif)
        db.session.commit()
        logger.info(
            "Notification created id=%s user_id=%s type=%s",
            notif.id, user_id, notification_type,
            extra={"task_id": task_id, "user_id": user_id},
        )
        return notif

    @staticmethod
    def notify_safely(user_id, task_id, notification_type, title, message=""):
        """Best-effort ``notify``: store failures are logged and swallowed.

        Returns the Notification, or None when the write failed.
        """
        try:
            return NotificationService.notify(user_id, task_id, notification_type, title, message)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(
                "Notification write failed user_id=%s task_id=%s type=%s",
                user_id, task_id, notification_type,
                extra={"task_id": task_id, "user_id": user_id},
            )
            return None

    @staticmethod
    def broadcast_safely(user_ids, task_id, notification_type, title, message="", *, exclude=None):
        """Best-effort fan-out to several users, skipping ``exclude`` and duplicates."""
        sent = []
        for uid in dict.fromkeys(u for u in user_ids if u is not None):
            if uid == exclude:
                continue
            notif = NotificationService.notify_safely(uid, task_id, notification_type, title, message)
            if notif is not None:
                sent.append(notif)
        return sent

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=DEFAULT_LIST_LIMIT):
        """
        Retrieve notifications for a user, newest first.
        """
        limit = max(1, min(int(limit or DEFAULT_LIST_LIMIT), MAX_LIST_LIMIT))
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        return (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read.

        Raises NotFoundError when the notification does not exist OR belongs
        to another user, so existence never leaks across users.
        """
        notif = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if notif is None:
            raise NotFoundError("Notification", notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read. Returns the count updated."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query
            .filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
