"""
Task Tracking Engine
Notification Blueprint.

Every route acts on the caller's own notifications only; another user's
notification id answers 404.

Endpoints:
    GET /api/v1/notifications?unread_only=&limit=
    GET /api/v1/notifications/unread-count
    PUT /api/v1/notifications/<id>/read
    PUT /api/v1/notifications/read-all
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from taskhub.auth import current_actor
from taskhub.blueprints import bool_arg, register_error_handlers
from taskhub.core.exceptions import ValidationError
from taskhub.services.notification import DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, NotificationService

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    user_id, _ = current_actor()
    limit = request.args.get("limit", DEFAULT_LIST_LIMIT)
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer", details={"limit": "integer"}) from None
    if not 1 <= limit <= MAX_LIST_LIMIT:
        raise ValidationError("limit out of range", details={"limit": f"between 1 and {MAX_LIST_LIMIT}"})
    items = NotificationService.list_for_user(user_id, unread_only=bool_arg("unread_only"), limit=limit)
    return jsonify([n.to_dict() for n in items]), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    user_id, _ = current_actor()
    return jsonify({"unread_count": NotificationService.unread_count(user_id)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PUT"])
def mark_read(notification_id):
    user_id, _ = current_actor()
    notif = NotificationService.mark_read(notification_id, user_id)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["PUT"])
def mark_all_read():
    user_id, _ = current_actor()
    count = NotificationService.mark_all_read(user_id)
    return jsonify({"marked_read": count}), 200
