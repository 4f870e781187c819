"""
Payflow
Notification inbox blueprint.

Endpoints:
  GET    /notifications?user_id=&unread=1     – inbox, newest first
  GET    /notifications/unread-count          – badge count
  POST   /notifications/<id>/read             – mark one read
  POST   /notifications/read-all              – mark all read

The inbox owner is ``user_id`` when given, otherwise the X-User-Id caller.
"""

import logging

from flask import Blueprint, jsonify, request

from payflow.blueprints import acting_user_id, register_error_handlers
from payflow.services.notification_service import NotificationService
from payflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


def _owner_id():
    user_id = request.args.get("user_id", type=int) or acting_user_id()
    if user_id is None:
        return None, api_error(E.VALIDATION_REQUIRED, "user_id or X-User-Id header is required")
    return user_id, None


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    user_id, err = _owner_id()
    if err:
        return err
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_user(
        user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(user_id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    user_id, err = _owner_id()
    if err:
        return err
    return jsonify({"user_id": user_id, "unread_count": NotificationService.unread_count(user_id)})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, user_id=acting_user_id())
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    user_id, err = _owner_id()
    if err:
        return err
    count = NotificationService.mark_all_read(user_id)
    return jsonify({"marked_read": count})
