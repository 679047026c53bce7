from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.services import NotificationService

api_notification_bp = Blueprint("api_notification", __name__)


@api_notification_bp.get("/me")
@login_required
def my_notifications():
    limit = min(request.args.get("limit", 20, type=int) or 20, 100)
    unread_only = request.args.get("unread") in {"1", "true"}
    items = NotificationService.latest_for_user(current_user.id, limit=limit, unread_only=unread_only)
    return jsonify(
        {
            "unread_count": NotificationService.unread_count(current_user.id),
            "items": [n.to_dict() for n in items],
        }
    )


@api_notification_bp.post("/me/read")
@login_required
def mark_all_read():
    NotificationService.mark_all_read(current_user.id)
    return jsonify({"ok": True})


@api_notification_bp.post("/<int:notification_id>/read")
@login_required
def mark_read(notification_id):
    notification = NotificationService.mark_read(notification_id, current_user.id)
    return jsonify(notification.to_dict())
