from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models import Notification, PushToken, User
from app.models.user import NOTIFICATION_SETTING_FIELDS
from app.utils.auth_guard import login_required, optional_auth
from app.utils.pagination import page_args, pagination_block
from app.utils.validation import as_int, json_body, pick, text

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@notifications_bp.get("/")
@login_required
def list_notifications():
    user: User = g.current_user
    page, limit = page_args(default_limit=20, max_limit=50)
    q = Notification.query.filter_by(recipient_id=int(user.id))
    total = q.count()
    rows = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    unread = Notification.query.filter_by(recipient_id=int(user.id), is_read=False).count()
    return jsonify(
        {
            "ok": True,
            "notifications": [x.to_dict() for x in rows],
            "unread_count": unread,
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200


@notifications_bp.put("/read")
@login_required
def mark_read():
    user: User = g.current_user
    ids = pick(json_body(), "notification_ids", "notificationIds")
    q = Notification.query.filter_by(recipient_id=int(user.id), is_read=False)
    if ids is not None:
        if not isinstance(ids, list):
            return jsonify({"ok": False, "message": "notification_ids must be a list"}), 400
        parsed = [as_int(x) for x in ids]
        q = q.filter(Notification.id.in_([x for x in parsed if x is not None]))
    try:
        updated = q.update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("notifications_mark_read_failed user_id=%s", user.id)
        return jsonify({"ok": False, "message": "Failed to mark notifications read"}), 500
    return jsonify({"ok": True, "updated": int(updated or 0)}), 200


@notifications_bp.put("/settings")
@login_required
def update_settings():
    user: User = g.current_user
    data = json_body()
    settings = data.get("settings") if isinstance(data.get("settings"), dict) else data
    errors = {}
    for name in NOTIFICATION_SETTING_FIELDS:
        if name not in settings:
            continue
        if not isinstance(settings[name], bool):
            errors[name] = "Must be a boolean"
            continue
        setattr(user, f"notify_{name}", settings[name])
    if errors:
        db.session.rollback()
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("notification_settings_update_failed user_id=%s", user.id)
        return jsonify({"ok": False, "message": "Failed to update settings"}), 500
    return jsonify({"ok": True, "notification_settings": user.notification_settings_dict()}), 200


@notifications_bp.delete("/<int:notification_id>")
@login_required
def delete_notification(notification_id: int):
    user: User = g.current_user
    row = Notification.query.filter_by(id=int(notification_id), recipient_id=int(user.id)).first()
    if row is None:
        return jsonify({"ok": False, "message": "Notification not found"}), 404
    try:
        db.session.delete(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("notification_delete_failed id=%s", notification_id)
        return jsonify({"ok": False, "message": "Failed to delete notification"}), 500
    return jsonify({"ok": True, "message": "Notification deleted"}), 200


@notifications_bp.post("/save-token")
@optional_auth
def save_push_token():
    user = g.current_user
    data = json_body()
    token = text(data, "expo_push_token", "expoPushToken", "token")
    if not token:
        return jsonify({"ok": False, "message": "expo_push_token is required"}), 400
    device_info = data.get("device_info") or data.get("deviceInfo")

    row = PushToken.query.filter_by(expo_push_token=token).first()
    created = row is None
    if row is None:
        row = PushToken(expo_push_token=token)
        db.session.add(row)
    if row.user_id is not None and (user is None or int(row.user_id) != int(user.id)):
        # owned by another account; a caller may only claim guest tokens
        return jsonify({"ok": True, "message": "Token already registered", "token": row.to_dict()}), 200
    if user is not None:
        row.user_id = int(user.id)
    if isinstance(device_info, dict):
        row.device_info = device_info
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"ok": False, "message": "Token already registered"}), 409
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("push_token_save_failed")
        return jsonify({"ok": False, "message": "Failed to save token"}), 500
    return jsonify({"ok": True, "message": "Token saved", "token": row.to_dict()}), (201 if created else 200)
