from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import User, UserRating
from app.models.user import NOTIFICATION_SETTING_FIELDS, PREFERENCE_FIELDS, USER_ROLES
from app.utils.auth_guard import login_required, roles_required
from app.utils.pagination import page_args, pagination_block
from app.utils.validation import as_int, json_body, pick, text

users_bp = Blueprint("users_bp", __name__, url_prefix="/api/users")


def _apply_flags(user: User, data: dict, fields, *, column_prefix: str = "") -> dict:
    errors = {}
    for name in fields:
        if name not in data:
            continue
        value = data[name]
        if not isinstance(value, bool):
            errors[name] = "Must be a boolean"
            continue
        setattr(user, f"{column_prefix}{name}", value)
    return errors


@users_bp.get("/preferences")
@login_required
def get_preferences():
    user: User = g.current_user
    return jsonify(
        {
            "ok": True,
            "preferences": user.preferences_dict(),
            "notification_settings": user.notification_settings_dict(),
        }
    ), 200


@users_bp.patch("/preferences")
@login_required
def update_preferences():
    user: User = g.current_user
    data = json_body()
    errors = _apply_flags(user, data, PREFERENCE_FIELDS)

    settings = data.get("notification_settings")
    if settings is not None:
        if not isinstance(settings, dict):
            errors["notification_settings"] = "Must be an object"
        else:
            errors.update(_apply_flags(user, settings, NOTIFICATION_SETTING_FIELDS, column_prefix="notify_"))

    if errors:
        db.session.rollback()
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("preferences_update_failed user_id=%s", user.id)
        return jsonify({"ok": False, "message": "Failed to update preferences"}), 500
    return jsonify(
        {
            "ok": True,
            "message": "Preferences updated",
            "preferences": user.preferences_dict(),
            "notification_settings": user.notification_settings_dict(),
        }
    ), 200


@users_bp.get("")
@users_bp.get("/")
@roles_required("admin")
def list_users():
    rows = User.query.order_by(User.created_at.desc()).all()
    return jsonify({"ok": True, "users": [u.to_dict() for u in rows], "total": len(rows)}), 200


@users_bp.patch("/<int:user_id>/role")
@roles_required("admin")
def update_role(user_id: int):
    role = text(json_body(), "role").lower()
    if role not in USER_ROLES:
        return jsonify({"ok": False, "message": "Invalid role", "allowed": list(USER_ROLES)}), 400
    user = db.session.get(User, int(user_id))
    if user is None:
        return jsonify({"ok": False, "message": "User not found"}), 404

    user.role = role
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("user_role_update_failed user_id=%s", user_id)
        return jsonify({"ok": False, "message": "Failed to update role"}), 500
    current_app.logger.info("user_role_updated user_id=%s role=%s by=%s", user.id, role, g.current_user.id)
    return jsonify({"ok": True, "message": "Role updated", "user": user.to_dict()}), 200


@users_bp.get("/<int:user_id>")
@login_required
def get_profile(user_id: int):
    user = db.session.get(User, int(user_id))
    if user is None:
        return jsonify({"ok": False, "message": "User not found"}), 404
    return jsonify({"ok": True, "user": user.public_profile(viewer=g.current_user)}), 200


@users_bp.post("/<int:user_id>/rate")
@login_required
def rate_user(user_id: int):
    rater: User = g.current_user
    data = json_body()

    rating = as_int(pick(data, "rating"))
    if isinstance(pick(data, "rating"), bool) or rating is None or not (1 <= rating <= 5):
        return jsonify({"ok": False, "message": "Rating must be between 1 and 5"}), 400
    comment = text(data, "comment")
    if len(comment) > 500:
        return jsonify({"ok": False, "message": "Comment must be at most 500 characters"}), 400
    if int(user_id) == int(rater.id):
        return jsonify({"ok": False, "message": "You cannot rate yourself"}), 400

    rated = db.session.get(User, int(user_id))
    if rated is None:
        return jsonify({"ok": False, "message": "User not found"}), 404

    try:
        row = UserRating.query.filter_by(rater_id=int(rater.id), rated_user_id=int(rated.id)).first()
        if row is None:
            row = UserRating(rater_id=int(rater.id), rated_user_id=int(rated.id))
            db.session.add(row)
        row.rating = rating
        row.comment = comment or None
        db.session.flush()
        rated.recalculate_rating()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("user_rating_failed rater_id=%s rated_id=%s", rater.id, user_id)
        return jsonify({"ok": False, "message": "Failed to save rating"}), 500

    return jsonify(
        {
            "ok": True,
            "message": "Rating saved",
            "average_rating": float(rated.average_rating or 0.0),
            "total_ratings": int(rated.total_ratings or 0),
        }
    ), 200


@users_bp.get("/<int:user_id>/ratings")
def list_ratings(user_id: int):
    if db.session.get(User, int(user_id)) is None:
        return jsonify({"ok": False, "message": "User not found"}), 404
    page, limit = page_args(default_limit=10, max_limit=50)
    q = UserRating.query.filter_by(rated_user_id=int(user_id))
    total = q.count()
    rows = (
        q.order_by(UserRating.created_at.desc(), UserRating.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    raters = {int(u.id): u for u in User.query.filter(User.id.in_({int(r.rater_id) for r in rows})).all()} if rows else {}
    items = [r.to_dict(rater=raters.get(int(r.rater_id))) for r in rows]
    return jsonify(
        {
            "ok": True,
            "ratings": items,
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200
