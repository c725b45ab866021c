from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models import User, UserFollow
from app.services import notification_service
from app.utils.auth_guard import login_required
from app.utils.pagination import page_args, pagination_block

follow_bp = Blueprint("follow_bp", __name__, url_prefix="/api/follow")


def _summaries(user_ids: list[int]) -> list[dict]:
    if not user_ids:
        return []
    users = {int(u.id): u for u in User.query.filter(User.id.in_(user_ids)).all()}
    return [users[uid].summary_dict() for uid in user_ids if uid in users]


@follow_bp.post("/<int:user_id>")
@login_required
def follow(user_id: int):
    me: User = g.current_user
    target = db.session.get(User, int(user_id))
    if target is None:
        return jsonify({"ok": False, "message": "User not found"}), 404
    if int(target.id) == int(me.id):
        return jsonify({"ok": False, "message": "You cannot follow yourself"}), 400
    if me.is_following(int(target.id)):
        return jsonify({"ok": False, "message": "Already following this user"}), 400

    try:
        db.session.add(UserFollow(follower_id=int(me.id), followed_id=int(target.id)))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"ok": False, "message": "Already following this user"}), 400
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("follow_failed follower_id=%s followed_id=%s", me.id, user_id)
        return jsonify({"ok": False, "message": "Failed to follow user"}), 500

    notification_service.notify_new_follower(follower=me, followed=target)
    return jsonify(
        {
            "ok": True,
            "message": "Now following",
            "following": True,
            "followers": target.follower_count(),
        }
    ), 200


@follow_bp.delete("/<int:user_id>")
@login_required
def unfollow(user_id: int):
    me: User = g.current_user
    row = UserFollow.query.filter_by(follower_id=int(me.id), followed_id=int(user_id)).first()
    if row is None:
        return jsonify({"ok": False, "message": "You are not following this user"}), 400
    try:
        db.session.delete(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("unfollow_failed follower_id=%s followed_id=%s", me.id, user_id)
        return jsonify({"ok": False, "message": "Failed to unfollow user"}), 500
    return jsonify({"ok": True, "message": "Unfollowed", "following": False}), 200


@follow_bp.get("/followers")
@login_required
def followers():
    me: User = g.current_user
    page, limit = page_args(default_limit=50, max_limit=100)
    q = UserFollow.query.filter_by(followed_id=int(me.id)).order_by(UserFollow.created_at.desc(), UserFollow.id.desc())
    total = q.count()
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "ok": True,
            "followers": _summaries([int(r.follower_id) for r in rows]),
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200


@follow_bp.get("/following")
@login_required
def following():
    me: User = g.current_user
    page, limit = page_args(default_limit=50, max_limit=100)
    q = UserFollow.query.filter_by(follower_id=int(me.id)).order_by(UserFollow.created_at.desc(), UserFollow.id.desc())
    total = q.count()
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "ok": True,
            "following": _summaries([int(r.followed_id) for r in rows]),
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200
