from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models import Conversation, ConversationDeletion, Listing, Message, User
from app.utils.auth_guard import login_required
from app.utils.pagination import page_args, pagination_block
from app.utils.validation import as_int, json_body, pick

conversations_bp = Blueprint("conversations_bp", __name__, url_prefix="/api/conversations")


def conversation_payload(conv: Conversation, viewer_id: int) -> dict:
    users = {
        int(u.id): u
        for u in User.query.filter(User.id.in_(conv.participant_ids)).all()
    }
    participants = [users[uid].summary_dict() for uid in conv.participant_ids if uid in users]
    listing = db.session.get(Listing, int(conv.listing_id)) if conv.listing_id is not None else None
    listing_brief = None
    if listing is not None:
        listing_brief = {
            "id": int(listing.id),
            "title": listing.title,
            "price": float(listing.price or 0.0),
            "currency": listing.currency,
            "status": listing.status,
            "image": listing.images[0].url if listing.images else None,
        }
    last = db.session.get(Message, int(conv.last_message_id)) if conv.last_message_id else None
    body = conv.to_dict(participants=participants, listing=listing_brief, last_message=last)
    body["unread_count"] = conv.unread_count_for(viewer_id)
    return body


def _participant_conversation(conversation_id: int, user_id: int):
    conv = db.session.get(Conversation, int(conversation_id))
    if conv is None:
        return None, (jsonify({"ok": False, "message": "Conversation not found"}), 404)
    if not conv.has_participant(user_id):
        return None, (jsonify({"ok": False, "message": "Not a participant of this conversation"}), 403)
    return conv, None


@conversations_bp.post("")
@conversations_bp.post("/")
@login_required
def get_or_create():
    user: User = g.current_user
    data = json_body()

    other_id = as_int(pick(data, "participant_id", "participantId", "receiver_id", "receiverId"))
    if other_id is None:
        participants = pick(data, "participants", default=[])
        if isinstance(participants, list):
            others = [as_int(p) for p in participants if as_int(p) not in (None, int(user.id))]
            other_id = others[0] if others else (int(user.id) if participants else None)
    if other_id is None:
        return jsonify({"ok": False, "message": "participant_id is required"}), 400
    if int(other_id) == int(user.id):
        return jsonify({"ok": False, "message": "You cannot start a conversation with yourself"}), 400
    if db.session.get(User, int(other_id)) is None:
        return jsonify({"ok": False, "message": "User not found"}), 404

    listing_id = as_int(pick(data, "listing_id", "listingId"))
    if listing_id is not None and db.session.get(Listing, listing_id) is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404

    try:
        conv, created = Conversation.get_or_create(user_a=int(user.id), user_b=int(other_id), listing_id=listing_id)
        conv.restore_for(int(user.id))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        conv = Conversation.query.filter_by(
            listing_id=listing_id,
            user_low_id=min(int(user.id), int(other_id)),
            user_high_id=max(int(user.id), int(other_id)),
        ).first()
        created = False
        if conv is None:
            current_app.logger.exception("conversation_create_conflict")
            return jsonify({"ok": False, "message": "Failed to open conversation"}), 500
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("conversation_create_failed")
        return jsonify({"ok": False, "message": "Failed to open conversation"}), 500

    return jsonify({"ok": True, "conversation": conversation_payload(conv, int(user.id))}), (201 if created else 200)


@conversations_bp.get("")
@conversations_bp.get("/")
@login_required
def list_conversations():
    user: User = g.current_user
    page, limit = page_args(default_limit=20, max_limit=50)
    deleted = db.session.query(ConversationDeletion.conversation_id).filter(
        ConversationDeletion.user_id == int(user.id)
    )
    q = Conversation.for_user(int(user.id)).filter(~Conversation.id.in_(deleted))
    total = q.count()
    rows = (
        q.order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify(
        {
            "ok": True,
            "conversations": [conversation_payload(c, int(user.id)) for c in rows],
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200


@conversations_bp.get("/<int:conversation_id>/unread-count")
@login_required
def unread_count(conversation_id: int):
    user: User = g.current_user
    conv, err = _participant_conversation(conversation_id, int(user.id))
    if err is not None:
        return err
    return jsonify({"ok": True, "conversation_id": int(conv.id), "unread_count": conv.unread_count_for(int(user.id))}), 200


@conversations_bp.delete("/<int:conversation_id>")
@login_required
def soft_delete(conversation_id: int):
    user: User = g.current_user
    conv, err = _participant_conversation(conversation_id, int(user.id))
    if err is not None:
        return err
    if conv.is_deleted_for(int(user.id)):
        return jsonify({"ok": True, "message": "Conversation deleted"}), 200
    try:
        db.session.add(ConversationDeletion(conversation_id=int(conv.id), user_id=int(user.id), created_at=datetime.utcnow()))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("conversation_delete_failed conversation_id=%s", conversation_id)
        return jsonify({"ok": False, "message": "Failed to delete conversation"}), 500
    return jsonify({"ok": True, "message": "Conversation deleted"}), 200
