from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Conversation, Listing, Message, User
from app.segments.segment_conversations import conversation_payload
from app.utils.auth_guard import login_required
from app.utils.validation import as_int, json_body, pick, text

messages_bp = Blueprint("messages_bp", __name__, url_prefix="/api/messages")

MAX_MESSAGE_LENGTH = 2000
THREAD_WINDOW = 50


@messages_bp.post("")
@messages_bp.post("/")
@login_required
def send_message():
    sender: User = g.current_user
    data = json_body()

    receiver_id = as_int(pick(data, "receiver_id", "receiverId", "receiver"))
    listing_id = as_int(pick(data, "listing_id", "listingId", "listing"))
    content = text(data, "content")
    attachments = pick(data, "attachments", default=[])

    errors = {}
    if receiver_id is None:
        errors["receiver_id"] = "receiver_id is required"
    if listing_id is None:
        errors["listing_id"] = "listing_id is required"
    if not (1 <= len(content) <= MAX_MESSAGE_LENGTH):
        errors["content"] = f"Message must be between 1 and {MAX_MESSAGE_LENGTH} characters"
    if not isinstance(attachments, list):
        errors["attachments"] = "Attachments must be a list"
    if errors:
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400

    if int(receiver_id) == int(sender.id):
        return jsonify({"ok": False, "message": "You cannot message yourself"}), 400
    receiver = db.session.get(User, int(receiver_id))
    if receiver is None:
        return jsonify({"ok": False, "message": "Receiver not found"}), 404
    if db.session.get(Listing, int(listing_id)) is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404

    try:
        conv, _created = Conversation.get_or_create(
            user_a=int(sender.id), user_b=int(receiver.id), listing_id=int(listing_id)
        )
        msg = Message(
            conversation_id=int(conv.id),
            listing_id=int(listing_id),
            sender_id=int(sender.id),
            receiver_id=int(receiver.id),
            content=content,
        )
        msg.attachments = [str(a) for a in attachments]
        db.session.add(msg)
        db.session.flush()

        conv.last_message_id = int(msg.id)
        conv.updated_at = datetime.utcnow()
        conv.restore_for(int(sender.id))
        conv.restore_for(int(receiver.id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("message_send_failed sender_id=%s receiver_id=%s", sender.id, receiver_id)
        return jsonify({"ok": False, "message": "Failed to send message"}), 500

    return jsonify(
        {
            "ok": True,
            "message": "Message sent",
            "data": msg.to_dict(),
            "conversation_id": int(conv.id),
        }
    ), 201


@messages_bp.get("/<int:conversation_id>")
@login_required
def get_thread(conversation_id: int):
    user: User = g.current_user
    conv = db.session.get(Conversation, int(conversation_id))
    if conv is None or not conv.has_participant(int(user.id)):
        return jsonify({"ok": False, "message": "Conversation not found"}), 404

    rows = (
        Message.query.filter_by(conversation_id=int(conv.id))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(THREAD_WINDOW)
        .all()
    )
    try:
        Message.query.filter_by(
            conversation_id=int(conv.id),
            receiver_id=int(user.id),
            is_read=False,
        ).update({"is_read": True}, synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("message_mark_read_failed conversation_id=%s", conversation_id)

    messages = [m.to_dict() for m in rows]
    for item in messages:
        if item["receiver_id"] == int(user.id):
            item["is_read"] = True
    return jsonify(
        {
            "ok": True,
            "conversation": conversation_payload(conv, int(user.id)),
            "messages": messages,
        }
    ), 200
