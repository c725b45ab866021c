from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import or_

from app.extensions import db


class Conversation(db.Model):
    __tablename__ = "conversations"
    __table_args__ = (
        db.UniqueConstraint("listing_id", "user_low_id", "user_high_id", name="uq_conversations_listing_pair"),
    )

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)
    # participants are stored ordered so a pair maps to one row per listing
    user_low_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    user_high_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    last_message_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    @property
    def participant_ids(self) -> list[int]:
        return [int(self.user_low_id), int(self.user_high_id)]

    def has_participant(self, user_id: int) -> bool:
        return int(user_id) in self.participant_ids

    def other_participant_id(self, user_id: int) -> int:
        low, high = self.participant_ids
        return high if int(user_id) == low else low

    @classmethod
    def for_user(cls, user_id: int):
        return cls.query.filter(or_(cls.user_low_id == int(user_id), cls.user_high_id == int(user_id)))

    @classmethod
    def get_or_create(cls, *, user_a: int, user_b: int, listing_id: int | None) -> tuple["Conversation", bool]:
        low, high = sorted((int(user_a), int(user_b)))
        row = cls.query.filter_by(listing_id=listing_id, user_low_id=low, user_high_id=high).first()
        if row is not None:
            return row, False
        row = cls(listing_id=listing_id, user_low_id=low, user_high_id=high)
        db.session.add(row)
        db.session.flush()
        return row, True

    def is_deleted_for(self, user_id: int) -> bool:
        return (
            ConversationDeletion.query.filter_by(conversation_id=int(self.id), user_id=int(user_id)).first()
            is not None
        )

    def restore_for(self, user_id: int) -> None:
        ConversationDeletion.query.filter_by(
            conversation_id=int(self.id), user_id=int(user_id)
        ).delete(synchronize_session=False)

    def unread_count_for(self, user_id: int) -> int:
        return Message.query.filter_by(
            conversation_id=int(self.id),
            receiver_id=int(user_id),
            is_read=False,
        ).count()

    def to_dict(self, *, participants=None, listing=None, last_message=None) -> dict:
        return {
            "id": int(self.id),
            "listing_id": int(self.listing_id) if self.listing_id is not None else None,
            "listing": listing,
            "participants": participants if participants is not None else self.participant_ids,
            "last_message": last_message.to_dict() if last_message is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ConversationDeletion(db.Model):
    __tablename__ = "conversation_deletions"
    __table_args__ = (
        db.UniqueConstraint("conversation_id", "user_id", name="uq_conversation_deletions_conv_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Message(db.Model):
    __tablename__ = "messages"

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id"), nullable=False, index=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    content = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
    attachments_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    @property
    def attachments(self) -> list:
        raw = (self.attachments_json or "").strip()
        if not raw:
            return []
        try:
            data = json.loads(raw)
            return data if isinstance(data, list) else []
        except ValueError:
            return []

    @attachments.setter
    def attachments(self, value: list | None) -> None:
        self.attachments_json = json.dumps(list(value or []), separators=(",", ":"))

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "conversation_id": int(self.conversation_id),
            "listing_id": int(self.listing_id) if self.listing_id is not None else None,
            "sender_id": int(self.sender_id),
            "receiver_id": int(self.receiver_id),
            "content": self.content,
            "is_read": bool(self.is_read),
            "attachments": self.attachments,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
