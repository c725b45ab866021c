from __future__ import annotations

from datetime import datetime

from app.extensions import db


TYPE_NEW_LISTING = "NEW_LISTING"
TYPE_LISTING_UPDATE = "LISTING_UPDATE"
TYPE_PRICE_CHANGE = "PRICE_CHANGE"
TYPE_STATUS_CHANGE = "STATUS_CHANGE"
TYPE_FOLLOW = "FOLLOW"

NOTIFICATION_TYPES = (
    TYPE_NEW_LISTING,
    TYPE_LISTING_UPDATE,
    TYPE_PRICE_CHANGE,
    TYPE_STATUS_CHANGE,
    TYPE_FOLLOW,
)

# Notification type -> user setting column that gates it. FOLLOW is never gated.
SETTING_FOR_TYPE = {
    TYPE_NEW_LISTING: "notify_new_listings",
    TYPE_LISTING_UPDATE: "notify_listing_updates",
    TYPE_PRICE_CHANGE: "notify_price_changes",
    TYPE_STATUS_CHANGE: "notify_status_changes",
}

NOTIFICATION_TTL_DAYS = 30


class Notification(db.Model):
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient_is_read", "recipient_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    type = db.Column(db.String(24), nullable=False)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)
    message = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    read_at = db.Column(db.DateTime, nullable=True)

    def mark_read(self, read_at: datetime | None = None) -> datetime:
        stamped = read_at or datetime.utcnow()
        self.is_read = True
        self.read_at = stamped
        return stamped

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "sender_id": self.sender_id,
            "type": self.type,
            "listing_id": self.listing_id,
            "message": self.message or "",
            "is_read": bool(self.is_read),
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
