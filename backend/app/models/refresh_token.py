from __future__ import annotations

from datetime import datetime

from app.extensions import db


class RefreshToken(db.Model):
    __tablename__ = "refresh_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("user_sessions.id"), nullable=True, index=True)
    token_hash = db.Column(db.String(128), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    revoked_at = db.Column(db.DateTime, nullable=True, index=True)

    def is_usable(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        if self.revoked_at is not None:
            return False
        return not (self.expires_at and self.expires_at <= now)
