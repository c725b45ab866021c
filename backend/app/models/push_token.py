from __future__ import annotations

import json
from datetime import datetime

from app.extensions import db


class PushToken(db.Model):
    __tablename__ = "push_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    expo_push_token = db.Column(db.String(255), nullable=False, unique=True, index=True)
    device_info_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def device_info(self) -> dict:
        try:
            data = json.loads(self.device_info_json or "{}")
            return data if isinstance(data, dict) else {}
        except ValueError:
            return {}

    @device_info.setter
    def device_info(self, value: dict | None) -> None:
        self.device_info_json = json.dumps(value or {}, separators=(",", ":"))

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id) if self.user_id is not None else None,
            "expo_push_token": self.expo_push_token,
            "device_info": self.device_info,
        }
