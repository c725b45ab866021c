from __future__ import annotations

import json
from datetime import datetime

from app.extensions import db


REPORT_TYPES = ("USER", "LISTING")
REPORT_REASONS = (
    "SPAM",
    "INAPPROPRIATE_CONTENT",
    "FAKE_LISTING",
    "HARASSMENT",
    "FRAUD",
    "DUPLICATE",
    "OTHER",
)
REPORT_STATUSES = ("PENDING", "UNDER_REVIEW", "RESOLVED", "REJECTED")
REPORT_RESOLUTIONS = ("NO_ACTION", "WARNING", "TEMPORARY_BAN", "PERMANENT_BAN", "LISTING_REMOVED")


class Report(db.Model):
    __tablename__ = "reports"

    id = db.Column(db.Integer, primary_key=True)
    reporter_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    reported_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    reported_listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=True, index=True)
    reason = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(1000), nullable=False)
    evidence_json = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    admin_notes = db.Column(db.Text, nullable=True)
    resolution = db.Column(db.String(24), nullable=True)
    resolved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def evidence(self) -> list[str]:
        try:
            data = json.loads(self.evidence_json or "[]")
            return [str(x) for x in data] if isinstance(data, list) else []
        except ValueError:
            return []

    @evidence.setter
    def evidence(self, value: list[str] | None) -> None:
        self.evidence_json = json.dumps(list(value or []))

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "reporter_id": int(self.reporter_id),
            "type": self.type,
            "reported_user_id": self.reported_user_id,
            "reported_listing_id": self.reported_listing_id,
            "reason": self.reason,
            "description": self.description,
            "evidence": self.evidence,
            "status": self.status,
            "admin_notes": self.admin_notes or "",
            "resolution": self.resolution,
            "resolved_by_id": self.resolved_by_id,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
