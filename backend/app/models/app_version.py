from datetime import datetime

from app.extensions import db


class AppVersion(db.Model):
    __tablename__ = "app_versions"

    id = db.Column(db.Integer, primary_key=True)
    platform = db.Column(db.String(32), nullable=False, unique=True, index=True)
    version = db.Column(db.String(32), nullable=False)
    link = db.Column(db.String(1024), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "version": self.version,
            "link": self.link or "",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
