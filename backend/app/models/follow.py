from datetime import datetime

from app.extensions import db


class UserFollow(db.Model):
    __tablename__ = "user_follows"
    __table_args__ = (
        db.UniqueConstraint("follower_id", "followed_id", name="uq_user_follows_follower_followed"),
    )

    id = db.Column(db.Integer, primary_key=True)
    follower_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    followed_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
