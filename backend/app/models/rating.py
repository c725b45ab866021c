from datetime import datetime

from app.extensions import db


class UserRating(db.Model):
    __tablename__ = "user_ratings"
    __table_args__ = (
        db.UniqueConstraint("rater_id", "rated_user_id", name="uq_user_ratings_rater_rated"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rater_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    rated_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self, rater=None) -> dict:
        return {
            "id": int(self.id),
            "rater": rater.summary_dict() if rater is not None else {"id": int(self.rater_id)},
            "rating": int(self.rating or 0),
            "comment": self.comment or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
