from __future__ import annotations

from datetime import datetime

from app.extensions import db


REVIEW_STATUSES = ("pending", "approved", "rejected")


class ListingReview(db.Model):
    __tablename__ = "listing_reviews"
    __table_args__ = (
        db.UniqueConstraint("listing_id", "reviewer_id", name="uq_listing_reviews_listing_reviewer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.String(500), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def refresh_listing_rating(cls, listing) -> None:
        """Write the approved-review average back onto the listing."""
        rows = cls.query.filter_by(listing_id=int(listing.id), status="approved").all()
        if not rows:
            listing.average_rating = 0.0
            listing.review_count = 0
            return
        listing.average_rating = round(sum(int(r.rating) for r in rows) / len(rows), 1)
        listing.review_count = len(rows)

    def to_dict(self, reviewer=None) -> dict:
        return {
            "id": int(self.id),
            "listing_id": int(self.listing_id),
            "reviewer": reviewer.summary_dict() if reviewer is not None else {"id": int(self.reviewer_id)},
            "rating": int(self.rating),
            "comment": self.comment,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
