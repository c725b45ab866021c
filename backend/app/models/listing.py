from __future__ import annotations

import json
from datetime import datetime, timedelta

from sqlalchemy import and_, or_

from app.extensions import db


LISTING_STATUSES = ("active", "sold", "received", "inactive", "draft", "removed")
OWNER_SETTABLE_STATUSES = ("active", "sold", "received", "inactive")
PRICE_TYPES = ("fixed", "negotiable", "free", "contact")
CURRENCIES = ("SYP", "USD")
CONDITIONS = ("new", "like-new", "good", "fair", "جديد", "كالجديد", "جيد", "مقبول")

LISTING_CITIES = (
    "damascus",
    "rifdimashq",
    "aleppo",
    "homs",
    "latakia",
    "hama",
    "tartus",
    "deirezzor",
    "alhasakah",
    "raqqa",
    "daraa",
    "idlib",
    "alsuwayda",
    "quneitra",
)

MAX_PRICE = 1_000_000_000


class Listing(db.Model):
    __tablename__ = "listings"
    __table_args__ = (
        db.Index("ix_listings_status_created", "status", "created_at"),
        db.Index("ix_listings_city_area", "city", "area"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    subcategory_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    price = db.Column(db.Float, nullable=False, default=0.0)
    price_type = db.Column(db.String(16), nullable=False, default="fixed")
    currency = db.Column(db.String(8), nullable=False, default="SYP")
    condition = db.Column(db.String(32), nullable=True)

    # location
    city = db.Column(db.String(32), nullable=False, index=True)
    area = db.Column(db.String(120), nullable=False)
    street = db.Column(db.String(160), nullable=True)
    building_number = db.Column(db.String(32), nullable=True)
    landmark = db.Column(db.String(160), nullable=True)
    longitude = db.Column(db.Float, nullable=False, default=0.0)
    latitude = db.Column(db.Float, nullable=False, default=0.0)

    attributes_json = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False, index=True)
    featured_until = db.Column(db.DateTime, nullable=True)
    views = db.Column(db.Integer, nullable=False, default=0)

    average_rating = db.Column(db.Float, nullable=False, default=0.0)
    review_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    images = db.relationship(
        "ListingImage",
        order_by="ListingImage.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # -- attributes -----------------------------------------------------

    @property
    def attributes(self) -> dict:
        raw = (self.attributes_json or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except ValueError:
            return {}

    @attributes.setter
    def attributes(self, value: dict | None) -> None:
        self.attributes_json = json.dumps(value or {}, separators=(",", ":"), ensure_ascii=False)

    def set_images(self, urls: list[str]) -> None:
        self.images = [ListingImage(url=u, position=i) for i, u in enumerate(urls)]

    # -- helpers --------------------------------------------------------

    def days_since_posted(self, now: datetime | None = None) -> int:
        now = now or datetime.utcnow()
        if not self.created_at:
            return 0
        return max(0, (now - self.created_at).days)

    def increment_views(self) -> int:
        self.views = int(self.views or 0) + 1
        return self.views

    def favorites_count(self) -> int:
        return ListingFavorite.query.filter_by(listing_id=int(self.id)).count()

    def is_favorited_by(self, user_id: int | None) -> bool:
        if not user_id:
            return False
        return (
            ListingFavorite.query.filter_by(listing_id=int(self.id), user_id=int(user_id)).first()
            is not None
        )

    def toggle_favorite(self, user_id: int) -> bool:
        """Flip the user's favorite; returns the new state."""
        row = ListingFavorite.query.filter_by(listing_id=int(self.id), user_id=int(user_id)).first()
        if row is not None:
            db.session.delete(row)
            return False
        db.session.add(ListingFavorite(listing_id=int(self.id), user_id=int(user_id)))
        return True

    def make_featured(self, days: int = 7) -> None:
        self.is_featured = True
        self.featured_until = datetime.utcnow() + timedelta(days=int(days))

    def remove_featured(self) -> None:
        self.is_featured = False
        self.featured_until = None

    def is_currently_featured(self, now: datetime | None = None) -> bool:
        if not self.is_featured:
            return False
        if self.featured_until is None:
            return True
        return self.featured_until > (now or datetime.utcnow())

    @classmethod
    def featured_filter(cls, now: datetime | None = None):
        now = now or datetime.utcnow()
        return and_(
            cls.is_featured.is_(True),
            or_(cls.featured_until.is_(None), cls.featured_until > now),
        )

    @classmethod
    def featured_listings(cls, limit: int = 10) -> list["Listing"]:
        return (
            cls.query.filter(cls.status == "active", cls.featured_filter())
            .order_by(cls.created_at.desc(), cls.id.desc())
            .limit(int(limit))
            .all()
        )

    # -- serialization --------------------------------------------------

    def location_dict(self) -> dict:
        return {
            "city": self.city,
            "area": self.area,
            "street": self.street or "",
            "details": {
                "building_number": self.building_number or "",
                "landmark": self.landmark or "",
            },
            "coordinates": [float(self.longitude or 0.0), float(self.latitude or 0.0)],
        }

    def to_dict(self, *, owner=None, category=None, subcategory=None) -> dict:
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "user": owner.summary_dict() if owner is not None else None,
            "title": self.title,
            "description": self.description or "",
            "category_id": int(self.category_id),
            "category": category.brief_dict() if category is not None else None,
            "subcategory_id": int(self.subcategory_id) if self.subcategory_id is not None else None,
            "subcategory": subcategory.brief_dict() if subcategory is not None else None,
            "price": float(self.price or 0.0),
            "price_type": self.price_type,
            "currency": self.currency,
            "condition": self.condition,
            "location": self.location_dict(),
            "attributes": self.attributes,
            "images": [img.url for img in self.images],
            "status": self.status,
            "is_featured": self.is_currently_featured(),
            "featured_until": self.featured_until.isoformat() if self.featured_until else None,
            "views": int(self.views or 0),
            "average_rating": float(self.average_rating or 0.0),
            "review_count": int(self.review_count or 0),
            "days_since_posted": self.days_since_posted(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ListingImage(db.Model):
    __tablename__ = "listing_images"

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    url = db.Column(db.Text, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)


class ListingFavorite(db.Model):
    __tablename__ = "listing_favorites"
    __table_args__ = (
        db.UniqueConstraint("user_id", "listing_id", name="uq_listing_favorite_user_listing"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
