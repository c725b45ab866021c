from __future__ import annotations

import random
from datetime import datetime, timedelta

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from app.extensions import db


USER_ROLES = ("user", "admin", "moderator")

USER_CITIES = (
    "damascus",
    "aleppo",
    "homs",
    "latakia",
    "hama",
    "tartus",
    "deirEzZor",
    "alHasakah",
    "raqqa",
    "daraa",
    "idlib",
    "alSuwayda",
    "quneitra",
)

AVATAR_STYLES = (
    "adventurer",
    "adventurer-neutral",
    "avataaars",
    "big-ears",
    "big-ears-neutral",
    "bottts",
    "croodles",
    "croodles-neutral",
    "identicon",
    "initials",
    "micah",
    "open-peeps",
    "personas",
    "pixel-art",
    "pixel-art-neutral",
)

NOTIFICATION_SETTING_FIELDS = ("new_listings", "listing_updates", "price_changes", "status_changes")
PREFERENCE_FIELDS = ("show_phone", "show_email", "show_address")


def random_avatar_url() -> str:
    style = random.choice(AVATAR_STYLES)
    return f"https://api.dicebear.com/9.x/{style}/png"


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(30), nullable=False, default="")
    last_name = db.Column(db.String(30), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default="user")
    phone = db.Column(db.String(32), nullable=True)
    city = db.Column(db.String(32), nullable=True)
    profile_image = db.Column(db.String(1024), nullable=False, default=random_avatar_url)
    bio = db.Column(db.String(500), nullable=True)

    # contact address
    area = db.Column(db.String(120), nullable=True)
    street = db.Column(db.String(160), nullable=True)
    building_number = db.Column(db.String(32), nullable=True)
    landmark = db.Column(db.String(160), nullable=True)

    show_phone = db.Column(db.Boolean, nullable=False, default=False)
    show_email = db.Column(db.Boolean, nullable=False, default=False)
    show_address = db.Column(db.Boolean, nullable=False, default=False)

    notify_new_listings = db.Column(db.Boolean, nullable=False, default=True)
    notify_listing_updates = db.Column(db.Boolean, nullable=False, default=True)
    notify_price_changes = db.Column(db.Boolean, nullable=False, default=True)
    notify_status_changes = db.Column(db.Boolean, nullable=False, default=True)

    is_email_verified = db.Column(db.Boolean, nullable=False, default=False)

    is_banned = db.Column(db.Boolean, nullable=False, default=False)
    ban_type = db.Column(db.String(16), nullable=True)  # temporary | permanent
    ban_reason = db.Column(db.String(500), nullable=True)
    ban_expires_at = db.Column(db.DateTime, nullable=True)

    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    lock_until = db.Column(db.DateTime, nullable=True)

    average_rating = db.Column(db.Float, nullable=False, default=0.0)
    total_ratings = db.Column(db.Integer, nullable=False, default=0)

    join_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    last_active_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def touch(self) -> None:
        self.last_active_at = datetime.utcnow()

    # -- lockout / bans -------------------------------------------------

    def is_locked(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return bool(self.lock_until and self.lock_until > now)

    def register_failed_login(self, *, max_attempts: int = 5, lock_minutes: int = 15) -> None:
        self.failed_login_attempts = int(self.failed_login_attempts or 0) + 1
        if self.failed_login_attempts >= max_attempts:
            self.lock_until = datetime.utcnow() + timedelta(minutes=lock_minutes)
            self.failed_login_attempts = 0

    def reset_failed_logins(self) -> None:
        self.failed_login_attempts = 0
        self.lock_until = None

    def ban(self, *, permanent: bool, reason: str = "", days: int = 7) -> None:
        self.is_banned = True
        self.ban_type = "permanent" if permanent else "temporary"
        self.ban_reason = (reason or "")[:500] or None
        self.ban_expires_at = None if permanent else datetime.utcnow() + timedelta(days=days)

    def lift_ban(self) -> None:
        self.is_banned = False
        self.ban_type = None
        self.ban_reason = None
        self.ban_expires_at = None

    def ban_is_active(self, now: datetime | None = None) -> bool:
        """True while a ban applies. Expired temporary bans are lifted in place."""
        if not self.is_banned:
            return False
        if self.ban_type == "temporary" and self.ban_expires_at is not None:
            if self.ban_expires_at <= (now or datetime.utcnow()):
                self.lift_ban()
                return False
        return True

    # -- social ---------------------------------------------------------

    def is_following(self, other_id: int) -> bool:
        from app.models.follow import UserFollow

        return (
            UserFollow.query.filter_by(follower_id=int(self.id), followed_id=int(other_id)).first()
            is not None
        )

    def follower_count(self) -> int:
        from app.models.follow import UserFollow

        return UserFollow.query.filter_by(followed_id=int(self.id)).count()

    def following_count(self) -> int:
        from app.models.follow import UserFollow

        return UserFollow.query.filter_by(follower_id=int(self.id)).count()

    def stats(self) -> dict:
        from app.models.listing import Listing
        from app.models.review import ListingReview

        base = Listing.query.filter_by(user_id=int(self.id))
        return {
            "total_listings": base.count(),
            "active_listings": base.filter(Listing.status == "active").count(),
            "sold_listings": base.filter(Listing.status == "sold").count(),
            "total_reviews": ListingReview.query.filter_by(reviewer_id=int(self.id)).count(),
        }

    def recalculate_rating(self) -> None:
        from app.models.rating import UserRating

        rows = UserRating.query.filter_by(rated_user_id=int(self.id)).all()
        if not rows:
            self.average_rating = 0.0
            self.total_ratings = 0
            return
        total = sum(int(r.rating or 0) for r in rows)
        self.average_rating = round(total / len(rows), 1)
        self.total_ratings = len(rows)

    # -- serialization --------------------------------------------------

    def preferences_dict(self) -> dict:
        return {
            "show_phone": bool(self.show_phone),
            "show_email": bool(self.show_email),
            "show_address": bool(self.show_address),
        }

    def notification_settings_dict(self) -> dict:
        return {name: bool(getattr(self, f"notify_{name}")) for name in NOTIFICATION_SETTING_FIELDS}

    def address_dict(self) -> dict:
        return {
            "city": self.city or "",
            "area": self.area or "",
            "street": self.street or "",
            "building_number": self.building_number or "",
            "landmark": self.landmark or "",
        }

    def summary_dict(self) -> dict:
        return {
            "id": int(self.id),
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "profile_image": self.profile_image or "",
        }

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "email": self.email,
            "role": self.role or "user",
            "phone": self.phone,
            "city": self.city,
            "profile_image": self.profile_image or "",
            "bio": self.bio or "",
            "address": self.address_dict(),
            "preferences": self.preferences_dict(),
            "notification_settings": self.notification_settings_dict(),
            "is_email_verified": bool(self.is_email_verified),
            "is_banned": bool(self.is_banned),
            "ban_type": self.ban_type,
            "ban_expires_at": self.ban_expires_at.isoformat() if self.ban_expires_at else None,
            "average_rating": float(self.average_rating or 0.0),
            "total_ratings": int(self.total_ratings or 0),
            "join_date": self.join_date.isoformat() if self.join_date else None,
            "last_active_at": self.last_active_at.isoformat() if self.last_active_at else None,
        }

    def public_profile(self, viewer: "User | None" = None) -> dict:
        contact = {}
        if self.show_phone:
            contact["phone"] = self.phone
        if self.show_email:
            contact["email"] = self.email
        if self.show_address:
            contact["address"] = self.address_dict()
        return {
            "id": int(self.id),
            "name": self.full_name,
            "profile_image": self.profile_image or "",
            "bio": self.bio or "",
            "rating": float(self.average_rating or 0.0),
            "total_ratings": int(self.total_ratings or 0),
            "join_date": self.join_date.isoformat() if self.join_date else None,
            "is_email_verified": bool(self.is_email_verified),
            "followers": self.follower_count(),
            "following": self.following_count(),
            "is_following": bool(viewer and viewer.is_following(int(self.id))),
            "stats": self.stats(),
            "contact_info": contact,
        }


class UserSession(db.Model):
    __tablename__ = "user_sessions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    browser = db.Column(db.String(120), nullable=False, default="")
    os = db.Column(db.String(120), nullable=False, default="")
    ip = db.Column(db.String(64), nullable=False, default="")
    token_hash = db.Column(db.String(128), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    last_active_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @classmethod
    def is_new_device(cls, user_id: int, *, browser: str, os: str, ip: str) -> bool:
        known = cls.query.filter_by(
            user_id=int(user_id),
            browser=browser or "",
            os=os or "",
            ip=ip or "",
            is_active=True,
        ).first()
        return known is None

    @classmethod
    def clean_old_sessions(cls, user_id: int, *, max_idle_days: int = 30) -> int:
        cutoff = datetime.utcnow() - timedelta(days=max_idle_days)
        count = cls.query.filter(
            cls.user_id == int(user_id),
            cls.is_active.is_(False),
            cls.last_active_at < cutoff,
        ).delete(synchronize_session=False)
        return int(count or 0)

    def mark_active(self) -> None:
        self.last_active_at = datetime.utcnow()

    def terminate(self) -> None:
        self.is_active = False
        self.last_active_at = datetime.utcnow()

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "device_info": {"browser": self.browser, "os": self.os, "ip": self.ip},
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_active_at": self.last_active_at.isoformat() if self.last_active_at else None,
        }


class PasswordHistory(db.Model):
    __tablename__ = "password_history"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @classmethod
    def was_recently_used(cls, user_id: int, raw_password: str, *, depth: int = 5) -> bool:
        rows = (
            cls.query.filter_by(user_id=int(user_id))
            .order_by(cls.created_at.desc(), cls.id.desc())
            .limit(depth)
            .all()
        )
        return any(check_password_hash(r.password_hash, raw_password) for r in rows)
