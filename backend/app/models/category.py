from __future__ import annotations

import re
from datetime import datetime

from app.extensions import db


_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    slug = _NON_ALNUM.sub("-", (value or "").strip().lower())
    return slug.strip("-")


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("parent_id", "slug", name="uq_categories_parent_slug"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name_ar = db.Column(db.String(120), nullable=False)
    name_en = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), nullable=False, index=True)
    icon = db.Column(db.String(255), nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def unique_slug(cls, name_en: str, parent_id: int | None) -> str:
        """Slug from the English name, suffixed -1, -2... until free under the parent."""
        base = slugify(name_en) or "category"
        candidate = base
        counter = 1
        while cls.query.filter_by(slug=candidate, parent_id=parent_id).first() is not None:
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "name_ar": self.name_ar or "",
            "name_en": self.name_en or "",
            "slug": self.slug or "",
            "icon": self.icon if self.parent_id is None else None,
            "parent_id": int(self.parent_id) if self.parent_id is not None else None,
        }

    def brief_dict(self) -> dict:
        return {"id": int(self.id), "name_en": self.name_en or "", "slug": self.slug or ""}
