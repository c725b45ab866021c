from __future__ import annotations

import math
from typing import Any

from sqlalchemy import case, or_

from app.extensions import db
from app.models import Category, Listing, User
from app.utils.pagination import total_pages


class SearchFilterError(ValueError):
    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return r * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column, value: str):
    return column.ilike(f"%{_escape_like(value.strip())}%", escape="\\")


def _root_category(slug: str) -> Category:
    key = (slug or "").strip().lower()
    row = Category.query.filter_by(slug=key, parent_id=None).first()
    if row is None:
        raise SearchFilterError("Invalid category slug", providedSlug=key)
    return row


def _subcategory_ids(slug: str, parent: Category | None) -> list[int]:
    key = (slug or "").strip().lower()
    q = Category.query.filter(Category.slug == key, Category.parent_id.isnot(None))
    if parent is not None:
        q = q.filter(Category.parent_id == int(parent.id))
    ids = [int(c.id) for c in q.all()]
    if not ids:
        raise SearchFilterError("Invalid subcategory slug", providedSlug=key)
    return ids


def build_search_query(
    *,
    search: str = "",
    category: str = "",
    subcategory: str = "",
    city: str = "",
    area: str = "",
    street: str = "",
    min_price: float | None = None,
    max_price: float | None = None,
):
    query = Listing.query.filter(Listing.status == "active")

    text = (search or "").strip()
    if text:
        query = query.filter(
            or_(
                _contains(Listing.title, text),
                _contains(Listing.description, text),
                _contains(Listing.city, text),
                _contains(Listing.area, text),
                _contains(Listing.street, text),
            )
        )

    root = None
    if category:
        root = _root_category(category)
        query = query.filter(Listing.category_id == int(root.id))
    if subcategory:
        query = query.filter(Listing.subcategory_id.in_(_subcategory_ids(subcategory, root)))

    if city:
        query = query.filter(_contains(Listing.city, city))
    if area:
        query = query.filter(_contains(Listing.area, area))
    if street:
        query = query.filter(_contains(Listing.street, street))

    if min_price is not None:
        query = query.filter(Listing.price >= float(min_price))
    if max_price is not None:
        query = query.filter(Listing.price <= float(max_price))
    return query


def _pinned_order(query):
    pinned = case((Listing.featured_filter(), 1), else_=0)
    return query.order_by(pinned.desc(), Listing.created_at.desc(), Listing.id.desc())


def _bounding_box(query, lat: float, lng: float, radius_km: float):
    dlat = radius_km / 111.0
    dlng = radius_km / max(0.01, 111.0 * math.cos(math.radians(lat)))
    return query.filter(
        Listing.latitude.between(lat - dlat, lat + dlat),
        Listing.longitude.between(lng - dlng, lng + dlng),
    )


def search_listings(
    *,
    page: int,
    limit: int,
    lat: float | None = None,
    lng: float | None = None,
    radius_km: float | None = None,
    **filters: Any,
) -> dict[str, Any]:
    """Active listings matching the filters, currently featured ones pinned first.

    Raises SearchFilterError for unknown category slugs or a page past the end.
    """
    query = build_search_query(**filters)
    offset = (page - 1) * limit

    if lat is not None and lng is not None and radius_km:
        radius = max(float(radius_km), 0.1)
        rows = _pinned_order(_bounding_box(query, lat, lng, radius)).all()
        rows = [r for r in rows if haversine_km(lat, lng, float(r.latitude), float(r.longitude)) <= radius]
        total = len(rows)
        page_rows = rows[offset : offset + limit]
    else:
        total = query.count()
        page_rows = _pinned_order(query).offset(offset).limit(limit).all()

    pages = total_pages(total, limit)
    if pages > 0 and page > pages:
        raise SearchFilterError("Page number exceeds total pages", totalPages=pages, currentPage=page)
    return {"items": page_rows, "total": total, "total_pages": pages}


def serialize_listings(rows: list[Listing]) -> list[dict]:
    """to_dict() with owner and category summaries loaded in two batched queries."""
    if not rows:
        return []
    user_ids = {int(r.user_id) for r in rows}
    category_ids = {int(r.category_id) for r in rows}
    category_ids.update(int(r.subcategory_id) for r in rows if r.subcategory_id is not None)
    owners = {int(u.id): u for u in User.query.filter(User.id.in_(user_ids)).all()}
    categories = {int(c.id): c for c in Category.query.filter(Category.id.in_(category_ids)).all()}
    return [
        r.to_dict(
            owner=owners.get(int(r.user_id)),
            category=categories.get(int(r.category_id)),
            subcategory=categories.get(int(r.subcategory_id)) if r.subcategory_id is not None else None,
        )
        for r in rows
    ]


def serialize_listing(row: Listing) -> dict:
    return serialize_listings([row])[0]


def listing_or_none(listing_id: int) -> Listing | None:
    return db.session.get(Listing, int(listing_id))
