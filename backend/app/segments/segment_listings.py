from __future__ import annotations

import math

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models import (
    Category,
    Conversation,
    Listing,
    ListingFavorite,
    ListingReview,
    Message,
    Notification,
    Report,
    User,
)
from app.models.listing import (
    CONDITIONS,
    CURRENCIES,
    LISTING_CITIES,
    MAX_PRICE,
    OWNER_SETTABLE_STATUSES,
    PRICE_TYPES,
)
from app.models.review import REVIEW_STATUSES
from app.services import notification_service
from app.services.listing_search_service import (
    SearchFilterError,
    listing_or_none,
    search_listings,
    serialize_listing,
    serialize_listings,
)
from app.services.media_service import MediaUploadError, store_images
from app.utils.auth_guard import is_staff, login_required, optional_auth, roles_required
from app.utils.pagination import page_args, pagination_block
from app.utils.rate_limit import rate_limit
from app.utils.validation import as_float, as_int, json_body, pick, text, validate_body, validate_listing_fields

listings_bp = Blueprint("listings_bp", __name__, url_prefix="/api/listings")
reviews_bp = Blueprint("reviews_bp", __name__, url_prefix="/api/reviews")

MAX_IMAGES = 10

MY_LISTING_STATUSES = ("active", "sold", "inactive", "draft")
MY_LISTING_SORTS = {
    "newest": (Listing.created_at.desc(),),
    "oldest": (Listing.created_at.asc(),),
    "price_asc": (Listing.price.asc(),),
    "price_desc": (Listing.price.desc(),),
    "views": (Listing.views.desc(),),
}


# ---------------------------
# Body parsing
# ---------------------------

def _resolve_category(value, *, parent: Category | None = None) -> Category | None:
    if value in (None, ""):
        return None
    q = Category.query
    q = q.filter(Category.parent_id == int(parent.id)) if parent is not None else q.filter(Category.parent_id.is_(None))
    parsed = as_int(value)
    if parsed is not None and not isinstance(value, bool):
        return q.filter(Category.id == parsed).first()
    return q.filter(Category.slug == str(value).strip().lower()).first()


def _location_source(data: dict) -> dict:
    loc = data.get("location")
    return loc if isinstance(loc, dict) else data


def _coordinates(loc: dict, data: dict) -> tuple[float | None, float | None] | None:
    """(longitude, latitude) from location.coordinates or flat lng/lat. None when absent."""
    coords = loc.get("coordinates")
    if isinstance(coords, dict):
        coords = coords.get("coordinates")
    if isinstance(coords, (list, tuple)):
        if len(coords) != 2:
            return None, None
        return as_float(coords[0]), as_float(coords[1])
    lng = pick(data, "lng", "longitude")
    lat = pick(data, "lat", "latitude")
    if lng is None and lat is None:
        return None
    return as_float(lng), as_float(lat)


def _parse_listing_body(data: dict, *, partial: bool, current: Listing | None = None) -> tuple[dict, dict]:
    """Returns (fields, errors). With partial=True only present keys are checked."""
    fields: dict = {}
    errors: dict = {}

    def wanted(*keys) -> bool:
        return not partial or pick(data, *keys) is not None

    if wanted("title"):
        title = text(data, "title")
        if not (3 <= len(title) <= 100):
            errors["title"] = "Title must be between 3 and 100 characters"
        else:
            fields["title"] = title

    if wanted("description"):
        description = text(data, "description")
        if not description:
            errors["description"] = "Description is required"
        else:
            fields["description"] = description

    category = None
    if wanted("category", "category_id", "categoryId"):
        category = _resolve_category(pick(data, "category", "category_id", "categoryId"))
        if category is None:
            errors["category"] = "Valid category is required"
        else:
            fields["category_id"] = int(category.id)
    if pick(data, "subcategory", "subcategory_id", "subCategory") is not None:
        parent = category
        if parent is None and current is not None:
            parent = db.session.get(Category, int(current.category_id))
        sub = _resolve_category(pick(data, "subcategory", "subcategory_id", "subCategory"), parent=parent) if parent else None
        if sub is None:
            errors["subcategory"] = "Subcategory does not belong to the category"
        else:
            fields["subcategory_id"] = int(sub.id)

    if wanted("price_type", "priceType"):
        price_type = text(data, "price_type", "priceType") or "fixed"
        if price_type not in PRICE_TYPES:
            errors["price_type"] = "Invalid price type"
        else:
            fields["price_type"] = price_type
    effective_type = fields.get("price_type") or (current.price_type if current is not None else "fixed")

    raw_price = pick(data, "price")
    if effective_type == "free":
        if wanted("price", "price_type", "priceType"):
            fields["price"] = 0.0
    elif raw_price is None or raw_price == "":
        if not partial:
            errors["price"] = "Price is required"
    else:
        price = as_float(raw_price)
        if price is None or price < 0 or price > MAX_PRICE:
            errors["price"] = "Price must be between 0 and 1,000,000,000"
        else:
            fields["price"] = price

    if wanted("currency"):
        currency = text(data, "currency").upper() or "SYP"
        if currency not in CURRENCIES:
            errors["currency"] = "Currency must be SYP or USD"
        else:
            fields["currency"] = currency

    if pick(data, "condition") is not None:
        condition = text(data, "condition")
        if condition and condition not in CONDITIONS:
            errors["condition"] = "Invalid condition"
        else:
            fields["condition"] = condition or None

    loc = _location_source(data)
    if not partial or isinstance(data.get("location"), dict) or pick(data, "city", "area", "street") is not None:
        city = text(loc, "city").lower()
        area = text(loc, "area")
        street = text(loc, "street")
        if partial:
            city = city or (current.city if current is not None else "")
            area = area or (current.area if current is not None else "")
            street = street or (current.street if current is not None else "")
        if not city or not area or not street:
            errors["location"] = "Location with city, area and street is required"
        elif city not in LISTING_CITIES:
            errors["location"] = "Unknown city"
        else:
            fields.update(city=city, area=area[:120], street=street[:160])
        details = loc.get("details") if isinstance(loc.get("details"), dict) else loc
        for key in ("building_number", "landmark"):
            if pick(details, key, "buildingNumber" if key == "building_number" else key) is not None:
                fields[key] = text(details, key, "buildingNumber" if key == "building_number" else key) or None

    coords = _coordinates(loc, data)
    if coords is None:
        if not partial:
            fields.update(longitude=0.0, latitude=0.0)
    else:
        lng, lat = coords
        if lng is None or lat is None or not (-180 <= lng <= 180) or not (-90 <= lat <= 90):
            errors["coordinates"] = "Coordinates must be [longitude, latitude] within valid ranges"
        else:
            fields.update(longitude=lng, latitude=lat)

    if pick(data, "attributes") is not None:
        attributes = data.get("attributes")
        if not isinstance(attributes, dict):
            errors["attributes"] = "Attributes must be an object"
        else:
            fields["attributes"] = attributes

    if wanted("images"):
        images = pick(data, "images", default=[])
        if not isinstance(images, list) or not (1 <= len(images) <= MAX_IMAGES):
            errors["images"] = f"Between 1 and {MAX_IMAGES} images are required"
        else:
            fields["images"] = images

    return fields, errors


def _apply_fields(row: Listing, fields: dict) -> None:
    for key, value in fields.items():
        if key == "images":
            row.set_images(value)
        elif key == "attributes":
            row.attributes = value
        else:
            setattr(row, key, value)


def _owned_listing(listing_id: int):
    """(listing, error_response) for the current user's listing."""
    row = listing_or_none(listing_id)
    if row is None:
        return None, (jsonify({"ok": False, "message": "Listing not found"}), 404)
    if int(row.user_id) != int(g.current_user.id):
        return None, (jsonify({"ok": False, "message": "Not authorized to modify this listing"}), 403)
    return row, None


def _paged(q, page: int, limit: int):
    total = q.count()
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return rows, total


# ---------------------------
# Create / search
# ---------------------------

@listings_bp.post("")
@listings_bp.post("/")
@login_required
@rate_limit("listing_create", 86400, 1000, scope="user", message="Daily listing limit reached")
@validate_body(validate_listing_fields)
def create_listing():
    user: User = g.current_user
    fields, errors = _parse_listing_body(json_body(), partial=False)
    if errors:
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400

    try:
        fields["images"] = store_images(fields["images"], folder="listings")
    except MediaUploadError as e:
        return jsonify({"ok": False, "message": str(e)}), 400

    row = Listing(user_id=int(user.id))
    _apply_fields(row, fields)
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("listing_create_failed user_id=%s", user.id)
        return jsonify({"ok": False, "message": "Failed to create listing"}), 500

    notification_service.notify_followers_new_listing(user, row)
    current_app.logger.info("listing_created listing_id=%s user_id=%s", row.id, user.id)
    return jsonify({"ok": True, "message": "Listing created", "listing": serialize_listing(row)}), 201


@listings_bp.get("")
@listings_bp.get("/")
def search():
    page, limit = page_args(default_limit=12, max_limit=50)
    args = request.args
    filters = {
        "search": (args.get("search") or "").strip(),
        "category": (args.get("category") or "").strip(),
        "subcategory": (args.get("subcategory") or "").strip(),
        "city": (args.get("city") or "").strip(),
        "area": (args.get("area") or "").strip(),
        "street": (args.get("street") or "").strip(),
        "min_price": as_float(args.get("minPrice")),
        "max_price": as_float(args.get("maxPrice")),
    }
    lat = as_float(args.get("lat"))
    lng = as_float(args.get("lng"))
    radius_km = as_float(args.get("radiusKm"))
    bounds = {"lat": (lat, 90.0), "lng": (lng, 180.0)}
    for name, (value, limit_deg) in bounds.items():
        if value is not None and not (math.isfinite(value) and -limit_deg <= value <= limit_deg):
            return jsonify({"ok": False, "message": f"Invalid {name}", "provided": args.get(name)}), 400
    if radius_km is not None and not (math.isfinite(radius_km) and radius_km > 0):
        return jsonify({"ok": False, "message": "Invalid radiusKm", "provided": args.get("radiusKm")}), 400
    for name, key in (("min_price", "minPrice"), ("max_price", "maxPrice")):
        if filters[name] is not None and not math.isfinite(filters[name]):
            return jsonify({"ok": False, "message": f"Invalid {key}", "provided": args.get(key)}), 400

    try:
        result = search_listings(page=page, limit=limit, lat=lat, lng=lng, radius_km=radius_km, **filters)
    except SearchFilterError as e:
        return jsonify({"ok": False, "message": e.message, **e.details}), 400

    items = serialize_listings(result["items"])
    echoed = {k: v for k, v in filters.items() if v not in (None, "")}
    if lat is not None and lng is not None and radius_km:
        echoed.update(lat=lat, lng=lng, radiusKm=radius_km)
    return jsonify(
        {
            "ok": True,
            "listings": items,
            "pagination": pagination_block(page=page, limit=limit, total=result["total"], returned=len(items)),
            "filters": echoed,
        }
    ), 200


@listings_bp.get("/featured")
def featured():
    limit = as_int(request.args.get("limit"), 10) or 10
    limit = max(1, min(limit, 50))
    rows = Listing.featured_listings(limit=limit)
    return jsonify({"ok": True, "listings": serialize_listings(rows)}), 200


@listings_bp.get("/user/<int:user_id>")
def by_user(user_id: int):
    if db.session.get(User, int(user_id)) is None:
        return jsonify({"ok": False, "message": "User not found"}), 404
    page, limit = page_args(default_limit=12, max_limit=50)
    q = Listing.query.filter(Listing.user_id == int(user_id), Listing.status == "active").order_by(
        Listing.created_at.desc(), Listing.id.desc()
    )
    rows, total = _paged(q, page, limit)
    return jsonify(
        {
            "ok": True,
            "listings": serialize_listings(rows),
            "pagination": pagination_block(page=page, limit=limit, total=total, returned=len(rows)),
        }
    ), 200


@listings_bp.get("/my-favorites")
@login_required
def my_favorites():
    page, limit = page_args(default_limit=12, max_limit=50)
    q = (
        Listing.query.join(ListingFavorite, ListingFavorite.listing_id == Listing.id)
        .filter(ListingFavorite.user_id == int(g.current_user.id))
        .order_by(ListingFavorite.created_at.desc(), ListingFavorite.id.desc())
    )
    rows, total = _paged(q, page, limit)
    return jsonify(
        {
            "ok": True,
            "listings": serialize_listings(rows),
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200


@listings_bp.get("/my-listings")
@login_required
def my_listings():
    status = (request.args.get("status") or "").strip().lower()
    sort = (request.args.get("sort") or "newest").strip().lower()
    if status and status not in MY_LISTING_STATUSES:
        return jsonify({"ok": False, "message": "Invalid status filter", "allowed": list(MY_LISTING_STATUSES)}), 400
    if sort not in MY_LISTING_SORTS:
        return jsonify({"ok": False, "message": "Invalid sort", "allowed": list(MY_LISTING_SORTS)}), 400

    page, limit = page_args(default_limit=12, max_limit=50)
    q = Listing.query.filter(Listing.user_id == int(g.current_user.id), Listing.status != "removed")
    if status:
        q = q.filter(Listing.status == status)
    q = q.order_by(*MY_LISTING_SORTS[sort], Listing.id.desc())
    rows, total = _paged(q, page, limit)
    return jsonify(
        {
            "ok": True,
            "listings": serialize_listings(rows),
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200


# ---------------------------
# Single listing
# ---------------------------

@listings_bp.get("/<int:listing_id>")
@optional_auth
def get_listing(listing_id: int):
    viewer = g.current_user
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    is_owner = viewer is not None and int(viewer.id) == int(row.user_id)
    if row.status == "removed" and not (is_owner or is_staff(viewer)):
        return jsonify({"ok": False, "message": "Listing not found"}), 404

    row.increment_views()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("listing_view_count_failed listing_id=%s", listing_id)

    body = serialize_listing(row)
    body["favorites_count"] = row.favorites_count()
    body["is_favorited"] = row.is_favorited_by(int(viewer.id) if viewer is not None else None)
    return jsonify({"ok": True, "listing": body}), 200


@listings_bp.put("/<int:listing_id>")
@login_required
@validate_body(validate_listing_fields)
def update_listing(listing_id: int):
    user: User = g.current_user
    row, err = _owned_listing(listing_id)
    if err is not None:
        return err

    fields, errors = _parse_listing_body(json_body(), partial=True, current=row)
    if errors:
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400
    if "images" in fields:
        try:
            fields["images"] = store_images(fields["images"], folder="listings")
        except MediaUploadError as e:
            return jsonify({"ok": False, "message": str(e)}), 400

    old_price = float(row.price or 0.0)
    _apply_fields(row, fields)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("listing_update_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to update listing"}), 500

    if "price" in fields and float(row.price or 0.0) != old_price:
        notification_service.notify_followers_price_change(user, row, old_price)
    else:
        notification_service.notify_followers_listing_update(user, row)
    return jsonify({"ok": True, "message": "Listing updated", "listing": serialize_listing(row)}), 200


@listings_bp.patch("/<int:listing_id>/status")
@login_required
def update_status(listing_id: int):
    user: User = g.current_user
    row, err = _owned_listing(listing_id)
    if err is not None:
        return err
    status = text(json_body(), "status").lower()
    if status not in OWNER_SETTABLE_STATUSES:
        return jsonify({"ok": False, "message": "Invalid status", "allowed": list(OWNER_SETTABLE_STATUSES)}), 400

    old_status = row.status
    row.status = status
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("listing_status_update_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to update status"}), 500

    if old_status != status:
        notification_service.notify_followers_status_change(user, row, old_status)
    return jsonify({"ok": True, "message": "Status updated", "listing": serialize_listing(row)}), 200


@listings_bp.delete("/<int:listing_id>")
@login_required
def delete_listing(listing_id: int):
    user: User = g.current_user
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    if int(row.user_id) != int(user.id) and (user.role or "") != "admin":
        return jsonify({"ok": False, "message": "Not authorized to delete this listing"}), 403

    try:
        lid = int(row.id)
        ListingFavorite.query.filter_by(listing_id=lid).delete(synchronize_session=False)
        ListingReview.query.filter_by(listing_id=lid).delete(synchronize_session=False)
        Notification.query.filter_by(listing_id=lid).update({"listing_id": None}, synchronize_session=False)
        Message.query.filter_by(listing_id=lid).update({"listing_id": None}, synchronize_session=False)
        Conversation.query.filter_by(listing_id=lid).update({"listing_id": None}, synchronize_session=False)
        Report.query.filter_by(reported_listing_id=lid).update({"reported_listing_id": None}, synchronize_session=False)
        db.session.delete(row)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.exception("listing_delete_conflict listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Listing could not be deleted"}), 409
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("listing_delete_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to delete listing"}), 500
    current_app.logger.info("listing_deleted listing_id=%s by=%s", listing_id, user.id)
    return jsonify({"ok": True, "message": "Listing deleted"}), 200


@listings_bp.get("/<int:listing_id>/stats")
@login_required
def listing_stats(listing_id: int):
    row, err = _owned_listing(listing_id)
    if err is not None:
        return err
    return jsonify(
        {
            "ok": True,
            "stats": {
                "views": int(row.views or 0),
                "favorites_count": row.favorites_count(),
                "status": row.status,
                "is_featured": row.is_currently_featured(),
                "featured_until": row.featured_until.isoformat() if row.featured_until else None,
                "days_since_posted": row.days_since_posted(),
                "created_at": row.created_at.isoformat() if row.created_at else None,
                "updated_at": row.updated_at.isoformat() if row.updated_at else None,
            },
        }
    ), 200


# ---------------------------
# Favorites / featuring
# ---------------------------

@listings_bp.post("/<int:listing_id>/favorite")
@login_required
def add_favorite(listing_id: int):
    user: User = g.current_user
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    if row.is_favorited_by(int(user.id)):
        return jsonify({"ok": False, "message": "Listing already in favorites"}), 400
    try:
        row.toggle_favorite(int(user.id))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"ok": False, "message": "Listing already in favorites"}), 400
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("favorite_add_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to add favorite"}), 500
    return jsonify({"ok": True, "message": "Added to favorites", "favorites_count": row.favorites_count()}), 200


@listings_bp.delete("/<int:listing_id>/favorite")
@login_required
def remove_favorite(listing_id: int):
    user: User = g.current_user
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    if not row.is_favorited_by(int(user.id)):
        return jsonify({"ok": False, "message": "Listing is not in favorites"}), 400
    try:
        row.toggle_favorite(int(user.id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("favorite_remove_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to remove favorite"}), 500
    return jsonify({"ok": True, "message": "Removed from favorites", "favorites_count": row.favorites_count()}), 200


@listings_bp.post("/<int:listing_id>/feature")
@roles_required("admin")
def feature_listing(listing_id: int):
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    days = as_int(pick(json_body(), "duration_days", "durationDays", "days"), 7)
    if days is None or days < 1 or days > 365:
        return jsonify({"ok": False, "message": "duration_days must be between 1 and 365"}), 400
    row.make_featured(days=days)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("listing_feature_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to feature listing"}), 500
    return jsonify({"ok": True, "message": "Listing featured", "listing": serialize_listing(row)}), 200


@listings_bp.post("/<int:listing_id>/unfeature")
@roles_required("admin")
def unfeature_listing(listing_id: int):
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    row.remove_featured()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("listing_unfeature_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to unfeature listing"}), 500
    return jsonify({"ok": True, "message": "Listing unfeatured", "listing": serialize_listing(row)}), 200


# ---------------------------
# Reviews
# ---------------------------

@listings_bp.post("/<int:listing_id>/reviews")
@login_required
def create_review(listing_id: int):
    user: User = g.current_user
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    if int(row.user_id) == int(user.id):
        return jsonify({"ok": False, "message": "You cannot review your own listing"}), 400

    data = json_body()
    rating = as_int(pick(data, "rating"))
    comment = text(data, "comment")
    errors = {}
    if isinstance(pick(data, "rating"), bool) or rating is None or not (1 <= rating <= 5):
        errors["rating"] = "Rating must be between 1 and 5"
    if not (3 <= len(comment) <= 500):
        errors["comment"] = "Comment must be between 3 and 500 characters"
    if errors:
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400

    if ListingReview.query.filter_by(listing_id=int(row.id), reviewer_id=int(user.id)).first() is not None:
        return jsonify({"ok": False, "message": "You have already reviewed this listing"}), 400

    review = ListingReview(listing_id=int(row.id), reviewer_id=int(user.id), rating=rating, comment=comment)
    try:
        db.session.add(review)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"ok": False, "message": "You have already reviewed this listing"}), 400
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("review_create_failed listing_id=%s", listing_id)
        return jsonify({"ok": False, "message": "Failed to submit review"}), 500
    return jsonify({"ok": True, "message": "Review submitted for moderation", "review": review.to_dict(reviewer=user)}), 201


@listings_bp.get("/<int:listing_id>/reviews")
def list_reviews(listing_id: int):
    row = listing_or_none(listing_id)
    if row is None:
        return jsonify({"ok": False, "message": "Listing not found"}), 404
    page, limit = page_args(default_limit=10, max_limit=50)
    q = ListingReview.query.filter_by(listing_id=int(row.id), status="approved").order_by(
        ListingReview.created_at.desc(), ListingReview.id.desc()
    )
    rows, total = _paged(q, page, limit)
    reviewers = {int(u.id): u for u in User.query.filter(User.id.in_({int(r.reviewer_id) for r in rows})).all()} if rows else {}
    return jsonify(
        {
            "ok": True,
            "reviews": [r.to_dict(reviewer=reviewers.get(int(r.reviewer_id))) for r in rows],
            "average_rating": float(row.average_rating or 0.0),
            "review_count": int(row.review_count or 0),
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200


@reviews_bp.patch("/<int:review_id>")
@roles_required("admin", "moderator")
def moderate_review(review_id: int):
    review = db.session.get(ListingReview, int(review_id))
    if review is None:
        return jsonify({"ok": False, "message": "Review not found"}), 404
    status = text(json_body(), "status").lower()
    if status not in REVIEW_STATUSES:
        return jsonify({"ok": False, "message": "Invalid review status", "allowed": list(REVIEW_STATUSES)}), 400

    review.status = status
    try:
        db.session.flush()
        listing = listing_or_none(int(review.listing_id))
        if listing is not None:
            ListingReview.refresh_listing_rating(listing)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("review_moderation_failed review_id=%s", review_id)
        return jsonify({"ok": False, "message": "Failed to update review"}), 500
    return jsonify({"ok": True, "message": "Review updated", "review": review.to_dict()}), 200
