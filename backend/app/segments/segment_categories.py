from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Category
from app.utils.auth_guard import roles_required
from app.utils.validation import as_int, json_body, pick, text

categories_bp = Blueprint("categories_bp", __name__, url_prefix="/api/categories")


def category_tree() -> list[dict]:
    rows = Category.query.order_by(Category.name_en.asc(), Category.id.asc()).all()
    children: dict[int, list[dict]] = {}
    for row in rows:
        if row.parent_id is not None:
            children.setdefault(int(row.parent_id), []).append(row.to_dict())
    tree = []
    for row in rows:
        if row.parent_id is None:
            tree.append({**row.to_dict(), "subcategories": children.get(int(row.id), [])})
    return tree


def create_category(*, name_ar: str, name_en: str, parent_id: int | None = None, icon: str | None = None) -> Category:
    """Insert a category with a slug unique under its parent. Caller commits."""
    row = Category(
        name_ar=name_ar,
        name_en=name_en,
        slug=Category.unique_slug(name_en, parent_id),
        parent_id=parent_id,
        icon=(icon or None) if parent_id is None else None,
    )
    db.session.add(row)
    db.session.flush()
    return row


@categories_bp.post("")
@categories_bp.post("/")
@roles_required("admin")
def create():
    data = json_body()
    name_ar = text(data, "name_ar", "nameAr")
    name_en = text(data, "name_en", "nameEn")
    errors = {}
    if len(name_ar) < 2:
        errors["name_ar"] = "Arabic name must be at least 2 characters"
    if len(name_en) < 2:
        errors["name_en"] = "English name must be at least 2 characters"

    parent_id = None
    raw_parent = pick(data, "parent_id", "parentId", "parent")
    if raw_parent not in (None, ""):
        parent_id = as_int(raw_parent)
        parent = db.session.get(Category, parent_id) if parent_id is not None else None
        if parent is None:
            errors["parent_id"] = "Parent category not found"
        elif parent.parent_id is not None:
            errors["parent_id"] = "Subcategories cannot be nested"
    if errors:
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400

    try:
        row = create_category(name_ar=name_ar, name_en=name_en, parent_id=parent_id, icon=text(data, "icon"))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("category_create_failed name_en=%s", name_en)
        return jsonify({"ok": False, "message": "Failed to create category"}), 500
    return jsonify({"ok": True, "message": "Category created", "category": row.to_dict()}), 201


@categories_bp.get("")
@categories_bp.get("/")
def list_categories():
    return jsonify({"ok": True, "categories": category_tree()}), 200
