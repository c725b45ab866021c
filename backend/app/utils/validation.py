from __future__ import annotations

import re
from functools import wraps
from typing import Any, Callable

from flask import g, jsonify, request


REGISTER_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
LOGIN_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
INTL_PHONE_RE = re.compile(r"^(?:\+|00)[1-9]\d{4,14}$")
HTTP_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

MIN_PASSWORD_LENGTH = 6
MAX_NAME_LENGTH = 30


def json_body() -> dict:
    data = getattr(g, "json_body", None)
    if isinstance(data, dict):
        return data
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = request.form.to_dict() if request.form else {}
    g.json_body = data
    return data


def pick(data: dict, *keys: str, default: Any = None) -> Any:
    """First present value among snake_case / camelCase aliases."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def text(data: dict, *keys: str) -> str:
    value = pick(data, *keys, default="")
    return str(value).strip() if value is not None else ""


def as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    return None


def as_int(value: Any, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def as_float(value: Any, default: float | None = None) -> float | None:
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def validate_registration(data: dict) -> dict:
    errors = {}
    email = text(data, "email")
    if not REGISTER_EMAIL_RE.match(email):
        errors["email"] = "Please enter a valid email address"
    password = str(pick(data, "password", default="") or "")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if not (2 <= len(text(data, "first_name", "firstName")) <= MAX_NAME_LENGTH):
        errors["first_name"] = f"First name must be between 2 and {MAX_NAME_LENGTH} characters"
    if not (2 <= len(text(data, "last_name", "lastName")) <= MAX_NAME_LENGTH):
        errors["last_name"] = f"Last name must be between 2 and {MAX_NAME_LENGTH} characters"
    phone = text(data, "phone")
    if phone and not INTL_PHONE_RE.match(phone):
        errors["phone"] = "Please enter a valid international phone number"
    return errors


def validate_login(data: dict) -> dict:
    errors = {}
    if not LOGIN_EMAIL_RE.match(text(data, "email")):
        errors["email"] = "Please enter a valid email address"
    if not str(pick(data, "password", default="") or ""):
        errors["password"] = "Password is required"
    return errors


def validate_contact(data: dict) -> dict:
    errors = {}
    if len(text(data, "name")) < 2:
        errors["name"] = "Name must be at least 2 characters"
    if not LOGIN_EMAIL_RE.match(text(data, "email")):
        errors["email"] = "Please enter a valid email address"
    if len(text(data, "subject")) < 3:
        errors["subject"] = "Subject must be at least 3 characters"
    if len(text(data, "message")) < 10:
        errors["message"] = "Message must be at least 10 characters"
    return errors


def validate_listing_fields(data: dict) -> dict:
    """Length/range checks applied only to fields that are present."""
    errors = {}
    title = pick(data, "title")
    if title is not None and not (1 <= len(str(title).strip()) <= 100):
        errors["title"] = "Title must be between 1 and 100 characters"
    description = pick(data, "description")
    if description is not None and not (20 <= len(str(description).strip()) <= 1000):
        errors["description"] = "Description must be between 20 and 1000 characters"
    price = pick(data, "price")
    if price is not None and price != "":
        parsed = as_float(price)
        if parsed is None or parsed < 0:
            errors["price"] = "Price must be a positive number"
    return errors


def validate_body(validator: Callable[[dict], dict]):
    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            errors = validator(json_body())
            if errors:
                return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400
            return fn(*args, **kwargs)

        return wrapped

    return decorator
