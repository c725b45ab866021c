from __future__ import annotations

import hashlib
import hmac
import os
import secrets

from flask import current_app


def hash_token(value: str) -> str:
    """HMAC-SHA256 of a refresh token, session token or one-time code."""
    secret = (current_app.config.get("SECRET_KEY") or os.getenv("SECRET_KEY") or "seraj").encode("utf-8")
    return hmac.new(secret, (value or "").encode("utf-8"), hashlib.sha256).hexdigest()


def new_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def new_numeric_code(length: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))
