from __future__ import annotations

from functools import wraps

from flask import g, jsonify, request

from app.extensions import db
from app.models import User, UserSession
from app.utils.jwt_utils import decode_token, get_bearer_token


def _denied(message: str, status: int):
    payload = {"ok": False, "message": message}
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return jsonify(payload), status


def _bearer_token() -> str | None:
    return get_bearer_token(request.headers.get("Authorization", ""))


def _token_user_id(token: str) -> int | None:
    payload = decode_token(token)
    if not payload:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def current_user() -> User | None:
    """Resolve the bearer token to a user without enforcing anything."""
    cached = getattr(g, "current_user", None)
    if cached is not None:
        return cached
    token = _bearer_token()
    if not token:
        return None
    uid = _token_user_id(token)
    if uid is None:
        return None
    return db.session.get(User, uid)


def current_session_id() -> int | None:
    token = _bearer_token()
    payload = decode_token(token) if token else None
    if not payload or payload.get("sid") is None:
        return None
    try:
        return int(payload["sid"])
    except (TypeError, ValueError):
        return None


def _token_session(user: User) -> tuple[UserSession | None, bool]:
    """Tokens minted for a session are only valid while that session is active."""
    sid = current_session_id()
    if sid is None:
        return None, True
    session = db.session.get(UserSession, sid)
    if session is None or int(session.user_id) != int(user.id) or not session.is_active:
        return None, False
    return session, True


def _authenticate():
    """Returns (user, error_response)."""
    token = _bearer_token()
    if not token:
        return None, _denied("Access denied. No token provided.", 401)
    uid = _token_user_id(token)
    if uid is None:
        return None, _denied("Invalid token.", 401)
    user = db.session.get(User, uid)
    if user is None:
        return None, _denied("User not found", 404)
    session, live = _token_session(user)
    if not live:
        return None, _denied("Invalid token.", 401)
    if user.ban_is_active():
        return None, _denied("Account is banned", 403)
    user.touch()
    if session is not None:
        session.mark_active()
    db.session.commit()
    g.current_user = user
    return user, None


def login_required(fn):
    @wraps(fn)
    def wrapped(*args, **kwargs):
        _user, err = _authenticate()
        if err is not None:
            return err
        return fn(*args, **kwargs)

    return wrapped


def roles_required(*roles: str):
    allowed = {r.strip().lower() for r in roles}

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            user, err = _authenticate()
            if err is not None:
                return err
            if (user.role or "user").strip().lower() not in allowed:
                return _denied("Access denied. Insufficient permissions.", 403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def optional_auth(fn):
    @wraps(fn)
    def wrapped(*args, **kwargs):
        g.current_user = None
        token = _bearer_token()
        if token:
            uid = _token_user_id(token)
            user = db.session.get(User, uid) if uid is not None else None
            if user is not None and _token_session(user)[1]:
                g.current_user = user
        return fn(*args, **kwargs)

    return wrapped


def is_staff(user: User | None) -> bool:
    return bool(user and (user.role or "").lower() in ("admin", "moderator"))
