from __future__ import annotations

import os
import re
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models import PasswordHistory, RefreshToken, User, UserSession, VerificationCode
from app.models.user import USER_CITIES
from app.models.verification_code import PURPOSE_RESET_PASSWORD, PURPOSE_VERIFY_EMAIL
from app.services import email_service
from app.services.media_service import MediaUploadError, store_image
from app.utils.auth_guard import current_session_id, login_required
from app.utils.jwt_utils import DEFAULT_ACCESS_TTL_SECONDS, create_access_token
from app.utils.rate_limit import rate_limit, resolve_client_ip, trust_proxy_headers
from app.utils.security import hash_token, new_numeric_code, new_refresh_token
from app.utils.validation import (
    INTL_PHONE_RE,
    MAX_NAME_LENGTH,
    MIN_PASSWORD_LENGTH,
    json_body,
    pick,
    text,
    validate_body,
    validate_login,
    validate_registration,
)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")

EMAIL_CODE_TTL = timedelta(hours=24)
RESET_CODE_TTL = timedelta(hours=1)


def _access_token_ttl_seconds() -> int:
    raw = (os.getenv("ACCESS_TOKEN_TTL_SECONDS") or "").strip()
    if raw:
        try:
            parsed = int(raw)
            if parsed > 0:
                return parsed
        except ValueError:
            pass
    return DEFAULT_ACCESS_TTL_SECONDS


def _refresh_token_ttl_days() -> int:
    raw = (os.getenv("REFRESH_TOKEN_TTL_DAYS") or "").strip()
    if raw:
        try:
            parsed = int(raw)
            if parsed > 0:
                return parsed
        except ValueError:
            pass
    return 45


def _iso_utc(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat() + "Z"


# ---------------------------
# Device + session helpers
# ---------------------------

_BROWSERS = (
    ("Edg/", "Edge"),
    ("OPR/", "Opera"),
    ("SamsungBrowser", "Samsung Internet"),
    ("Chrome/", "Chrome"),
    ("CriOS", "Chrome"),
    ("Firefox/", "Firefox"),
    ("Safari/", "Safari"),
    ("okhttp", "Android App"),
    ("Expo", "Expo App"),
)

_SYSTEMS = (
    ("Windows", "Windows"),
    ("Android", "Android"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Mac OS X", "macOS"),
    ("Linux", "Linux"),
)


def _device_info() -> dict:
    ua = request.headers.get("User-Agent", "") or ""
    browser = next((name for token, name in _BROWSERS if token in ua), "unknown")
    platform = (request.headers.get("sec-ch-ua-platform") or "").strip().strip('"')
    os_name = platform or next((name for token, name in _SYSTEMS if token in ua), "unknown")
    return {
        "browser": browser,
        "os": os_name,
        "ip": resolve_client_ip(request, trusted_proxy=trust_proxy_headers(False)),
    }


def _issue_refresh_token_record(*, user_id: int, session_id: int | None) -> str:
    now = datetime.utcnow()
    token = new_refresh_token()
    db.session.add(
        RefreshToken(
            user_id=int(user_id),
            session_id=session_id,
            token_hash=hash_token(token),
            created_at=now,
            expires_at=now + timedelta(days=_refresh_token_ttl_days()),
        )
    )
    return token


def _revoke_refresh_tokens(*, user_id: int, session_id: int | None = None) -> int:
    q = RefreshToken.query.filter(RefreshToken.user_id == int(user_id), RefreshToken.revoked_at.is_(None))
    if session_id is not None:
        q = q.filter(RefreshToken.session_id == int(session_id))
    return int(q.update({"revoked_at": datetime.utcnow()}, synchronize_session=False) or 0)


def _open_session(user: User, device: dict) -> tuple[UserSession, dict]:
    """Create a session row plus access/refresh tokens. Caller commits."""
    session = UserSession(
        user_id=int(user.id),
        browser=device["browser"],
        os=device["os"],
        ip=device["ip"],
    )
    db.session.add(session)
    db.session.flush()
    ttl = _access_token_ttl_seconds()
    access_token = create_access_token(int(user.id), ttl_seconds=ttl, session_id=int(session.id))
    session.token_hash = hash_token(access_token)
    refresh_token = _issue_refresh_token_record(user_id=int(user.id), session_id=int(session.id))
    tokens = {
        "token": access_token,
        "refresh_token": refresh_token,
        "expires_at": _iso_utc(datetime.utcnow() + timedelta(seconds=ttl)),
        "session_id": int(session.id),
    }
    return session, tokens


def _user_summary(user: User) -> dict:
    return {
        "id": int(user.id),
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "role": user.role,
        "profile_image": user.profile_image,
        "city": user.city,
        "is_email_verified": bool(user.is_email_verified),
    }


# ---------------------------
# One-time codes
# ---------------------------

def _issue_code(user: User, purpose: str, ttl: timedelta) -> str:
    now = datetime.utcnow()
    VerificationCode.query.filter_by(user_id=int(user.id), purpose=purpose, used_at=None).update(
        {"used_at": now}, synchronize_session=False
    )
    code = new_numeric_code()
    db.session.add(
        VerificationCode(
            user_id=int(user.id),
            purpose=purpose,
            code_hash=hash_token(code),
            created_at=now,
            expires_at=now + ttl,
        )
    )
    return code


def _consume_code(user: User, purpose: str, code: str) -> bool:
    now = datetime.utcnow()
    rec = (
        VerificationCode.query.filter_by(
            user_id=int(user.id),
            purpose=purpose,
            code_hash=hash_token((code or "").strip()),
        )
        .filter(VerificationCode.used_at.is_(None))
        .first()
    )
    if rec is None or rec.expires_at < now:
        return False
    rec.used_at = now
    return True


def _user_by_email(email: str) -> User | None:
    return User.query.filter_by(email=(email or "").strip().lower()).first()


# ---------------------------
# Routes
# ---------------------------

@auth_bp.post("/register")
@rate_limit("auth:register", 300, 25)
@validate_body(validate_registration)
def register():
    data = json_body()
    email = text(data, "email").lower()
    if _user_by_email(email) is not None:
        return jsonify({"ok": False, "message": "Email already registered"}), 400

    user = User(
        first_name=text(data, "first_name", "firstName"),
        last_name=text(data, "last_name", "lastName"),
        email=email,
        phone=text(data, "phone") or None,
    )
    city = text(data, "city")
    if city in USER_CITIES:
        user.city = city
    user.set_password(str(pick(data, "password")))

    try:
        db.session.add(user)
        db.session.flush()
        code = _issue_code(user, PURPOSE_VERIFY_EMAIL, EMAIL_CODE_TTL)
        _session, tokens = _open_session(user, _device_info())
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info("register_conflict email=%s", email)
        return jsonify({"ok": False, "message": "Email already registered"}), 400
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("register_failed")
        return jsonify({"ok": False, "message": "Failed to create account"}), 500

    verification = email_service.deliver(email_service.verification_code_email(user.email, code))
    email_service.deliver(email_service.welcome_email(user.email, user.first_name))
    current_app.logger.info("register_ok user_id=%s", user.id)

    body = {
        "ok": True,
        "message": "Account created. Check your email for the verification code.",
        "user": _user_summary(user),
        "verification_email_sent": bool(verification.ok),
        **tokens,
    }
    return jsonify(body), 201


@auth_bp.post("/login")
@rate_limit("auth:login", 300, 30)
@validate_body(validate_login)
def login():
    data = json_body()
    user = _user_by_email(text(data, "email"))
    if user is None:
        return jsonify({"ok": False, "message": "Invalid credentials"}), 400

    if user.is_locked():
        retry_after = int((user.lock_until - datetime.utcnow()).total_seconds()) + 1
        return jsonify(
            {
                "ok": False,
                "message": "Account temporarily locked after too many failed attempts",
                "retry_after": max(1, retry_after),
            }
        ), 423

    if not user.check_password(str(pick(data, "password", default=""))):
        user.register_failed_login()
        db.session.commit()
        return jsonify({"ok": False, "message": "Invalid credentials"}), 400

    if not user.is_email_verified:
        return jsonify({"ok": False, "message": "Please verify your email first", "requires_verification": True}), 400

    if user.ban_is_active():
        db.session.commit()
        return jsonify(
            {
                "ok": False,
                "message": "Account is banned",
                "ban_type": user.ban_type,
                "ban_expires_at": user.ban_expires_at.isoformat() if user.ban_expires_at else None,
            }
        ), 403

    device = _device_info()
    had_sessions = UserSession.query.filter_by(user_id=int(user.id)).first() is not None
    is_new_device = UserSession.is_new_device(int(user.id), **device)
    try:
        user.reset_failed_logins()
        user.touch()
        _session, tokens = _open_session(user, device)
        UserSession.clean_old_sessions(int(user.id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("login_session_issue_failed")
        return jsonify({"ok": False, "message": "Failed to issue session"}), 500

    if is_new_device and had_sessions:
        email_service.deliver(email_service.new_device_alert_email(user.email, device))

    return jsonify(
        {
            "ok": True,
            "message": "Logged in",
            "is_new_device": bool(is_new_device),
            "user": _user_summary(user),
            **tokens,
        }
    ), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"ok": True, "user": g.current_user.to_dict()}), 200


@auth_bp.put("/profile")
@login_required
def update_profile():
    user: User = g.current_user
    data = json_body()
    errors = {}

    for field, aliases in (("first_name", ("first_name", "firstName")), ("last_name", ("last_name", "lastName"))):
        if pick(data, *aliases) is None:
            continue
        value = text(data, *aliases)
        if not (2 <= len(value) <= MAX_NAME_LENGTH):
            errors[field] = f"Must be between 2 and {MAX_NAME_LENGTH} characters"
        else:
            setattr(user, field, value)

    if pick(data, "phone") is not None:
        phone = text(data, "phone")
        if phone and not INTL_PHONE_RE.match(phone):
            errors["phone"] = "Please enter a valid international phone number"
        else:
            user.phone = phone or None

    if pick(data, "city") is not None:
        city = text(data, "city")
        if city and city not in USER_CITIES:
            errors["city"] = "Unknown city"
        else:
            user.city = city or None

    if pick(data, "bio") is not None:
        bio = text(data, "bio")
        if len(bio) > 500:
            errors["bio"] = "Bio must be at most 500 characters"
        else:
            user.bio = bio

    for field in ("area", "street", "building_number", "landmark"):
        if pick(data, field) is not None:
            setattr(user, field, text(data, field)[:160] or None)

    if errors:
        db.session.rollback()
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400

    avatar = pick(data, "profile_image", "profileImage", "avatar")
    if avatar:
        try:
            user.profile_image = store_image(str(avatar), folder="avatars")
        except MediaUploadError as e:
            db.session.rollback()
            return jsonify({"ok": False, "message": str(e)}), 400

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("profile_update_failed user_id=%s", user.id)
        return jsonify({"ok": False, "message": "Failed to update profile"}), 500
    return jsonify({"ok": True, "message": "Profile updated", "user": user.to_dict()}), 200


@auth_bp.post("/refresh-token")
def refresh_token():
    data = json_body()
    raw = text(data, "refresh_token", "refreshToken")
    if not raw:
        return jsonify({"ok": False, "message": "refresh_token is required"}), 400

    now = datetime.utcnow()
    rec = RefreshToken.query.filter_by(token_hash=hash_token(raw)).first()
    if rec is None:
        return jsonify({"ok": False, "message": "Invalid refresh token"}), 401
    if rec.revoked_at is not None:
        return jsonify({"ok": False, "message": "Refresh token revoked"}), 401
    if not rec.is_usable(now):
        return jsonify({"ok": False, "message": "Refresh token expired"}), 401

    user = db.session.get(User, int(rec.user_id))
    session = db.session.get(UserSession, int(rec.session_id)) if rec.session_id else None
    if user is None or (session is not None and not session.is_active):
        return jsonify({"ok": False, "message": "Invalid refresh token"}), 401
    if user.ban_is_active():
        db.session.commit()
        return jsonify({"ok": False, "message": "Account is banned"}), 403

    try:
        rec.revoked_at = now
        ttl = _access_token_ttl_seconds()
        access_token = create_access_token(
            int(user.id),
            ttl_seconds=ttl,
            session_id=int(session.id) if session is not None else None,
        )
        if session is not None:
            session.token_hash = hash_token(access_token)
            session.last_active_at = now
        next_refresh = _issue_refresh_token_record(
            user_id=int(user.id),
            session_id=int(session.id) if session is not None else None,
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("refresh_token_rotation_failed")
        return jsonify({"ok": False, "message": "Failed to refresh session"}), 500

    return jsonify(
        {
            "ok": True,
            "token": access_token,
            "refresh_token": next_refresh,
            "expires_at": _iso_utc(now + timedelta(seconds=ttl)),
        }
    ), 200


@auth_bp.post("/forgot-password")
@rate_limit("auth:forgot", 300, 10)
def forgot_password():
    email = text(json_body(), "email").lower()
    if not email:
        return jsonify({"ok": False, "message": "Email is required"}), 400
    user = _user_by_email(email)
    if user is None:
        return jsonify({"ok": False, "message": "User not found"}), 404

    try:
        code = _issue_code(user, PURPOSE_RESET_PASSWORD, RESET_CODE_TTL)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("password_reset_request_failed")
        return jsonify({"ok": False, "message": "Failed to issue reset code"}), 500

    result = email_service.deliver(email_service.password_reset_code_email(user.email, code))
    current_app.logger.info("password_reset_requested user_id=%s delivered=%s", user.id, result.ok)
    return jsonify({"ok": True, "message": "A reset code was sent to your email"}), 200


@auth_bp.post("/reset-password")
@rate_limit("auth:reset", 300, 10)
def reset_password():
    data = json_body()
    email = text(data, "email").lower()
    code = text(data, "code")
    password = str(pick(data, "password", "new_password", "newPassword", default="") or "")
    if not email or not code or not password:
        return jsonify({"ok": False, "message": "email, code and password are required"}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({"ok": False, "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"}), 400

    user = _user_by_email(email)
    if user is None or not _consume_code(user, PURPOSE_RESET_PASSWORD, code):
        db.session.rollback()
        return jsonify({"ok": False, "message": "Invalid or expired code"}), 400

    if user.check_password(password) or PasswordHistory.was_recently_used(int(user.id), password):
        db.session.rollback()
        return jsonify({"ok": False, "message": "Choose a password you have not used recently"}), 400

    try:
        db.session.add(PasswordHistory(user_id=int(user.id), password_hash=user.password_hash))
        user.set_password(password)
        user.reset_failed_logins()
        _revoke_refresh_tokens(user_id=int(user.id))
        UserSession.query.filter_by(user_id=int(user.id), is_active=True).update(
            {"is_active": False}, synchronize_session=False
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("password_reset_failed")
        return jsonify({"ok": False, "message": "Failed to reset password"}), 500

    email_service.deliver(email_service.password_reset_confirmation_email(user.email))
    current_app.logger.info("password_reset_completed user_id=%s", user.id)
    return jsonify({"ok": True, "message": "Password has been reset"}), 200


@auth_bp.post("/verify-email")
@rate_limit("auth:verify", 300, 20)
def verify_email():
    data = json_body()
    email = text(data, "email").lower()
    code = text(data, "code")
    if not email or not code:
        return jsonify({"ok": False, "message": "email and code are required"}), 400
    user = _user_by_email(email)
    if user is None:
        return jsonify({"ok": False, "message": "User not found"}), 404
    if user.is_email_verified:
        return jsonify({"ok": True, "message": "Email already verified"}), 200
    if not _consume_code(user, PURPOSE_VERIFY_EMAIL, code):
        db.session.rollback()
        return jsonify({"ok": False, "message": "Invalid or expired code"}), 400

    user.is_email_verified = True
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("email_verify_confirm_failed")
        return jsonify({"ok": False, "message": "Failed to verify email"}), 500

    email_service.deliver(email_service.account_verified_email(user.email, user.first_name))
    current_app.logger.info("email_verify_confirmed user_id=%s", user.id)
    return jsonify({"ok": True, "message": "Email verified"}), 200


@auth_bp.post("/resend-verification")
@rate_limit("auth:resend", 300, 5)
def resend_verification():
    email = text(json_body(), "email").lower()
    if not email:
        return jsonify({"ok": False, "message": "Email is required"}), 400
    user = _user_by_email(email)
    if user is None:
        return jsonify({"ok": False, "message": "User not found"}), 404
    if user.is_email_verified:
        return jsonify({"ok": False, "message": "Email already verified"}), 400

    try:
        code = _issue_code(user, PURPOSE_VERIFY_EMAIL, EMAIL_CODE_TTL)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("email_verify_resend_failed")
        return jsonify({"ok": False, "message": "Failed to issue verification code"}), 500

    result = email_service.deliver(email_service.verification_code_email(user.email, code))
    return jsonify({"ok": True, "message": "Verification code sent", "delivered": bool(result.ok)}), 200


@auth_bp.post("/logout")
@login_required
def logout():
    user: User = g.current_user
    data = json_body()
    session_id = current_session_id()
    revoked = 0
    try:
        raw = text(data, "refresh_token", "refreshToken")
        if raw:
            rec = RefreshToken.query.filter_by(token_hash=hash_token(raw), user_id=int(user.id)).first()
            if rec is not None and rec.revoked_at is None:
                rec.revoked_at = datetime.utcnow()
                revoked += 1
        if session_id is not None:
            session = UserSession.query.filter_by(id=session_id, user_id=int(user.id)).first()
            if session is not None:
                session.terminate()
            revoked += _revoke_refresh_tokens(user_id=int(user.id), session_id=session_id)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("logout_revoke_refresh_failed")
        return jsonify({"ok": False, "message": "Failed to logout"}), 500
    return jsonify({"ok": True, "message": "Logged out", "revoked_refresh_tokens": revoked}), 200


@auth_bp.get("/sessions")
@login_required
def list_sessions():
    user: User = g.current_user
    current_id = current_session_id()
    rows = (
        UserSession.query.filter_by(user_id=int(user.id), is_active=True)
        .order_by(UserSession.last_active_at.desc())
        .all()
    )
    items = [{**row.to_dict(), "current": row.id == current_id} for row in rows]
    return jsonify({"ok": True, "sessions": items}), 200


@auth_bp.delete("/sessions/<int:session_id>")
@login_required
def terminate_session(session_id: int):
    user: User = g.current_user
    row = UserSession.query.filter_by(id=int(session_id), user_id=int(user.id)).first()
    if row is None:
        return jsonify({"ok": False, "message": "Session not found"}), 404
    try:
        row.terminate()
        _revoke_refresh_tokens(user_id=int(user.id), session_id=int(row.id))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("session_terminate_failed")
        return jsonify({"ok": False, "message": "Failed to terminate session"}), 500
    return jsonify({"ok": True, "message": "Session terminated"}), 200
