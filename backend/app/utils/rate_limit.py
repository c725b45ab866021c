from __future__ import annotations

import os
import threading
import time
from functools import wraps

import redis
from flask import current_app, g, jsonify, request


_LOCK = threading.Lock()
_WINDOWS: dict[str, list[float]] = {}
_CLIENT = None
_CLIENT_INIT = False
_STATS = {
    "redis_hits": 0,
    "redis_errors": 0,
    "memory_hits": 0,
}


def check_limit(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """Fixed-window counter. Returns (allowed, retry_after_seconds)."""
    safe_window = max(1, int(window_seconds))
    safe_limit = max(1, int(limit))
    redis_client = _get_client()
    if redis_client is not None:
        now_sec = int(time.time())
        window_epoch = now_sec // safe_window
        counter_key = f"seraj:rl:{key}:{window_epoch}"
        try:
            current = int(redis_client.incr(counter_key))
            if current == 1:
                redis_client.expire(counter_key, safe_window + 1)
            with _LOCK:
                _STATS["redis_hits"] += 1
            if current <= safe_limit:
                return True, 0
            return False, int(max(1, safe_window - (now_sec % safe_window)))
        except redis.RedisError:
            with _LOCK:
                _STATS["redis_errors"] += 1
    return _check_limit_memory(key, limit=safe_limit, window_seconds=safe_window)


def _check_limit_memory(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    now = time.time()
    start = now - window_seconds
    with _LOCK:
        bucket = [ts for ts in _WINDOWS.get(key, []) if ts >= start]
        if len(bucket) >= limit:
            _WINDOWS[key] = bucket
            _STATS["memory_hits"] += 1
            return False, int(max(1, window_seconds - (now - min(bucket))))
        bucket.append(now)
        _WINDOWS[key] = bucket
    return True, 0


def reset_memory_windows() -> None:
    with _LOCK:
        _WINDOWS.clear()


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def rate_limit_enabled(default: bool = True) -> bool:
    return _env_bool("RATE_LIMIT_ENABLED", default)


def rate_limit_active() -> bool:
    """Limits are skipped under TESTING unless RATE_LIMIT_IN_TESTS is set."""
    if not rate_limit_enabled(True):
        return False
    try:
        testing = bool(current_app.config.get("TESTING"))
    except RuntimeError:
        testing = False
    if testing:
        return _env_bool("RATE_LIMIT_IN_TESTS", False)
    return True


def trust_proxy_headers(default: bool = False) -> bool:
    return _env_bool("TRUST_PROXY_HEADERS", default)


def _rate_limit_redis_url() -> str:
    return (os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()


def _get_client():
    global _CLIENT, _CLIENT_INIT
    with _LOCK:
        if _CLIENT_INIT:
            return _CLIENT
        _CLIENT_INIT = True
    url = _rate_limit_redis_url()
    if not url:
        return None
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=0.75,
            socket_timeout=0.75,
            health_check_interval=30,
        )
        client.ping()
    except redis.RedisError:
        return None
    with _LOCK:
        _CLIENT = client
    return client


def resolve_client_ip(req, *, trusted_proxy: bool = True) -> str:
    if trusted_proxy:
        xff = (req.headers.get("X-Forwarded-For") or "").strip()
        if xff:
            first_hop = (xff.split(",")[0] or "").strip()
            if first_hop:
                return first_hop
        x_real_ip = (req.headers.get("X-Real-IP") or "").strip()
        if x_real_ip:
            return x_real_ip
    return (req.remote_addr or "").strip() or "unknown"


def build_rate_limit_subject(*, scope: str, user_id: int | None, request_obj=None) -> str:
    req = request_obj or request
    if (scope or "ip").strip().lower() == "user" and user_id is not None:
        return f"u:{int(user_id)}"
    return f"ip:{resolve_client_ip(req, trusted_proxy=trust_proxy_headers(False))}"


def rate_limited_response(retry_after: int, message: str = "Too many requests. Please retry later."):
    retry_after = int(max(1, retry_after or 1))
    payload = {
        "ok": False,
        "error": "RATE_LIMITED",
        "message": message,
        "retry_after": retry_after,
    }
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    resp = jsonify(payload)
    resp.status_code = 429
    resp.headers["Retry-After"] = str(retry_after)
    return resp


def rate_limit(
    key: str,
    per_seconds: int,
    limit: int,
    *,
    scope: str = "ip",
    message: str = "Too many requests. Please retry later.",
):
    """Route decorator over check_limit. Scope "user" keys on the authenticated user."""
    safe_window = max(1, int(per_seconds or 1))
    safe_limit = max(1, int(limit or 1))

    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            if not rate_limit_active():
                return fn(*args, **kwargs)
            user = getattr(g, "current_user", None)
            subject = build_rate_limit_subject(
                scope=scope,
                user_id=int(user.id) if user is not None else getattr(g, "auth_user_id", None),
            )
            ok, retry_after = check_limit(f"{key}:{subject}", limit=safe_limit, window_seconds=safe_window)
            if ok:
                return fn(*args, **kwargs)
            return rate_limited_response(retry_after, message)

        return wrapped

    return decorator


def limiter_stats() -> dict:
    with _LOCK:
        return {
            "enabled": bool(rate_limit_enabled(True)),
            "redis_configured": bool(_rate_limit_redis_url()),
            "redis_connected": bool(_CLIENT is not None),
            **{k: int(v) for k, v in _STATS.items()},
        }
