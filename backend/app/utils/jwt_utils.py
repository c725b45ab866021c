import os
import time
import logging
from typing import Optional, Dict, Any, Tuple

import jwt

logger = logging.getLogger(__name__)

DEFAULT_ACCESS_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret"


def create_access_token(user_id: int, ttl_seconds: int = DEFAULT_ACCESS_TTL_SECONDS, session_id: int | None = None) -> str:
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + ttl_seconds,
        "type": "access",
    }
    if session_id is not None:
        payload["sid"] = int(session_id)
    return jwt.encode(payload, _secret(), algorithm="HS256")


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, _secret(), algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        logger.debug("jwt_decode_failed err=%s", exc)
        return None
    if payload.get("type") != "access":
        return None
    return payload


def parse_auth_header(auth_header: str) -> Tuple[Optional[str], Optional[str]]:
    if not auth_header:
        return None, None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1], "bearer"
    return None, None


def get_bearer_token(auth_header: str) -> Optional[str]:
    token, _scheme = parse_auth_header(auth_header)
    return token
