from __future__ import annotations

import os

import requests

from app.integrations.common import IntegrationResult
from app.integrations.media.base import MediaProvider


CLOUDINARY_BASE = "https://api.cloudinary.com/v1_1"


def _map_cloudinary_error(status: int) -> str:
    if status in (401, 403):
        return "MEDIA_AUTH_FAILED"
    if status == 429:
        return "MEDIA_RATE_LIMITED"
    if status in (400, 422):
        return "MEDIA_INVALID_FILE"
    return "MEDIA_PROVIDER_DOWN"


class CloudinaryMediaProvider(MediaProvider):
    name = "cloudinary"

    def __init__(self, *, cloud_name: str, upload_preset: str):
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset

    def upload_image(self, *, data: str, folder: str) -> IntegrationResult:
        payload = {
            "file": data,
            "upload_preset": self.upload_preset,
            "folder": folder,
        }
        try:
            r = requests.post(f"{CLOUDINARY_BASE}/{self.cloud_name}/image/upload", data=payload, timeout=30)
            body = r.json() if r.content else {}
        except requests.Timeout:
            return IntegrationResult(ok=False, code="MEDIA_PROVIDER_DOWN", message="timeout")
        except (requests.RequestException, ValueError) as e:
            return IntegrationResult(ok=False, code="MEDIA_PROVIDER_DOWN", message=str(e)[:200])
        if 200 <= r.status_code < 300 and isinstance(body, dict) and body.get("secure_url"):
            return IntegrationResult(ok=True, code="OK", message="uploaded", raw={"url": body["secure_url"]})
        detail = ""
        if isinstance(body, dict):
            detail = str((body.get("error") or {}).get("message") or "")
        return IntegrationResult(
            ok=False,
            code=_map_cloudinary_error(r.status_code),
            message=(detail or f"http_{r.status_code}")[:200],
            raw=body if isinstance(body, dict) else None,
        )


def cloudinary_health() -> dict:
    missing = [
        name
        for name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_UPLOAD_PRESET")
        if not (os.getenv(name) or "").strip()
    ]
    return {"missing": missing}
