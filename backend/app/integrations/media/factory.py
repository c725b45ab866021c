from __future__ import annotations

import os

from app.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    integration_mode,
)
from app.integrations.media.base import MediaProvider
from app.integrations.media.cloudinary_provider import CloudinaryMediaProvider, cloudinary_health
from app.integrations.media.mock_provider import MockMediaProvider


def build_media_provider() -> MediaProvider:
    mode = integration_mode()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:media")
    if mode == "sandbox":
        return MockMediaProvider()
    missing = cloudinary_health()["missing"]
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return CloudinaryMediaProvider(
        cloud_name=(os.getenv("CLOUDINARY_CLOUD_NAME") or "").strip(),
        upload_preset=(os.getenv("CLOUDINARY_UPLOAD_PRESET") or "").strip(),
    )


def media_health() -> dict:
    mode = integration_mode()
    missing = cloudinary_health()["missing"] if mode == "live" else []
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "missing": missing}
