from __future__ import annotations

from flask import current_app

from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.integrations.media.factory import build_media_provider


class MediaUploadError(RuntimeError):
    pass


def is_acceptable_image(value) -> bool:
    raw = str(value or "").strip()
    return raw.startswith("http") or raw.startswith("data:image")


def store_image(data: str, *, folder: str) -> str:
    """Return a URL for the image, uploading data URLs to the media host.

    Remote URLs are kept as-is. With integrations disabled the data URL itself
    is stored. Raises MediaUploadError when the host rejects the upload.
    """
    raw = (data or "").strip()
    if not is_acceptable_image(raw):
        raise MediaUploadError("Images must be http(s) URLs or data:image URLs")
    if raw.startswith("http"):
        return raw
    try:
        provider = build_media_provider()
    except IntegrationDisabledError:
        return raw
    except IntegrationMisconfiguredError as e:
        current_app.logger.warning("media_upload_misconfigured %s", e)
        raise MediaUploadError("Image hosting is not configured") from e

    result = provider.upload_image(data=raw, folder=folder)
    if not result.ok:
        current_app.logger.warning(
            "media_upload_failed provider=%s code=%s message=%s", provider.name, result.code, result.message
        )
        raise MediaUploadError("Failed to upload image")
    return str((result.raw or {}).get("url") or "")


def store_images(items: list, *, folder: str) -> list[str]:
    return [store_image(str(item), folder=folder) for item in items]
