from __future__ import annotations

import hashlib

from app.integrations.common import IntegrationResult
from app.integrations.media.base import MediaProvider


class MockMediaProvider(MediaProvider):
    name = "mock"

    def upload_image(self, *, data: str, folder: str) -> IntegrationResult:
        if "[fail]" in (data or ""):
            return IntegrationResult(ok=False, code="MEDIA_PROVIDER_DOWN", message="mock forced failure")
        digest = hashlib.sha256((data or "").encode("utf-8")).hexdigest()[:24]
        url = f"https://media.mock.seraj.local/{folder}/{digest}.png"
        return IntegrationResult(ok=True, code="OK", message="mock_uploaded", raw={"url": url})
