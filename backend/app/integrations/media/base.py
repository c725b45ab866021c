from __future__ import annotations

from app.integrations.common import IntegrationResult


class MediaProvider:
    name = "unknown"

    def upload_image(self, *, data: str, folder: str) -> IntegrationResult:
        """Upload a data URL or remote URL. On success raw["url"] holds the hosted URL."""
        raise NotImplementedError
