from __future__ import annotations

import os

from app.integrations.common import IntegrationResult
from app.integrations.mail.base import EmailProvider, OutboundEmail


# Sandbox deliveries, newest last. Tests read codes out of here.
OUTBOX: list[OutboundEmail] = []


class MockEmailProvider(EmailProvider):
    name = "mock"

    def _force_failure(self, email: OutboundEmail) -> bool:
        return "[fail]" in (email.subject or "").lower() or (os.getenv("MOCK_EMAIL_FORCE_FAIL") or "").strip() == "1"

    def send(self, email: OutboundEmail) -> IntegrationResult:
        if self._force_failure(email):
            return IntegrationResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="mock forced failure")
        OUTBOX.append(email)
        return IntegrationResult(ok=True, code="OK", message="mock_sent", raw={"to": email.to})
