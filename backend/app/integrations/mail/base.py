from __future__ import annotations

from dataclasses import dataclass

from app.integrations.common import IntegrationResult


@dataclass
class OutboundEmail:
    to: str
    subject: str
    text: str
    html: str = ""
    reply_to: str = ""


class EmailProvider:
    name = "unknown"

    def send(self, email: OutboundEmail) -> IntegrationResult:
        raise NotImplementedError
