from __future__ import annotations

import os

from app.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    integration_mode,
)
from app.integrations.mail.base import EmailProvider
from app.integrations.mail.mock_provider import MockEmailProvider
from app.integrations.mail.smtp_provider import SmtpEmailProvider


def smtp_sender() -> str:
    return (os.getenv("SMTP_FROM") or os.getenv("SMTP_USER") or "").strip()


def build_email_provider() -> EmailProvider:
    mode = integration_mode()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:email")
    if mode == "sandbox":
        return MockEmailProvider()

    host = (os.getenv("SMTP_HOST") or "").strip()
    missing = []
    if not host:
        missing.append("SMTP_HOST")
    if not smtp_sender():
        missing.append("SMTP_FROM")
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    try:
        port = int((os.getenv("SMTP_PORT") or "587").strip())
    except ValueError:
        port = 587
    return SmtpEmailProvider(
        host=host,
        port=port,
        username=(os.getenv("SMTP_USER") or "").strip(),
        password=(os.getenv("SMTP_PASS") or "").strip(),
        sender=smtp_sender(),
    )


def email_health() -> dict:
    mode = integration_mode()
    missing = [name for name in ("SMTP_HOST",) if not (os.getenv(name) or "").strip()]
    if not smtp_sender():
        missing.append("SMTP_FROM")
    if mode == "disabled":
        status = "disabled"
    elif mode == "live" and missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "missing": missing if mode == "live" else []}
