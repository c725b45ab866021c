from __future__ import annotations

import smtplib
from email.message import EmailMessage

from app.integrations.common import IntegrationResult
from app.integrations.mail.base import EmailProvider, OutboundEmail


class SmtpEmailProvider(EmailProvider):
    name = "smtp"

    def __init__(self, *, host: str, port: int, username: str, password: str, sender: str):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    def _build(self, email: OutboundEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = email.subject
        msg["From"] = self.sender
        msg["To"] = email.to
        if email.reply_to:
            msg["Reply-To"] = email.reply_to
        msg.set_content(email.text)
        if email.html:
            msg.add_alternative(email.html, subtype="html")
        return msg

    def send(self, email: OutboundEmail) -> IntegrationResult:
        msg = self._build(email)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.ehlo()
                server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            return IntegrationResult(ok=False, code="SMTP_AUTH_FAILED", message=str(e)[:200])
        except (smtplib.SMTPException, OSError) as e:
            return IntegrationResult(ok=False, code="SMTP_SEND_FAILED", message=str(e)[:200])
        return IntegrationResult(ok=True, code="OK", message="sent", raw={"to": email.to})
