from __future__ import annotations

import os
from html import escape

from flask import current_app

from app.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    IntegrationResult,
)
from app.integrations.mail.base import OutboundEmail
from app.integrations.mail.factory import build_email_provider, smtp_sender


APP_NAME = "Seraj"


def _wrap_html(title: str, body_html: str) -> str:
    return (
        '<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;">'
        f'<h2 style="color:#2c3e50;">{escape(title)}</h2>'
        f"{body_html}"
        f'<p style="color:#7f8c8d;font-size:12px;">{APP_NAME} team</p>'
        "</div>"
    )


def deliver(email: OutboundEmail) -> IntegrationResult:
    try:
        provider = build_email_provider()
    except IntegrationDisabledError:
        current_app.logger.info("email_delivery_disabled to=%s subject=%s", email.to, email.subject)
        return IntegrationResult(ok=False, code="INTEGRATION_DISABLED", message="email delivery disabled")
    except IntegrationMisconfiguredError as e:
        current_app.logger.warning("email_delivery_misconfigured %s", e)
        return IntegrationResult(ok=False, code="INTEGRATION_MISCONFIGURED", message=str(e))

    result = provider.send(email)
    if result.ok:
        current_app.logger.info("email_sent provider=%s to=%s subject=%s", provider.name, email.to, email.subject)
    else:
        current_app.logger.warning(
            "email_send_failed provider=%s to=%s code=%s message=%s",
            provider.name,
            email.to,
            result.code,
            result.message,
        )
    return result


def verification_code_email(to: str, code: str) -> OutboundEmail:
    text = (
        f"Your {APP_NAME} verification code is: {code}\n\n"
        "The code is valid for 24 hours. If you did not create an account, ignore this email."
    )
    html = _wrap_html(
        "Confirm your email",
        f'<p>Your verification code is:</p><p style="font-size:24px;letter-spacing:4px;"><b>{escape(code)}</b></p>'
        "<p>The code is valid for 24 hours.</p>",
    )
    return OutboundEmail(to=to, subject="Confirm your email address", text=text, html=html)


def welcome_email(to: str, first_name: str) -> OutboundEmail:
    text = (
        f"Hello {first_name},\n\nWelcome to {APP_NAME}! You can now post listings, "
        "follow sellers and message buyers."
    )
    html = _wrap_html(
        f"Welcome to {APP_NAME}!",
        f"<p>Hello {escape(first_name)},</p><p>You can now post listings, follow sellers and message buyers.</p>",
    )
    return OutboundEmail(to=to, subject=f"Welcome to {APP_NAME}!", text=text, html=html)


def new_device_alert_email(to: str, device: dict) -> OutboundEmail:
    browser = device.get("browser") or "unknown"
    os_name = device.get("os") or "unknown"
    ip = device.get("ip") or "unknown"
    text = (
        "A new sign-in to your account was detected.\n\n"
        f"Browser: {browser}\nSystem: {os_name}\nIP address: {ip}\n\n"
        "If this was not you, reset your password right away."
    )
    html = _wrap_html(
        "New sign-in detected",
        "<ul>"
        f"<li>Browser: {escape(browser)}</li>"
        f"<li>System: {escape(os_name)}</li>"
        f"<li>IP address: {escape(ip)}</li>"
        "</ul><p>If this was not you, reset your password right away.</p>",
    )
    return OutboundEmail(to=to, subject="Alert: sign-in from a new device", text=text, html=html)


def password_reset_code_email(to: str, code: str) -> OutboundEmail:
    text = f"Your password reset code is: {code}\n\nThe code is valid for one hour."
    html = _wrap_html(
        "Reset your password",
        f'<p>Your reset code is:</p><p style="font-size:24px;letter-spacing:4px;"><b>{escape(code)}</b></p>'
        "<p>The code is valid for one hour.</p>",
    )
    return OutboundEmail(to=to, subject="Password reset code", text=text, html=html)


def password_reset_confirmation_email(to: str) -> OutboundEmail:
    text = "Your password was changed. If you did not do this, contact support immediately."
    return OutboundEmail(
        to=to,
        subject="Your password was changed",
        text=text,
        html=_wrap_html("Password changed", f"<p>{escape(text)}</p>"),
    )


def account_verified_email(to: str, first_name: str) -> OutboundEmail:
    text = f"Hello {first_name},\n\nYour email address is verified. Your account is fully active."
    return OutboundEmail(
        to=to,
        subject="Your account is verified",
        text=text,
        html=_wrap_html("Account verified", f"<p>Hello {escape(first_name)},</p><p>Your email address is verified.</p>"),
    )


def contact_message_email(*, name: str, email: str, subject: str, message: str) -> OutboundEmail:
    support = (os.getenv("SUPPORT_EMAIL") or smtp_sender() or "support@seraj.local").strip()
    text = f"From: {name} <{email}>\nSubject: {subject}\n\n{message}"
    html = _wrap_html(
        "New contact message",
        f"<p><b>From:</b> {escape(name)} &lt;{escape(email)}&gt;</p>"
        f"<p><b>Subject:</b> {escape(subject)}</p>"
        f'<p style="white-space:pre-wrap;">{escape(message)}</p>',
    )
    return OutboundEmail(to=support, subject=f"[Contact] {subject}", text=text, html=html, reply_to=email)
