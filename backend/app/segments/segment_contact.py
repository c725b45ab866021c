from __future__ import annotations

from flask import Blueprint, jsonify

from app.services import email_service
from app.utils.rate_limit import rate_limit
from app.utils.validation import json_body, text, validate_body, validate_contact

contact_bp = Blueprint("contact_bp", __name__, url_prefix="/api/contact")


@contact_bp.post("")
@contact_bp.post("/")
@rate_limit("contact", 3600, 10)
@validate_body(validate_contact)
def send_contact_message():
    data = json_body()
    email = email_service.contact_message_email(
        name=text(data, "name"),
        email=text(data, "email"),
        subject=text(data, "subject"),
        message=text(data, "message"),
    )
    result = email_service.deliver(email)
    if not result.ok:
        return jsonify({"ok": False, "message": "Failed to send message", "code": result.code}), 502
    return jsonify({"ok": True, "message": "Message sent successfully"}), 200
