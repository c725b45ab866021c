from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import AppVersion
from app.utils.auth_guard import roles_required
from app.utils.validation import json_body, text

version_bp = Blueprint("version_bp", __name__, url_prefix="/api/version")


@version_bp.get("/latest-version")
def latest_version():
    platform = (request.args.get("platform") or "").strip().lower()
    if not platform:
        return jsonify({"ok": False, "message": "platform is required"}), 400
    row = AppVersion.query.filter_by(platform=platform).first()
    if row is None:
        return jsonify({"ok": False, "message": "No version found for this platform"}), 404
    return jsonify({"ok": True, **row.to_dict()}), 200


@version_bp.post("/update-version")
@roles_required("admin")
def update_version():
    data = json_body()
    platform = text(data, "platform").lower()
    version = text(data, "version")
    link = text(data, "link")
    if not platform or not version:
        return jsonify({"ok": False, "message": "platform and version are required"}), 400

    row = AppVersion.query.filter_by(platform=platform).first()
    if row is None:
        row = AppVersion(platform=platform)
        db.session.add(row)
    row.version = version
    row.link = link or row.link
    row.updated_at = datetime.utcnow()
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("app_version_update_failed platform=%s", platform)
        return jsonify({"ok": False, "message": "Failed to update version"}), 500
    current_app.logger.info("app_version_updated platform=%s version=%s", platform, version)
    return jsonify({"ok": True, "message": "Version updated", **row.to_dict()}), 200
