from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Listing, Report, User
from app.models.report import REPORT_REASONS, REPORT_RESOLUTIONS, REPORT_STATUSES, REPORT_TYPES
from app.utils.auth_guard import login_required, roles_required
from app.utils.pagination import pagination_block, total_pages
from app.utils.validation import HTTP_URL_RE, as_int, json_body, pick, text

reports_bp = Blueprint("reports_bp", __name__, url_prefix="/api/reports")

TEMPORARY_BAN_DAYS = 7


def _page() -> int:
    page = as_int(request.args.get("page"), 1) or 1
    return max(1, page)


@reports_bp.post("")
@reports_bp.post("/")
@login_required
def create_report():
    reporter: User = g.current_user
    data = json_body()

    rtype = text(data, "type").upper()
    reason = text(data, "reason").upper()
    description = text(data, "description")
    evidence = pick(data, "evidence", default=[])

    errors = {}
    if rtype not in REPORT_TYPES:
        errors["type"] = "Type must be USER or LISTING"
    if reason not in REPORT_REASONS:
        errors["reason"] = "Invalid reason"
    if not (10 <= len(description) <= 1000):
        errors["description"] = "Description must be between 10 and 1000 characters"
    if not isinstance(evidence, list) or not all(HTTP_URL_RE.match(str(x or "")) for x in evidence):
        errors["evidence"] = "Evidence must be a list of http(s) URLs"
    if errors:
        return jsonify({"ok": False, "message": "Validation failed", "errors": errors}), 400

    report = Report(reporter_id=int(reporter.id), type=rtype, reason=reason, description=description)
    report.evidence = [str(x) for x in evidence]

    if rtype == "USER":
        target_id = as_int(pick(data, "reported_user_id", "reportedUser", "reportedUserId"))
        if target_id is None:
            return jsonify({"ok": False, "message": "reported_user_id is required for USER reports"}), 400
        if db.session.get(User, target_id) is None:
            return jsonify({"ok": False, "message": "Reported user not found"}), 404
        if target_id == int(reporter.id):
            return jsonify({"ok": False, "message": "You cannot report yourself"}), 400
        report.reported_user_id = target_id
    else:
        target_id = as_int(pick(data, "reported_listing_id", "reportedListing", "reportedListingId"))
        if target_id is None:
            return jsonify({"ok": False, "message": "reported_listing_id is required for LISTING reports"}), 400
        listing = db.session.get(Listing, target_id)
        if listing is None:
            return jsonify({"ok": False, "message": "Reported listing not found"}), 404
        if int(listing.user_id) == int(reporter.id):
            return jsonify({"ok": False, "message": "You cannot report your own listing"}), 400
        report.reported_listing_id = target_id

    try:
        db.session.add(report)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("report_create_failed reporter_id=%s", reporter.id)
        return jsonify({"ok": False, "message": "Failed to submit report"}), 500
    current_app.logger.info("report_created report_id=%s type=%s", report.id, rtype)
    return jsonify({"ok": True, "message": "Report submitted", "report": report.to_dict()}), 201


@reports_bp.get("/my-reports")
@login_required
def my_reports():
    page, limit = _page(), 10
    q = Report.query.filter_by(reporter_id=int(g.current_user.id))
    total = q.count()
    rows = q.order_by(Report.created_at.desc(), Report.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "ok": True,
            "reports": [r.to_dict() for r in rows],
            "pagination": pagination_block(page=page, limit=limit, total=total),
        }
    ), 200


@reports_bp.get("/admin")
@roles_required("admin", "moderator")
def admin_reports():
    page, limit = _page(), 20
    status = (request.args.get("status") or "").strip().upper()
    rtype = (request.args.get("type") or "").strip().upper()
    q = Report.query
    if status:
        if status not in REPORT_STATUSES:
            return jsonify({"ok": False, "message": "Invalid status filter"}), 400
        q = q.filter(Report.status == status)
    if rtype:
        if rtype not in REPORT_TYPES:
            return jsonify({"ok": False, "message": "Invalid type filter"}), 400
        q = q.filter(Report.type == rtype)
    total = q.count()
    rows = q.order_by(Report.created_at.desc(), Report.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "ok": True,
            "reports": [r.to_dict() for r in rows],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages(total, limit),
                "totalReports": total,
            },
        }
    ), 200


def _apply_resolution(report: Report, resolution: str) -> None:
    if resolution == "LISTING_REMOVED" and report.reported_listing_id is not None:
        listing = db.session.get(Listing, int(report.reported_listing_id))
        if listing is not None:
            listing.status = "removed"
        return

    if resolution not in ("TEMPORARY_BAN", "PERMANENT_BAN"):
        return
    target_id = report.reported_user_id
    if target_id is None and report.reported_listing_id is not None:
        listing = db.session.get(Listing, int(report.reported_listing_id))
        target_id = listing.user_id if listing is not None else None
    target = db.session.get(User, int(target_id)) if target_id is not None else None
    if target is None:
        return
    target.ban(
        permanent=resolution == "PERMANENT_BAN",
        reason=report.admin_notes or report.reason,
        days=TEMPORARY_BAN_DAYS,
    )


@reports_bp.put("/<int:report_id>")
@roles_required("admin", "moderator")
def update_report(report_id: int):
    staff: User = g.current_user
    report = db.session.get(Report, int(report_id))
    if report is None:
        return jsonify({"ok": False, "message": "Report not found"}), 404

    data = json_body()
    status = text(data, "status").upper()
    resolution = text(data, "resolution").upper()
    if status and status not in REPORT_STATUSES:
        return jsonify({"ok": False, "message": "Invalid status"}), 400
    if resolution and resolution not in REPORT_RESOLUTIONS:
        return jsonify({"ok": False, "message": "Invalid resolution"}), 400

    if pick(data, "admin_notes", "adminNotes") is not None:
        report.admin_notes = text(data, "admin_notes", "adminNotes")
    if status:
        report.status = status
        if status == "RESOLVED":
            report.resolved_by_id = int(staff.id)
            report.resolved_at = datetime.utcnow()
    if resolution:
        report.resolution = resolution
        _apply_resolution(report, resolution)

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("report_update_failed report_id=%s", report_id)
        return jsonify({"ok": False, "message": "Failed to update report"}), 500
    current_app.logger.info(
        "report_updated report_id=%s status=%s resolution=%s by=%s", report.id, report.status, report.resolution, staff.id
    )
    return jsonify({"ok": True, "message": "Report updated", "report": report.to_dict()}), 200
