from __future__ import annotations

import json
import os
import time
from datetime import datetime, timedelta

import requests
from celery import shared_task
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Notification
from app.models.notification import NOTIFICATION_TTL_DAYS


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


def _keepalive_url() -> str:
    return (os.getenv("KEEPALIVE_URL") or "").strip()


@shared_task(
    bind=True,
    name="app.tasks.maintenance_tasks.keepalive_ping",
    max_retries=3,
)
def keepalive_ping(self, *, trace_id: str = ""):
    """GET the public URL so the host does not idle the web dyno."""
    started = time.perf_counter()
    url = _keepalive_url()
    if not url:
        _task_log("keepalive_ping", status="skipped", started_at=started, trace_id=trace_id, reason="no_url")
        return {"ok": True, "skipped": True}

    try:
        resp = requests.get(url, timeout=10)
    except requests.RequestException as e:
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log(
                "keepalive_ping",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(e)[:200],
                countdown=countdown,
            )
            raise self.retry(exc=e, countdown=countdown)
        _task_log("keepalive_ping", status="failed", started_at=started, trace_id=trace_id, detail=str(e)[:200])
        return {"ok": False, "error": str(e)[:200]}

    status = "ok" if resp.status_code < 500 else "degraded"
    _task_log("keepalive_ping", status=status, started_at=started, trace_id=trace_id, http_status=int(resp.status_code))
    return {"ok": status == "ok", "status_code": int(resp.status_code)}


@shared_task(
    bind=True,
    name="app.tasks.maintenance_tasks.purge_old_notifications",
    max_retries=2,
)
def purge_old_notifications(self, *, days: int = NOTIFICATION_TTL_DAYS, trace_id: str = ""):
    started = time.perf_counter()
    cutoff = datetime.utcnow() - timedelta(days=int(days))
    try:
        deleted = Notification.query.filter(Notification.created_at < cutoff).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            raise self.retry(exc=e, countdown=_retry_countdown(int(self.request.retries or 0)))
        _task_log("purge_old_notifications", status="failed", started_at=started, trace_id=trace_id, detail=str(e)[:200])
        raise
    _task_log("purge_old_notifications", status="ok", started_at=started, trace_id=trace_id, deleted=int(deleted or 0))
    return {"ok": True, "deleted": int(deleted or 0)}
