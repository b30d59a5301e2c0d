# backend/app/routes/system.py
"""
System health endpoint.

Reports database connectivity and the state of the event outbox, so an
operator can see a stuck dispatcher (pending rows piling up, rows failing).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Store, SyncOperation
from ..services.outbox_service import outbox_stats
from app.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        operation_count = db.session.query(SyncOperation).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stores": store_count,
                "sync_operations": operation_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_outbox_health() -> dict:
    """
    Outbox backlog. Rows that keep failing make the check degraded, not
    unhealthy: the API is still accepting operations.
    """
    try:
        stats = outbox_stats()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Outbox health check failed")
        return {"status": "unhealthy", "error": "Outbox error"}

    dispatcher = current_app.extensions.get("outbox_dispatcher")
    stats["dispatcher_running"] = bool(dispatcher and dispatcher.running)

    status = "degraded" if stats["failing"] else "healthy"
    return {"status": status, "details": stats}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    outbox_health = check_outbox_health()

    all_checks = [database_health, outbox_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "outbox": outbox_health,
        }
    }

    return response, http_status
