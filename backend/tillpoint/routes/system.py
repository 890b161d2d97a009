# backend/tillpoint/routes/system.py
"""
System health endpoint.

Reports database connectivity and the undo-log fallback backlog, which
is non-empty only after an audit write failed.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Product, SaleLine
from ..services import undo_service

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        sale_line_count = db.session.query(SaleLine).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "sale_lines": sale_line_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_undo_log_backlog() -> dict:
    try:
        pending = len(undo_service.pending_fallback_entries())
    except (OSError, ValueError):
        current_app.logger.exception("Undo-log fallback file unreadable")
        return {"status": "unhealthy", "error": "Fallback file unreadable"}
    if pending:
        return {
            "status": "degraded",
            "warning": f"{pending} undo-log entries pending replay",
            "details": {"pending": pending},
        }
    return {"status": "healthy", "details": {"pending": 0}}


@system_bp.get("/health")
def health():
    checks = {
        "database": check_database_health(),
        "undo_log": check_undo_log_backlog(),
    }
    statuses = {c["status"] for c in checks.values()}
    if "unhealthy" in statuses:
        overall = "unhealthy"
    elif "degraded" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    code = 503 if overall == "unhealthy" else 200
    return {"status": overall, "checks": checks}, code
