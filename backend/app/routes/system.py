# backend/app/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether live warehouse lookups are configured.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import Order, LineItem, EditionEvent
from app.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        line_item_count = db.session.query(LineItem).count()
        event_count = db.session.query(EditionEvent).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "line_items": line_item_count,
                "edition_events": event_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    warehouse_configured = bool(current_app.config.get("WAREHOUSE_API_KEY"))
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database,
            # Soft dependency: sync proceeds without it
            "warehouse": {"status": "configured" if warehouse_configured else "disabled"},
        },
    }), (200 if healthy else 503)
