# backend/co2ledger/routes/system.py
"""
System health endpoint.

Reports database reachability and whether the CO2 tank has been configured.
"""

import time
from flask import Blueprint, current_app, jsonify
from ..extensions import db
from ..models import Co2Tank, Cylinder
from co2ledger.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with two cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        cylinder_count = db.session.query(Cylinder).count()
        tank_configured = db.session.query(Co2Tank).count() > 0

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy" if tank_configured else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "cylinders": cylinder_count,
                "tank_configured": tank_configured,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    code = 503 if database["status"] == "unhealthy" else 200
    return jsonify({
        "status": database["status"],
        "time": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), code
