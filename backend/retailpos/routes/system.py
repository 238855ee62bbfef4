# Overview: Health check and store settings endpoints.

# backend/retailpos/routes/system.py
"""
System health and settings endpoints.

The health check touches both stores: the main database and the local
offline queue bind.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..decorators import handle_pos_errors, json_body
from ..extensions import db
from ..models import OfflineOperation, Product
from ..services import settings_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _timed_check(name: str, probe) -> dict:
    start_time = time.time()
    try:
        details = probe()
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("%s health check failed", name)
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": f"{name} error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: all stores reachable
    - 503: one or more stores unhealthy
    """
    checks = {
        "database": _timed_check("Database", lambda: {"products": db.session.query(Product).count()}),
        "offline_queue": _timed_check(
            "Offline queue", lambda: {"pending": db.session.query(OfflineOperation).count()}
        ),
    }
    healthy = all(check["status"] == "healthy" for check in checks.values())

    return jsonify({
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": to_utc_z(utcnow()),
        "checks": checks,
    }), 200 if healthy else 503


@system_bp.get("/settings")
@handle_pos_errors
def get_settings_route():
    settings = settings_service.get_settings()
    db.session.commit()
    return jsonify({"settings": settings.to_dict()}), 200


@system_bp.put("/settings")
@handle_pos_errors
def update_settings_route():
    settings = settings_service.update_settings(json_body())
    return jsonify({"settings": settings.to_dict()}), 200
