"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — simple 200 for load balancers
    GET /api/v1/health/ready  — readiness: database reachable
    GET /api/v1/health/live   — detailed system health (DB latency, app info)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        return {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        logger.error("Health check — database failed: %s", type(exc).__name__)
        return {"status": "error"}


@health_bp.route("", methods=["GET"])
def health():
    """Always 200 while the process is serving requests."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    database = _check_database()
    ok = database["status"] == "ok"
    return jsonify({"status": "ok" if ok else "unavailable", "database": database}), 200 if ok else 503


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {"database": _check_database()}
    overall = checks["database"]["status"] == "ok"

    checks["app"] = {
        "name": "Casework Review Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
