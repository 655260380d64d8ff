"""
Health check blueprint.

Endpoints:
    GET /api/v1/health  200 with database status, 503 when the DB is down
"""

import logging
import time

from flask import Blueprint, jsonify

from docflow.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    checks = {}
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        logger.error("Health check: database failed: %s", exc)
        return jsonify({"status": "degraded", "checks": checks}), 503
    return jsonify({"status": "ok", "checks": checks}), 200
