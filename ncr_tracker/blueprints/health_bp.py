"""
Health probes, mounted outside authentication and rate limiting.

    GET /api/v1/health/ready   process is up
    GET /api/v1/health/live    database round-trip plus NCR counts; 503 when the DB is unreachable
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ncr_tracker.models import db
from ncr_tracker.models.ncr import TERMINAL_STAGES, Ncr

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


def _ncr_counts() -> dict:
    total = db.session.execute(select(func.count(Ncr.id))).scalar_one()
    open_ = db.session.execute(
        select(func.count(Ncr.id)).where(
            Ncr.workflow_stage.notin_([s.value for s in TERMINAL_STAGES])
        )
    ).scalar_one()
    return {"total": total, "open": open_}


@health_bp.route("/live", methods=["GET"])
def live():
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
        database = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
            "ncrs": _ncr_counts(),
        }
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable (%s)", exc.__class__.__name__)
        database = {"status": "error", "detail": exc.__class__.__name__}

    healthy = database["status"] == "ok"
    body = {
        "status": "healthy" if healthy else "degraded",
        "checks": {
            "database": database,
            "app": {"name": "NCR Tracker", "testing": current_app.testing},
        },
    }
    return jsonify(body), 200 if healthy else 503
