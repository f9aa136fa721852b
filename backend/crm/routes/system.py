# backend/crm/routes/system.py
"""System health endpoint."""

import time
from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import Opportunity
from ..services.opportunity_store import OpportunityStore

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        opportunity_count = db.session.query(Opportunity).count()
        pending_count = len(OpportunityStore().list_pending())
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "opportunities": opportunity_count,
                "history_pending": pending_count,
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


@system_bp.get("/health")
def health():
    database = check_database_health()
    status_code = 200 if database["status"] == "healthy" else 503
    return jsonify({"status": database["status"], "database": database}), status_code
