# backend/tradein/routes/system.py
"""
System health endpoint.

Checks the database, the order counter and the custody ledger so deploys
and operators can tell an unreachable store from a ledger that needs repair.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import IntakeRecord, InventoryItem, StockMovement
from ..services.sequence_service import peek_sequence
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        intake_count = db.session.query(IntakeRecord).count()
        item_count = db.session.query(InventoryItem).count()
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {
                "intakes": intake_count,
                "inventory_items": item_count,
            }
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Database error"
        }


def check_sequence_health() -> dict:
    """The counter must be readable; a missing row is fine (created on first use)."""
    start_time = time.time()
    try:
        last_issued = peek_sequence()
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {"last_issued": last_issued},
        }
    except Exception:
        current_app.logger.exception("Sequence health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Sequence counter error"
        }


def check_ledger_health() -> dict:
    """Pending movements left behind by an interrupted write mean 'degraded', not down."""
    start_time = time.time()
    try:
        pending = db.session.query(StockMovement).filter(StockMovement.is_pending.is_(True)).count()
        if pending:
            return {
                "status": "degraded",
                "latency_ms": _elapsed_ms(start_time),
                "warning": f"{pending} pending stock movement(s); run 'flask ledger repair --all'",
                "details": {"pending_movements": pending},
            }
        return {
            "status": "healthy",
            "latency_ms": _elapsed_ms(start_time),
            "details": {"pending_movements": 0},
        }
    except Exception:
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": _elapsed_ms(start_time),
            "error": "Ledger error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "sequence": check_sequence_health(),
        "ledger": check_ledger_health(),
    }
    statuses = [check["status"] for check in checks.values()]

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": checks,
    }, http_status
