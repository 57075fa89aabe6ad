# backend/stockledger/routes/system.py
"""
System endpoints.

Health checks database connectivity and reports ledger row counts for
deployment debugging. The events feed exposes the audit ledger.
"""

import time

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text

from ..decorators import handle_ledger_errors
from ..errors import ValidationError
from ..extensions import db
from ..models import StockItem, StockMove, Warehouse
from ..services import ledger_service
from ..validation import optional_int
from stockledger.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        details = {
            "warehouses": db.session.query(Warehouse).count(),
            "stock_items": db.session.query(StockItem).count(),
            "stock_moves": db.session.query(StockMove).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
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
    healthy = database["status"] == "healthy"
    body = {
        "status": "ok" if healthy else "degraded",
        "checked_at": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return body, 200 if healthy else 503


@system_bp.get("/api/ledger/events")
@handle_ledger_errors
def list_ledger_events_route():
    limit = optional_int(request.args, "limit")
    if limit is None:
        limit = 100
    if limit < 1 or limit > 1000:
        raise ValidationError("limit must be between 1 and 1000", details={"field": "limit"})
    events = ledger_service.list_ledger_events(
        entity_type=request.args.get("entity_type"),
        entity_id=optional_int(request.args, "entity_id"),
        org_id=optional_int(request.args, "org_id"),
        limit=limit,
    )
    return jsonify({"events": [e.to_dict() for e in events]}), 200
