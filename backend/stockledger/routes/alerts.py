# backend/stockledger/routes/alerts.py
"""
Stock alert routes.

Alerts are derived from ledger state; refreshing them never moves stock.
"""
from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors
from ..services import alert_service
from ..validation import coerce_date, optional_int, require_json_object, required_int


alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")


@alerts_bp.get("")
@handle_ledger_errors
def list_alerts_route():
    alerts = alert_service.list_alerts(
        status=request.args.get("status"),
        product_id=optional_int(request.args, "product_id"),
        location_id=optional_int(request.args, "location_id"),
        alert_type=request.args.get("alert_type"),
        alert_level=request.args.get("alert_level"),
    )
    return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200


@alerts_bp.post("/refresh")
@handle_ledger_errors
def refresh_alerts_route():
    payload = require_json_object(request.get_json(silent=True))
    result = alert_service.refresh_alerts(
        optional_int(payload, "product_id"),
        today=coerce_date(payload.get("today"), "today"),
    )
    return {
        "created": [a.to_dict() for a in result["created"]],
        "resolved": [a.to_dict() for a in result["resolved"]],
    }, 200


@alerts_bp.post("/<int:alert_id>/acknowledge")
@handle_ledger_errors
def acknowledge_alert_route(alert_id: int):
    payload = require_json_object(request.get_json(silent=True))
    alert = alert_service.acknowledge_alert(alert_id, user_id=optional_int(payload, "user_id"))
    return {"alert": alert.to_dict()}, 200


@alerts_bp.post("/<int:alert_id>/resolve")
@handle_ledger_errors
def resolve_alert_route(alert_id: int):
    return {"alert": alert_service.resolve_alert(alert_id).to_dict()}, 200


@alerts_bp.put("/thresholds")
@handle_ledger_errors
def set_threshold_route():
    payload = require_json_object(request.get_json(silent=True))
    threshold = alert_service.set_threshold(
        product_id=required_int(payload, "product_id"),
        low_stock_qty=required_int(payload, "low_stock_qty"),
        location_id=optional_int(payload, "location_id"),
        overstock_qty=optional_int(payload, "overstock_qty"),
        expiry_warning_days=optional_int(payload, "expiry_warning_days"),
    )
    return {"threshold": threshold.to_dict()}, 200
