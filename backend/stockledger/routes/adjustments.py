# backend/stockledger/routes/adjustments.py
"""
Inventory adjustment routes.

Adjustments are created pending and post nothing until approved.
Approval writes one StockMove per line; rejection writes none.
"""
from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors
from ..errors import ValidationError
from ..models import InventoryAdjustment, InventoryAdjustmentLine
from ..services import adjustment_service
from ..validation import (
    ModelValidationPolicy,
    optional_int,
    require_json_object,
    validate_payload,
)


adjustments_bp = Blueprint("adjustments", __name__, url_prefix="/api/adjustments")

ADJUSTMENT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"org_id", "reason", "warehouse_id", "notes", "created_by_user_id"},
    required_on_create={"org_id"},
)

ADJUSTMENT_LINE_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "location_id", "lot_number", "qty_adjustment", "unit_cost_cents", "note"},
    required_on_create={"product_id", "location_id", "qty_adjustment"},
)


def _line_fields(payload) -> dict:
    return validate_payload(
        model=InventoryAdjustmentLine,
        payload=require_json_object(payload),
        policy=ADJUSTMENT_LINE_POLICY,
    )


@adjustments_bp.post("")
@handle_ledger_errors
def create_adjustment_route():
    payload = dict(require_json_object(request.get_json(silent=True)))
    raw_lines = payload.pop("lines", None) or []
    if not isinstance(raw_lines, list):
        raise ValidationError("lines must be a list")

    data = validate_payload(model=InventoryAdjustment, payload=payload, policy=ADJUSTMENT_CREATE_POLICY)
    adj = adjustment_service.create_adjustment(
        lines=[_line_fields(raw) for raw in raw_lines],
        **data,
    )
    return {"adjustment": adj.to_dict()}, 201


@adjustments_bp.get("")
@handle_ledger_errors
def list_adjustments_route():
    adjustments = adjustment_service.list_adjustments(
        org_id=optional_int(request.args, "org_id"),
        status=request.args.get("status"),
    )
    return jsonify({"adjustments": [a.to_dict(include_lines=False) for a in adjustments]}), 200


@adjustments_bp.get("/<int:adjustment_id>")
@handle_ledger_errors
def get_adjustment_route(adjustment_id: int):
    return {"adjustment": adjustment_service.get_adjustment(adjustment_id).to_dict()}, 200


@adjustments_bp.post("/<int:adjustment_id>/lines")
@handle_ledger_errors
def add_line_route(adjustment_id: int):
    line = adjustment_service.add_adjustment_line(
        adjustment_id, **_line_fields(request.get_json(silent=True))
    )
    return {"line": line.to_dict()}, 201


@adjustments_bp.post("/<int:adjustment_id>/approve")
@handle_ledger_errors
def approve_route(adjustment_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = adjustment_service.approve_adjustment(
        adjustment_id, approved_by_user_id=optional_int(payload, "user_id")
    )
    return result.to_dict(), 200


@adjustments_bp.post("/<int:adjustment_id>/reject")
@handle_ledger_errors
def reject_route(adjustment_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = adjustment_service.reject_adjustment(
        adjustment_id,
        rejected_by_user_id=optional_int(payload, "user_id"),
        reason=payload.get("reason"),
    )
    return result.to_dict(), 200
