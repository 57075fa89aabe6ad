# backend/stockledger/routes/forecasts.py
"""
Reorder suggestion routes.

Suggestions are advisory. Drafting a purchase order from them creates a
draft PO only; nothing reaches the stock ledger until that PO is received.
"""
from flask import Blueprint, request

from ..decorators import handle_ledger_errors
from ..errors import ValidationError
from ..services import forecast_service
from ..validation import coerce_int, int_list, optional_int, require_json_object, required_int


forecasts_bp = Blueprint("forecasts", __name__, url_prefix="/api/forecasts")


@forecasts_bp.get("/reorder-suggestions")
@handle_ledger_errors
def reorder_suggestions_route():
    product_ids = int_list(request.args.get("product_id"), "product_id")
    if not product_ids:
        raise ValidationError("At least one product_id is required")
    period_days = optional_int(request.args, "period_days") or 30
    suggestions = forecast_service.suggest_reorders(
        product_ids,
        period_days,
        warehouse_id=optional_int(request.args, "warehouse_id"),
    )
    return {"suggestions": [s.to_dict() for s in suggestions]}, 200


@forecasts_bp.post("/draft-purchase-order")
@handle_ledger_errors
def draft_purchase_order_route():
    """
    Draft a PO for every product with a positive recommendation.

    Body: product_ids, org_id, supplier_name, optional period_days,
    warehouse_id, location_id, unit_costs {product_id: cents}.
    """
    payload = require_json_object(request.get_json(silent=True))
    product_ids = int_list(payload.get("product_ids"), "product_ids")
    if not product_ids:
        raise ValidationError("product_ids is required")
    supplier_name = payload.get("supplier_name")
    if not supplier_name:
        raise ValidationError("supplier_name is required")

    raw_costs = payload.get("unit_costs") or {}
    if not isinstance(raw_costs, dict):
        raise ValidationError("unit_costs must be an object")
    unit_costs = {coerce_int(k, "unit_costs"): required_int(raw_costs, k) for k in raw_costs}

    warehouse_id = optional_int(payload, "warehouse_id")
    suggestions = forecast_service.suggest_reorders(
        product_ids,
        optional_int(payload, "period_days") or 30,
        warehouse_id=warehouse_id,
    )
    po = forecast_service.draft_purchase_order_from_suggestions(
        suggestions,
        org_id=required_int(payload, "org_id"),
        supplier_name=supplier_name,
        supplier_id=optional_int(payload, "supplier_id"),
        warehouse_id=warehouse_id,
        location_id=optional_int(payload, "location_id"),
        unit_costs=unit_costs,
        created_by_user_id=optional_int(payload, "created_by_user_id"),
    )
    return {
        "suggestions": [s.to_dict() for s in suggestions],
        "purchase_order": po.to_dict() if po else None,
    }, 201 if po else 200
