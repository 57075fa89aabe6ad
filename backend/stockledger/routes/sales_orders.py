# backend/stockledger/routes/sales_orders.py
"""
Sales order routes.

LIFECYCLE: pending -> confirmed -> processing -> picked -> packed -> shipped -> delivered
Confirm reserves every line (all-or-nothing); ship consumes reservations;
cancel releases whatever is still reserved.
"""
from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors
from ..errors import ValidationError
from ..models import SalesOrder, SalesOrderLine
from ..services import sales_order_service
from ..services.sales_order_service import PickLine, ShipmentLine
from ..validation import (
    ModelValidationPolicy,
    optional_int,
    require_json_object,
    required_int,
    validate_payload,
)


sales_orders_bp = Blueprint("sales_orders", __name__, url_prefix="/api/sales-orders")

SO_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "org_id",
        "customer_id",
        "customer_name",
        "channel",
        "channel_order_id",
        "warehouse_id",
        "order_date",
        "required_date",
        "tax_cents",
        "shipping_cents",
        "currency",
        "notes",
        "created_by_user_id",
    },
    required_on_create={"org_id", "customer_name"},
)

SO_LINE_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "product_name",
        "product_sku",
        "location_id",
        "lot_number",
        "qty_ordered",
        "unit_price_cents",
        "notes",
    },
    required_on_create={"product_id", "location_id", "qty_ordered"},
)


def _line_fields(payload) -> dict:
    return validate_payload(
        model=SalesOrderLine,
        payload=require_json_object(payload),
        policy=SO_LINE_POLICY,
    )


def _line_quantities(payload: dict, field: str) -> list[tuple[int, int]]:
    raw = payload.get(field)
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list")
    result = []
    for entry in raw:
        entry = require_json_object(entry)
        result.append((required_int(entry, "line_id"), required_int(entry, "qty")))
    return result


def _actor(payload: dict):
    return optional_int(payload, "actor_user_id")


@sales_orders_bp.post("")
@handle_ledger_errors
def create_sales_order_route():
    payload = dict(require_json_object(request.get_json(silent=True)))
    raw_lines = payload.pop("lines", None) or []
    if not isinstance(raw_lines, list):
        raise ValidationError("lines must be a list")

    data = validate_payload(model=SalesOrder, payload=payload, policy=SO_CREATE_POLICY)
    so = sales_order_service.create_sales_order(
        lines=[_line_fields(raw) for raw in raw_lines],
        **data,
    )
    return {"sales_order": so.to_dict()}, 201


@sales_orders_bp.get("")
@handle_ledger_errors
def list_sales_orders_route():
    orders = sales_order_service.list_sales_orders(
        org_id=optional_int(request.args, "org_id"),
        status=request.args.get("status"),
        channel=request.args.get("channel"),
        warehouse_id=optional_int(request.args, "warehouse_id"),
        customer_id=optional_int(request.args, "customer_id"),
    )
    return jsonify({"sales_orders": [so.to_dict(include_lines=False) for so in orders]}), 200


@sales_orders_bp.get("/<int:so_id>")
@handle_ledger_errors
def get_sales_order_route(so_id: int):
    return {"sales_order": sales_order_service.get_sales_order(so_id).to_dict()}, 200


@sales_orders_bp.get("/<int:so_id>/reservations")
@handle_ledger_errors
def reservations_route(so_id: int):
    reservations = sales_order_service.get_sales_order_reservations(so_id)
    return {"reservations": [r.to_dict() for r in reservations]}, 200


@sales_orders_bp.post("/<int:so_id>/lines")
@handle_ledger_errors
def add_line_route(so_id: int):
    line = sales_order_service.add_sales_order_line(
        so_id, **_line_fields(request.get_json(silent=True))
    )
    return {"line": line.to_dict()}, 201


@sales_orders_bp.post("/<int:so_id>/confirm")
@handle_ledger_errors
def confirm_route(so_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = sales_order_service.confirm_sales_order(so_id, actor_user_id=_actor(payload))
    return result.to_dict(), 200


@sales_orders_bp.post("/<int:so_id>/process")
@handle_ledger_errors
def process_route(so_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = sales_order_service.start_processing(so_id, actor_user_id=_actor(payload))
    return result.to_dict(), 200


@sales_orders_bp.post("/<int:so_id>/picks")
@handle_ledger_errors
def picks_route(so_id: int):
    payload = require_json_object(request.get_json(silent=True))
    picks = [PickLine(line_id=line_id, qty=qty) for line_id, qty in _line_quantities(payload, "picks")]
    result = sales_order_service.record_picks(so_id, picks, actor_user_id=_actor(payload))
    return result.to_dict(), 200


@sales_orders_bp.post("/<int:so_id>/pack")
@handle_ledger_errors
def pack_route(so_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = sales_order_service.pack_sales_order(so_id, actor_user_id=_actor(payload))
    return result.to_dict(), 200


@sales_orders_bp.post("/<int:so_id>/ship")
@handle_ledger_errors
def ship_route(so_id: int):
    """
    Ship picked units.

    Body: {"shipments"?: [{"line_id", "qty"}], "carrier"?, "tracking_number"?}
    Without shipments every picked-but-unshipped unit ships.
    """
    payload = require_json_object(request.get_json(silent=True))
    shipments = None
    if payload.get("shipments") is not None:
        shipments = [
            ShipmentLine(line_id=line_id, qty=qty)
            for line_id, qty in _line_quantities(payload, "shipments")
        ]
    result = sales_order_service.ship_sales_order(
        so_id,
        shipments,
        carrier=payload.get("carrier"),
        tracking_number=payload.get("tracking_number"),
        actor_user_id=_actor(payload),
    )
    return result.to_dict(), 200


@sales_orders_bp.post("/<int:so_id>/deliver")
@handle_ledger_errors
def deliver_route(so_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = sales_order_service.deliver_sales_order(so_id, actor_user_id=_actor(payload))
    return result.to_dict(), 200


@sales_orders_bp.post("/<int:so_id>/cancel")
@handle_ledger_errors
def cancel_route(so_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = sales_order_service.cancel_sales_order(
        so_id,
        reason=payload.get("reason"),
        actor_user_id=_actor(payload),
    )
    return result.to_dict(), 200
