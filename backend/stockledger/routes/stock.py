# backend/stockledger/routes/stock.py
"""
Stock ledger routes.

Reads: snapshots, move history, channel availability.
Writes: single moves, transfers and recounts. Every write goes through
inventory_service so the move log and StockItem totals change together.
"""
from flask import Blueprint, current_app, request

from ..decorators import handle_ledger_errors
from ..services import inventory_service
from ..validation import (
    coerce_int,
    int_list,
    optional_int,
    required_int,
    require_json_object,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _optional_str(payload: dict, field: str):
    value = payload.get(field)
    if value is None:
        return None
    return str(value).strip()


@stock_bp.get("/<int:product_id>")
@handle_ledger_errors
def stock_snapshot_route(product_id: int):
    location_id = optional_int(request.args, "location_id")
    items = inventory_service.get_stock_snapshot(product_id, location_id)
    return {
        "product_id": product_id,
        "items": [item.to_dict() for item in items],
        "qty": sum(item.qty for item in items),
        "reserved_qty": sum(item.reserved_qty for item in items),
        "available_qty": sum(item.available_qty for item in items),
    }, 200


@stock_bp.get("/<int:product_id>/moves")
@handle_ledger_errors
def move_history_route(product_id: int):
    moves = inventory_service.get_move_history(
        product_id,
        optional_int(request.args, "location_id"),
        after_id=optional_int(request.args, "after_id"),
        limit=optional_int(request.args, "limit"),
    )
    return {
        "product_id": product_id,
        "moves": [m.to_dict() for m in moves],
        "next_after_id": moves[-1].id if moves else None,
    }, 200


@stock_bp.get("/availability")
@handle_ledger_errors
def availability_route():
    product_ids = int_list(request.args.get("product_id"), "product_id")
    availability = inventory_service.get_channel_availability(product_ids)
    return {"availability": {str(pid): qty for pid, qty in availability.items()}}, 200


@stock_bp.post("/moves")
@handle_ledger_errors
def apply_move_route():
    """
    Apply one stock move.

    Body: product_id, qty, reason, from_location_id and/or to_location_id,
    optional lot_number, unit_cost_cents, expiry_date, note, ref_table, ref_id.
    """
    payload = require_json_object(request.get_json(silent=True))
    reason = _optional_str(payload, "reason")
    if not reason:
        return {"error": "reason is required", "code": "validation_error"}, 400

    move = inventory_service.apply_move(
        product_id=required_int(payload, "product_id"),
        qty=required_int(payload, "qty"),
        reason=reason,
        from_location_id=optional_int(payload, "from_location_id"),
        to_location_id=optional_int(payload, "to_location_id"),
        lot_number=_optional_str(payload, "lot_number"),
        unit_cost_cents=optional_int(payload, "unit_cost_cents"),
        ref_table=_optional_str(payload, "ref_table"),
        ref_id=optional_int(payload, "ref_id"),
        note=_optional_str(payload, "note"),
        expiry_date=payload.get("expiry_date"),
        actor_user_id=optional_int(payload, "actor_user_id"),
    )
    current_app.logger.info("Stock move %s applied (%s x%s)", move.id, move.reason, move.qty)
    return {"move": move.to_dict()}, 201


@stock_bp.post("/transfer")
@handle_ledger_errors
def transfer_route():
    payload = require_json_object(request.get_json(silent=True))
    move = inventory_service.transfer_stock(
        product_id=required_int(payload, "product_id"),
        from_location_id=required_int(payload, "from_location_id"),
        to_location_id=required_int(payload, "to_location_id"),
        qty=required_int(payload, "qty"),
        lot_number=_optional_str(payload, "lot_number"),
        note=_optional_str(payload, "note"),
        actor_user_id=optional_int(payload, "actor_user_id"),
    )
    return {"move": move.to_dict()}, 201


@stock_bp.post("/recount")
@handle_ledger_errors
def recount_route():
    payload = require_json_object(request.get_json(silent=True))
    product_id = required_int(payload, "product_id")
    location_id = required_int(payload, "location_id")
    lot_number = _optional_str(payload, "lot_number")
    move = inventory_service.recount_stock(
        product_id=product_id,
        location_id=location_id,
        counted_qty=coerce_int(payload.get("counted_qty"), "counted_qty"),
        lot_number=lot_number,
        note=_optional_str(payload, "note"),
        actor_user_id=optional_int(payload, "actor_user_id"),
    )
    item = inventory_service.get_stock_item(product_id, location_id, lot_number)
    return {
        "move": move.to_dict() if move else None,
        "item": item.to_dict(),
    }, 200
