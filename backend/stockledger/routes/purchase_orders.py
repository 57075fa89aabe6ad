# backend/stockledger/routes/purchase_orders.py
"""
Purchase order routes.

LIFECYCLE: draft -> sent -> confirmed -> partially_received -> received
Cancel is allowed from draft/sent/confirmed while nothing has been received.
Receipts are the only writes here that touch the stock ledger.
"""
from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors
from ..errors import ValidationError
from ..models import PurchaseOrder, PurchaseOrderLine
from ..services import purchase_order_service
from ..services.purchase_order_service import ReceiptLine
from ..validation import (
    ModelValidationPolicy,
    optional_int,
    require_json_object,
    required_int,
    validate_payload,
)


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")

PO_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "org_id",
        "supplier_id",
        "supplier_name",
        "warehouse_id",
        "order_date",
        "expected_delivery_date",
        "tax_cents",
        "shipping_cents",
        "currency",
        "payment_terms",
        "notes",
        "created_by_user_id",
    },
    required_on_create={"org_id", "supplier_name"},
)

PO_LINE_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "product_name",
        "product_sku",
        "qty_ordered",
        "unit_cost_cents",
        "location_id",
        "lot_number",
        "expiry_date",
        "notes",
    },
    required_on_create={"product_id", "qty_ordered"},
)


def _line_fields(payload) -> dict:
    return validate_payload(
        model=PurchaseOrderLine,
        payload=require_json_object(payload),
        policy=PO_LINE_POLICY,
    )


def _receipt(raw) -> ReceiptLine:
    raw = require_json_object(raw)
    return ReceiptLine(
        line_id=required_int(raw, "line_id"),
        qty=required_int(raw, "qty"),
        location_id=optional_int(raw, "location_id"),
        lot_number=raw.get("lot_number"),
        expiry_date=raw.get("expiry_date"),
        unit_cost_cents=optional_int(raw, "unit_cost_cents"),
    )


@purchase_orders_bp.post("")
@handle_ledger_errors
def create_purchase_order_route():
    payload = dict(require_json_object(request.get_json(silent=True)))
    raw_lines = payload.pop("lines", None) or []
    if not isinstance(raw_lines, list):
        raise ValidationError("lines must be a list")

    data = validate_payload(model=PurchaseOrder, payload=payload, policy=PO_CREATE_POLICY)
    po = purchase_order_service.create_purchase_order(
        lines=[_line_fields(raw) for raw in raw_lines],
        **data,
    )
    return {"purchase_order": po.to_dict()}, 201


@purchase_orders_bp.get("")
@handle_ledger_errors
def list_purchase_orders_route():
    orders = purchase_order_service.list_purchase_orders(
        org_id=optional_int(request.args, "org_id"),
        status=request.args.get("status"),
        warehouse_id=optional_int(request.args, "warehouse_id"),
        supplier_id=optional_int(request.args, "supplier_id"),
    )
    return jsonify({"purchase_orders": [po.to_dict(include_lines=False) for po in orders]}), 200


@purchase_orders_bp.get("/<int:po_id>")
@handle_ledger_errors
def get_purchase_order_route(po_id: int):
    po = purchase_order_service.get_purchase_order(po_id)
    return {"purchase_order": po.to_dict()}, 200


@purchase_orders_bp.post("/<int:po_id>/lines")
@handle_ledger_errors
def add_line_route(po_id: int):
    line = purchase_order_service.add_purchase_order_line(
        po_id, **_line_fields(request.get_json(silent=True))
    )
    return {"line": line.to_dict()}, 201


@purchase_orders_bp.post("/<int:po_id>/send")
@handle_ledger_errors
def send_route(po_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = purchase_order_service.send_purchase_order(
        po_id, actor_user_id=optional_int(payload, "actor_user_id")
    )
    return result.to_dict(), 200


@purchase_orders_bp.post("/<int:po_id>/confirm")
@handle_ledger_errors
def confirm_route(po_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = purchase_order_service.confirm_purchase_order(
        po_id, actor_user_id=optional_int(payload, "actor_user_id")
    )
    return result.to_dict(), 200


@purchase_orders_bp.post("/<int:po_id>/receive")
@handle_ledger_errors
def receive_route(po_id: int):
    """
    Receive a delivery.

    Body: {"receipts": [{"line_id", "qty", "location_id"?, "lot_number"?,
    "expiry_date"?, "unit_cost_cents"?}], "note"?, "actor_user_id"?}
    """
    payload = require_json_object(request.get_json(silent=True))
    raw_receipts = payload.get("receipts")
    if not isinstance(raw_receipts, list) or not raw_receipts:
        raise ValidationError("receipts must be a non-empty list")

    result = purchase_order_service.receive_purchase_order(
        po_id,
        [_receipt(raw) for raw in raw_receipts],
        actor_user_id=optional_int(payload, "actor_user_id"),
        note=payload.get("note"),
    )
    return result.to_dict(), 200


@purchase_orders_bp.post("/<int:po_id>/cancel")
@handle_ledger_errors
def cancel_route(po_id: int):
    payload = require_json_object(request.get_json(silent=True))
    result = purchase_order_service.cancel_purchase_order(
        po_id,
        reason=payload.get("reason"),
        actor_user_id=optional_int(payload, "actor_user_id"),
    )
    return result.to_dict(), 200
