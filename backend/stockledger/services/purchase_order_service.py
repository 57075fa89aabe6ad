# Overview: Service-layer operations for purchase orders; drives supplier receipts into the stock ledger.

"""
Purchase Order Service

LIFECYCLE:
1. draft: Created, lines being added
2. sent: Sent to the supplier; lines frozen
3. confirmed: Supplier confirmed; ready to receive
4. partially_received: Some but not all ordered units received
5. received: Every line fully received (terminal)
6. cancelled: Closed before any receipt (terminal)

RECEIVING:
- Each receipt line appends one StockMove (reason=purchase) into the
  receiving location and bumps the PO line's qty_received.
- Cumulative qty_received can never exceed qty_ordered (OverReceiptError).
- A receipt batch is all-or-nothing: any failing line rolls back every move
  of the batch.
- Header status is recomputed from the lines after each receipt.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..errors import (
    InvalidTransitionError,
    NotFoundError,
    OverReceiptError,
    ValidationError,
)
from ..models import PurchaseOrder, PurchaseOrderLine, Warehouse
from stockledger.time_utils import utcnow, today, parse_iso_date
from .concurrency import document_key, ledger_transaction, lock_for_update, lock_keys, stock_key
from .document_service import next_document_number
from .inventory_service import _apply_move_inner, normalize_lot, require_positive_qty
from .ledger_service import append_ledger_event
from .lifecycle_service import (
    PurchaseOrderStatus,
    TransitionResult,
    ensure_transition,
    validate_status,
)
from .location_service import get_org_location


ENTITY = "purchase_order"


@dataclass(frozen=True)
class ReceiptLine:
    line_id: int
    qty: int
    location_id: int | None = None
    lot_number: str | None = None
    expiry_date: object = None
    unit_cost_cents: int | None = None


def _parse_date(value, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date") from None


def _check_money(value, field: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer")
    return value


def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found", purchase_order_id=po_id)
    return po


def _get_locked(po_id: int) -> PurchaseOrder:
    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if not po:
        raise NotFoundError(f"Purchase order {po_id} not found", purchase_order_id=po_id)
    return po


def list_purchase_orders(
    *,
    org_id: int | None = None,
    status: str | None = None,
    warehouse_id: int | None = None,
    supplier_id: int | None = None,
) -> list[PurchaseOrder]:
    q = db.session.query(PurchaseOrder)
    if org_id is not None:
        q = q.filter(PurchaseOrder.org_id == org_id)
    if status:
        q = q.filter(PurchaseOrder.status == validate_status(ENTITY, status).value)
    if warehouse_id is not None:
        q = q.filter(PurchaseOrder.warehouse_id == warehouse_id)
    if supplier_id is not None:
        q = q.filter(PurchaseOrder.supplier_id == supplier_id)
    return q.order_by(PurchaseOrder.id.desc()).all()


def _add_line_inner(
    po: PurchaseOrder,
    *,
    product_id: int,
    qty_ordered: int,
    unit_cost_cents: int = 0,
    product_name: str | None = None,
    product_sku: str | None = None,
    location_id: int | None = None,
    lot_number: str | None = None,
    expiry_date=None,
    notes: str | None = None,
) -> PurchaseOrderLine:
    if po.status != PurchaseOrderStatus.DRAFT.value:
        raise InvalidTransitionError(
            ENTITY,
            po.status,
            po.status,
            message=f"Cannot add lines to a {po.status} purchase order; only draft orders can be modified",
        )
    if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
        raise ValidationError("product_id must be a positive integer")
    require_positive_qty(qty_ordered, "qty_ordered")
    unit_cost_cents = _check_money(unit_cost_cents, "unit_cost_cents")
    if location_id is not None:
        get_org_location(location_id, po.org_id, po.warehouse_id)

    line = PurchaseOrderLine(
        product_id=product_id,
        product_name=product_name,
        product_sku=product_sku,
        qty_ordered=qty_ordered,
        qty_received=0,
        unit_cost_cents=unit_cost_cents,
        location_id=location_id,
        lot_number=normalize_lot(lot_number) or None,
        expiry_date=_parse_date(expiry_date, "expiry_date"),
        notes=notes,
    )
    po.lines.append(line)
    db.session.flush()
    return line


def create_purchase_order(
    *,
    org_id: int,
    supplier_name: str,
    supplier_id: int | None = None,
    warehouse_id: int | None = None,
    order_date=None,
    expected_delivery_date=None,
    tax_cents: int = 0,
    shipping_cents: int = 0,
    currency: str = "EUR",
    payment_terms: str | None = None,
    notes: str | None = None,
    created_by_user_id: int | None = None,
    lines: list[dict] | None = None,
) -> PurchaseOrder:
    """
    Create a draft purchase order, optionally with its first lines.

    Args:
        org_id: Owning organization
        supplier_name: Supplier display name (REQUIRED)
        warehouse_id: Receiving warehouse, if known
        order_date: date or ISO string (defaults to today)
        lines: Optional list of add_purchase_order_line keyword dicts

    Returns:
        Created PurchaseOrder (status=draft)
    """
    if not org_id:
        raise ValidationError("org_id is required")
    supplier_name = (supplier_name or "").strip()
    if not supplier_name:
        raise ValidationError("supplier_name is required")

    def _op():
        if warehouse_id is not None:
            warehouse = db.session.get(Warehouse, warehouse_id)
            if not warehouse or warehouse.org_id != org_id:
                raise NotFoundError("Warehouse not found for this org", warehouse_id=warehouse_id)

        po = PurchaseOrder(
            org_id=org_id,
            po_number=next_document_number(org_id=org_id, document_type=ENTITY),
            supplier_id=supplier_id,
            supplier_name=supplier_name,
            warehouse_id=warehouse_id,
            status=PurchaseOrderStatus.DRAFT.value,
            order_date=_parse_date(order_date, "order_date") or today(),
            expected_delivery_date=_parse_date(expected_delivery_date, "expected_delivery_date"),
            tax_cents=_check_money(tax_cents, "tax_cents"),
            shipping_cents=_check_money(shipping_cents, "shipping_cents"),
            currency=(currency or "EUR").upper(),
            payment_terms=payment_terms,
            notes=notes,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(po)
        db.session.flush()

        for line in lines or []:
            _add_line_inner(po, **line)

        append_ledger_event(
            org_id=org_id,
            event_type="purchase_order.created",
            entity_type=ENTITY,
            entity_id=po.id,
            actor_user_id=created_by_user_id,
            note=f"Purchase order {po.po_number} created",
        )
        return po

    return ledger_transaction(_op)


def add_purchase_order_line(po_id: int, **fields) -> PurchaseOrderLine:
    """Add a line to a draft purchase order."""
    def _op():
        po = _get_locked(po_id)
        return _add_line_inner(po, **fields)

    return ledger_transaction(_op, keys=[document_key(ENTITY, po_id)])


def _transition(po_id: int, target: PurchaseOrderStatus, *, actor_user_id=None, note=None, apply=None):
    def _op():
        po = _get_locked(po_id)
        previous = po.status
        new_status = ensure_transition(ENTITY, previous, target)
        if apply is not None:
            apply(po)
        po.status = new_status
        db.session.flush()
        append_ledger_event(
            org_id=po.org_id,
            event_type=f"purchase_order.{po.status}",
            entity_type=ENTITY,
            entity_id=po.id,
            actor_user_id=actor_user_id,
            note=note,
            payload={"from": previous, "to": po.status},
        )
        current_app.logger.info("Purchase order %s: %s -> %s", po.po_number, previous, po.status)
        return TransitionResult(document=po, status=po.status)

    return ledger_transaction(_op, keys=[document_key(ENTITY, po_id)])


def send_purchase_order(po_id: int, *, actor_user_id: int | None = None) -> TransitionResult:
    """draft -> sent. Requires at least one line."""
    def _apply(po):
        if not po.lines:
            raise ValidationError("Cannot send a purchase order without lines", purchase_order_id=po.id)
        po.sent_at = utcnow()

    return _transition(po_id, PurchaseOrderStatus.SENT, actor_user_id=actor_user_id, apply=_apply)


def confirm_purchase_order(po_id: int, *, actor_user_id: int | None = None) -> TransitionResult:
    """sent -> confirmed."""
    def _apply(po):
        po.confirmed_at = utcnow()

    return _transition(po_id, PurchaseOrderStatus.CONFIRMED, actor_user_id=actor_user_id, apply=_apply)


def cancel_purchase_order(
    po_id: int,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> TransitionResult:
    """
    Cancel a purchase order.

    Only allowed from draft, sent or confirmed, and only while nothing has
    been received.
    """
    def _apply(po):
        if po.has_receipts:
            raise InvalidTransitionError(
                ENTITY,
                po.status,
                PurchaseOrderStatus.CANCELLED.value,
                message="Cannot cancel a purchase order after stock has been received",
            )
        po.cancelled_at = utcnow()
        po.cancellation_reason = reason

    return _transition(
        po_id,
        PurchaseOrderStatus.CANCELLED,
        actor_user_id=actor_user_id,
        note=reason,
        apply=_apply,
    )


def _resolve_receipt(po: PurchaseOrder, lines_by_id: dict, receipt: ReceiptLine, pending: dict) -> dict:
    line = lines_by_id.get(receipt.line_id)
    if line is None:
        raise NotFoundError(
            "Purchase order line not found on this order",
            purchase_order_id=po.id,
            line_id=receipt.line_id,
        )
    require_positive_qty(receipt.qty)

    already = line.qty_received + pending.get(line.id, 0)
    if already + receipt.qty > line.qty_ordered:
        raise OverReceiptError(
            f"Receiving {receipt.qty} would exceed qty_ordered {line.qty_ordered} on line {line.id}",
            line_id=line.id,
            qty_ordered=line.qty_ordered,
            qty_received=already,
            attempted=receipt.qty,
        )
    pending[line.id] = pending.get(line.id, 0) + receipt.qty

    location_id = receipt.location_id or line.location_id
    if location_id is None:
        raise ValidationError(
            "Receipt needs a location_id (the line has no default location)",
            line_id=line.id,
        )
    get_org_location(location_id, po.org_id, po.warehouse_id)
    unit_cost = receipt.unit_cost_cents
    if unit_cost is None:
        unit_cost = line.unit_cost_cents
    return {
        "line": line,
        "qty": receipt.qty,
        "location_id": location_id,
        "lot": normalize_lot(receipt.lot_number if receipt.lot_number is not None else line.lot_number),
        "expiry_date": _parse_date(receipt.expiry_date, "expiry_date") or line.expiry_date,
        "unit_cost_cents": unit_cost,
    }


def receive_purchase_order(
    po_id: int,
    receipts,
    *,
    actor_user_id: int | None = None,
    note: str | None = None,
) -> TransitionResult:
    """
    Receive one delivery against a confirmed (or partially received) PO.

    Args:
        po_id: Purchase order to receive against
        receipts: Iterable of ReceiptLine (line_id, qty, optional location/lot/expiry/cost)

    Returns:
        TransitionResult with the new status and the StockMoves appended

    Raises:
        InvalidTransitionError: PO is not confirmed / partially_received
        OverReceiptError: Cumulative receipts would exceed qty_ordered
        ValidationError: Bad qty, or no receiving location
    """
    receipts = list(receipts)
    if not receipts:
        raise ValidationError("At least one receipt line is required")

    def _op():
        po = _get_locked(po_id)
        if po.status not in (
            PurchaseOrderStatus.CONFIRMED.value,
            PurchaseOrderStatus.PARTIALLY_RECEIVED.value,
        ):
            raise InvalidTransitionError(
                ENTITY,
                po.status,
                PurchaseOrderStatus.RECEIVED.value,
                message=f"Cannot receive against a {po.status} purchase order",
            )

        lines_by_id = {line.id: line for line in po.lines}
        pending: dict[int, int] = {}
        resolved = [_resolve_receipt(po, lines_by_id, receipt, pending) for receipt in receipts]

        lock_keys([stock_key(r["line"].product_id, r["location_id"], r["lot"]) for r in resolved])

        moves = []
        for r in resolved:
            line = r["line"]
            moves.append(
                _apply_move_inner(
                    product_id=line.product_id,
                    qty=r["qty"],
                    reason="purchase",
                    to_location_id=r["location_id"],
                    lot_number=r["lot"],
                    unit_cost_cents=r["unit_cost_cents"],
                    expiry_date=r["expiry_date"],
                    ref_table="purchase_orders",
                    ref_id=po.id,
                    note=note or f"Receipt for {po.po_number}",
                )
            )
            line.qty_received += r["qty"]

        previous = po.status
        fully_received = all(line.qty_received == line.qty_ordered for line in po.lines)
        target = (
            PurchaseOrderStatus.RECEIVED if fully_received else PurchaseOrderStatus.PARTIALLY_RECEIVED
        )
        po.status = ensure_transition(ENTITY, previous, target)
        if fully_received:
            po.received_date = today()
        db.session.flush()

        append_ledger_event(
            org_id=po.org_id,
            event_type=f"purchase_order.{po.status}",
            entity_type=ENTITY,
            entity_id=po.id,
            actor_user_id=actor_user_id,
            note=note,
            payload={
                "from": previous,
                "to": po.status,
                "moves": [move.id for move in moves],
            },
        )
        current_app.logger.info(
            "Purchase order %s: received %s units (%s -> %s)",
            po.po_number,
            sum(r["qty"] for r in resolved),
            previous,
            po.status,
        )
        return TransitionResult(document=po, status=po.status, moves=moves)

    return ledger_transaction(_op, keys=[document_key(ENTITY, po_id)])
