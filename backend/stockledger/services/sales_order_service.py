# Overview: Service-layer operations for sales orders; reserves on confirmation and ships out of the ledger.

"""
Sales Order Service

LIFECYCLE:
1. pending: Created, lines being added; holds no stock
2. confirmed: Every line reserved at its designated location (all-or-nothing)
3. processing: Picking started
4. picked: Every line fully picked
5. packed: Ready to ship; partial shipments keep the order here
6. shipped: Every line fully shipped
7. delivered: Terminal
8. cancelled: Terminal; reachable from any state before shipped

INVENTORY:
- Confirmation reserves qty_ordered of each line. Insufficient stock fails
  the confirmation and the order stays pending with no reservation written.
- Shipping consumes the line's reservation unit by unit (reason=sale moves);
  a partial shipment leaves the rest reserved.
- Cancelling releases whatever is still reserved. Moves already shipped stay.

LINE COUNTERS: qty_shipped <= qty_picked <= qty_ordered, each only grows.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..errors import (
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    OverConsumptionError,
    ValidationError,
)
from ..models import Reservation, SalesOrder, SalesOrderLine, Warehouse
from stockledger.time_utils import utcnow, today, parse_iso_date
from .concurrency import document_key, ledger_transaction, lock_for_update, lock_keys
from .document_service import next_document_number
from .inventory_service import normalize_lot, require_positive_qty
from .ledger_service import append_ledger_event
from .lifecycle_service import (
    SalesOrderStatus,
    TransitionResult,
    ensure_transition,
    validate_status,
)
from .location_service import get_org_location
from .reservation_service import (
    ReservationRequest,
    _consume_inner,
    _release_inner,
    _reserve_inner,
    _stock_keys,
    get_reservations,
)


ENTITY = "sales_order"


@dataclass(frozen=True)
class PickLine:
    line_id: int
    qty: int


@dataclass(frozen=True)
class ShipmentLine:
    line_id: int
    qty: int


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


def get_sales_order(so_id: int) -> SalesOrder:
    so = db.session.get(SalesOrder, so_id)
    if not so:
        raise NotFoundError(f"Sales order {so_id} not found", sales_order_id=so_id)
    return so


def _get_locked(so_id: int) -> SalesOrder:
    so = lock_for_update(db.session.query(SalesOrder).filter_by(id=so_id)).first()
    if not so:
        raise NotFoundError(f"Sales order {so_id} not found", sales_order_id=so_id)
    return so


def list_sales_orders(
    *,
    org_id: int | None = None,
    status: str | None = None,
    channel: str | None = None,
    warehouse_id: int | None = None,
    customer_id: int | None = None,
) -> list[SalesOrder]:
    q = db.session.query(SalesOrder)
    if org_id is not None:
        q = q.filter(SalesOrder.org_id == org_id)
    if status:
        q = q.filter(SalesOrder.status == validate_status(ENTITY, status).value)
    if channel:
        q = q.filter(SalesOrder.channel == channel)
    if warehouse_id is not None:
        q = q.filter(SalesOrder.warehouse_id == warehouse_id)
    if customer_id is not None:
        q = q.filter(SalesOrder.customer_id == customer_id)
    return q.order_by(SalesOrder.id.desc()).all()


def _find_line(so: SalesOrder, line_id: int) -> SalesOrderLine:
    for line in so.lines:
        if line.id == line_id:
            return line
    raise NotFoundError(
        "Sales order line not found on this order",
        sales_order_id=so.id,
        line_id=line_id,
    )


def _add_line_inner(
    so: SalesOrder,
    *,
    product_id: int,
    location_id: int,
    qty_ordered: int,
    unit_price_cents: int = 0,
    product_name: str | None = None,
    product_sku: str | None = None,
    lot_number: str | None = None,
    notes: str | None = None,
) -> SalesOrderLine:
    if so.status != SalesOrderStatus.PENDING.value:
        raise InvalidTransitionError(
            ENTITY,
            so.status,
            so.status,
            message=f"Cannot add lines to a {so.status} sales order; only pending orders can be modified",
        )
    if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
        raise ValidationError("product_id must be a positive integer")
    if location_id is None:
        raise ValidationError("location_id is required on sales order lines")
    require_positive_qty(qty_ordered, "qty_ordered")
    get_org_location(location_id, so.org_id, so.warehouse_id)

    line = SalesOrderLine(
        product_id=product_id,
        product_name=product_name,
        product_sku=product_sku,
        location_id=location_id,
        lot_number=normalize_lot(lot_number) or None,
        qty_ordered=qty_ordered,
        qty_picked=0,
        qty_shipped=0,
        unit_price_cents=_check_money(unit_price_cents, "unit_price_cents"),
        notes=notes,
    )
    so.lines.append(line)
    db.session.flush()
    return line


def create_sales_order(
    *,
    org_id: int,
    customer_name: str,
    customer_id: int | None = None,
    channel: str = "direct",
    channel_order_id: str | None = None,
    warehouse_id: int | None = None,
    order_date=None,
    required_date=None,
    tax_cents: int = 0,
    shipping_cents: int = 0,
    currency: str = "EUR",
    notes: str | None = None,
    created_by_user_id: int | None = None,
    lines: list[dict] | None = None,
) -> SalesOrder:
    """
    Create a pending sales order, optionally with its lines.

    Returns:
        Created SalesOrder (status=pending, nothing reserved)
    """
    if not org_id:
        raise ValidationError("org_id is required")
    customer_name = (customer_name or "").strip()
    if not customer_name:
        raise ValidationError("customer_name is required")

    def _op():
        if warehouse_id is not None:
            warehouse = db.session.get(Warehouse, warehouse_id)
            if not warehouse or warehouse.org_id != org_id:
                raise NotFoundError("Warehouse not found for this org", warehouse_id=warehouse_id)

        so = SalesOrder(
            org_id=org_id,
            so_number=next_document_number(org_id=org_id, document_type=ENTITY),
            customer_id=customer_id,
            customer_name=customer_name,
            channel=(channel or "direct").strip().lower(),
            channel_order_id=channel_order_id,
            warehouse_id=warehouse_id,
            status=SalesOrderStatus.PENDING.value,
            order_date=_parse_date(order_date, "order_date") or today(),
            required_date=_parse_date(required_date, "required_date"),
            tax_cents=_check_money(tax_cents, "tax_cents"),
            shipping_cents=_check_money(shipping_cents, "shipping_cents"),
            currency=(currency or "EUR").upper(),
            notes=notes,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(so)
        db.session.flush()

        for line in lines or []:
            _add_line_inner(so, **line)

        append_ledger_event(
            org_id=org_id,
            event_type="sales_order.created",
            entity_type=ENTITY,
            entity_id=so.id,
            actor_user_id=created_by_user_id,
            note=f"Sales order {so.so_number} created",
        )
        return so

    return ledger_transaction(_op)


def add_sales_order_line(so_id: int, **fields) -> SalesOrderLine:
    """Add a line to a pending sales order."""
    def _op():
        so = _get_locked(so_id)
        return _add_line_inner(so, **fields)

    return ledger_transaction(_op, keys=[document_key(ENTITY, so_id)])


def _record(so: SalesOrder, previous: str, *, actor_user_id=None, note=None, payload=None) -> None:
    data = {"from": previous, "to": so.status}
    data.update(payload or {})
    append_ledger_event(
        org_id=so.org_id,
        event_type=f"sales_order.{so.status}",
        entity_type=ENTITY,
        entity_id=so.id,
        actor_user_id=actor_user_id,
        note=note,
        payload=data,
    )
    if previous != so.status:
        current_app.logger.info("Sales order %s: %s -> %s", so.so_number, previous, so.status)


def confirm_sales_order(so_id: int, *, actor_user_id: int | None = None) -> TransitionResult:
    """
    pending -> confirmed, reserving every line at its designated location.

    Raises:
        InsufficientStockError: Some line cannot be reserved; the order stays
            pending and nothing is reserved
        InvalidTransitionError: Order is not pending
        ValidationError: Order has no lines
    """
    def _op():
        so = _get_locked(so_id)
        previous = so.status
        new_status = ensure_transition(ENTITY, previous, SalesOrderStatus.CONFIRMED)
        if not so.lines:
            raise ValidationError("Cannot confirm a sales order without lines", sales_order_id=so.id)

        requests = [
            ReservationRequest(
                sales_order_line_id=line.id,
                product_id=line.product_id,
                location_id=line.location_id,
                lot_number=line.lot_number,
                qty=line.qty_ordered,
            )
            for line in so.lines
        ]
        lock_keys(sorted({req.key for req in requests}, key=repr))
        reservations = _reserve_inner(so.id, requests)

        so.status = new_status
        so.confirmed_at = utcnow()
        db.session.flush()
        _record(
            so,
            previous,
            actor_user_id=actor_user_id,
            payload={"reservations": [r.id for r in reservations]},
        )
        return TransitionResult(document=so, status=so.status, reservations=reservations)

    try:
        return ledger_transaction(_op, keys=[document_key(ENTITY, so_id)])
    except InsufficientStockError as exc:
        current_app.logger.warning(
            "Sales order %s stays pending: %s", so_id, exc.message
        )
        raise


def _simple_transition(so_id: int, target: SalesOrderStatus, *, actor_user_id=None, apply=None):
    def _op():
        so = _get_locked(so_id)
        previous = so.status
        new_status = ensure_transition(ENTITY, previous, target)
        if apply is not None:
            apply(so)
        so.status = new_status
        db.session.flush()
        _record(so, previous, actor_user_id=actor_user_id)
        return TransitionResult(document=so, status=so.status)

    return ledger_transaction(_op, keys=[document_key(ENTITY, so_id)])


def start_processing(so_id: int, *, actor_user_id: int | None = None) -> TransitionResult:
    """confirmed -> processing."""
    return _simple_transition(so_id, SalesOrderStatus.PROCESSING, actor_user_id=actor_user_id)


def record_picks(so_id: int, picks, *, actor_user_id: int | None = None) -> TransitionResult:
    """
    Record picked quantities while processing.

    The order moves to picked once every line is fully picked; otherwise it
    stays in processing.

    Raises:
        ValidationError: A pick would exceed qty_ordered
    """
    picks = list(picks)
    if not picks:
        raise ValidationError("At least one pick line is required")

    def _op():
        so = _get_locked(so_id)
        previous = so.status
        if previous != SalesOrderStatus.PROCESSING.value:
            raise InvalidTransitionError(
                ENTITY,
                previous,
                SalesOrderStatus.PICKED.value,
                message=f"Cannot record picks on a {previous} sales order",
            )

        for pick in picks:
            require_positive_qty(pick.qty)
            line = _find_line(so, pick.line_id)
            if line.qty_picked + pick.qty > line.qty_ordered:
                raise ValidationError(
                    f"Picking {pick.qty} would exceed qty_ordered {line.qty_ordered} on line {line.id}",
                    line_id=line.id,
                    qty_ordered=line.qty_ordered,
                    qty_picked=line.qty_picked,
                )
            line.qty_picked += pick.qty

        all_picked = all(line.qty_picked == line.qty_ordered for line in so.lines)
        target = SalesOrderStatus.PICKED if all_picked else SalesOrderStatus.PROCESSING
        so.status = ensure_transition(ENTITY, previous, target)
        db.session.flush()
        _record(
            so,
            previous,
            actor_user_id=actor_user_id,
            payload={"picks": {str(p.line_id): p.qty for p in picks}},
        )
        return TransitionResult(document=so, status=so.status)

    return ledger_transaction(_op, keys=[document_key(ENTITY, so_id)])


def pack_sales_order(so_id: int, *, actor_user_id: int | None = None) -> TransitionResult:
    """picked -> packed."""
    return _simple_transition(so_id, SalesOrderStatus.PACKED, actor_user_id=actor_user_id)


def ship_sales_order(
    so_id: int,
    shipments=None,
    *,
    carrier: str | None = None,
    tracking_number: str | None = None,
    actor_user_id: int | None = None,
) -> TransitionResult:
    """
    Ship packed lines, consuming their reservations.

    Args:
        shipments: Iterable of ShipmentLine; None ships every picked-but-unshipped unit

    Returns:
        TransitionResult with the sale StockMoves. Status becomes shipped when
        every line is fully shipped; a partial shipment keeps the order packed.

    Raises:
        OverConsumptionError: qty_shipped + qty would exceed qty_picked, or the
            line's remaining reservation
        ReservationNotFoundError: The line holds no reservation
    """
    def _op():
        so = _get_locked(so_id)
        previous = so.status
        if previous != SalesOrderStatus.PACKED.value:
            raise InvalidTransitionError(
                ENTITY,
                previous,
                SalesOrderStatus.SHIPPED.value,
                message=f"Cannot ship a {previous} sales order; pack it first",
            )

        if shipments is None:
            batch = [
                ShipmentLine(line_id=line.id, qty=line.qty_picked - line.qty_shipped)
                for line in so.lines
                if line.qty_picked > line.qty_shipped
            ]
        else:
            batch = list(shipments)
        if not batch:
            raise ValidationError("Nothing left to ship on this order", sales_order_id=so.id)

        # All stock keys of the batch, taken up front in one sorted call
        line_ids = {shipment.line_id for shipment in batch}
        held = [r for r in get_reservations(so.id) if r.sales_order_line_id in line_ids]
        lock_keys(sorted(set(_stock_keys(held)), key=repr))

        moves = []
        for shipment in batch:
            require_positive_qty(shipment.qty)
            line = _find_line(so, shipment.line_id)
            if line.qty_shipped + shipment.qty > line.qty_picked:
                raise OverConsumptionError(
                    f"Shipping {shipment.qty} would exceed qty_picked {line.qty_picked} on line {line.id}",
                    line_id=line.id,
                    qty_picked=line.qty_picked,
                    qty_shipped=line.qty_shipped,
                    attempted=shipment.qty,
                )
            moves.append(
                _consume_inner(
                    so.id,
                    line.id,
                    shipment.qty,
                    note=f"Shipment for {so.so_number}",
                )
            )
            line.qty_shipped += shipment.qty

        if carrier is not None:
            so.carrier = carrier
        if tracking_number is not None:
            so.tracking_number = tracking_number

        all_shipped = all(line.qty_shipped == line.qty_ordered for line in so.lines)
        target = SalesOrderStatus.SHIPPED if all_shipped else SalesOrderStatus.PACKED
        so.status = ensure_transition(ENTITY, previous, target)
        if all_shipped:
            so.shipped_date = today()
        db.session.flush()
        _record(
            so,
            previous,
            actor_user_id=actor_user_id,
            payload={"moves": [move.id for move in moves]},
        )
        return TransitionResult(document=so, status=so.status, moves=moves)

    return ledger_transaction(_op, keys=[document_key(ENTITY, so_id)])


def deliver_sales_order(so_id: int, *, actor_user_id: int | None = None) -> TransitionResult:
    """shipped -> delivered."""
    def _apply(so):
        so.delivered_date = today()

    return _simple_transition(
        so_id, SalesOrderStatus.DELIVERED, actor_user_id=actor_user_id, apply=_apply
    )


def cancel_sales_order(
    so_id: int,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> TransitionResult:
    """
    Cancel before shipment, releasing every unit still reserved.

    No StockMove is written; units already shipped by a partial shipment stay shipped.
    """
    def _op():
        so = _get_locked(so_id)
        previous = so.status
        new_status = ensure_transition(ENTITY, previous, SalesOrderStatus.CANCELLED)

        released = []
        has_reservations = (
            db.session.query(Reservation.id).filter(Reservation.sales_order_id == so.id).first()
            is not None
        )
        if has_reservations:
            released = _release_inner(so.id)

        so.status = new_status
        so.cancelled_at = utcnow()
        so.cancellation_reason = reason
        db.session.flush()
        _record(
            so,
            previous,
            actor_user_id=actor_user_id,
            note=reason,
            payload={"released_qty": sum(r["qty"] for r in released)},
        )
        return TransitionResult(document=so, status=so.status, released=released)

    return ledger_transaction(_op, keys=[document_key(ENTITY, so_id)])


def get_sales_order_reservations(so_id: int) -> list:
    get_sales_order(so_id)
    return get_reservations(so_id)
