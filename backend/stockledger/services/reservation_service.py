# Overview: Service-layer operations for reservations; holds stock against sales order lines.

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass

from ..extensions import db
from ..errors import (
    InsufficientStockError,
    NotFoundError,
    OverConsumptionError,
    ReservationNotFoundError,
    ValidationError,
)
from ..models import Reservation, SalesOrderLine, StockMove
from .inventory_service import (
    _apply_move_inner,
    _get_stock_item,
    normalize_lot,
    require_positive_qty,
)
from .location_service import require_active_location
from .concurrency import document_key, ledger_transaction, lock_for_update, lock_keys, stock_key
"""
Reservation Invariants (authoritative)

- A reservation holds qty against one sales order line at one stock key
  without removing it from on-hand: StockItem.reserved_qty goes up, qty stays.
- At most one reservation per sales order line.
- reserve() is all-or-nothing. Every line is checked against available_qty
  (aggregated per stock key, so two lines on the same key cannot double-count
  the same units) while all keys of the batch are locked, and nothing is
  written unless every line fits.
- consume() turns reserved units into a sale move. It never re-checks
  available_qty; it only requires qty <= what is still reserved for the line.
- release() gives every remaining reserved unit of the order back to
  available_qty and writes no moves.
"""


@dataclass(frozen=True)
class ReservationRequest:
    sales_order_line_id: int
    product_id: int
    location_id: int
    qty: int
    lot_number: str | None = None

    @property
    def key(self) -> tuple:
        return stock_key(self.product_id, self.location_id, normalize_lot(self.lot_number))


def _stock_keys(reservations) -> list[tuple]:
    return [stock_key(r.product_id, r.location_id, r.lot_number) for r in reservations]


def get_reservations(sales_order_id: int) -> list[Reservation]:
    return (
        db.session.query(Reservation)
        .filter(Reservation.sales_order_id == sales_order_id)
        .order_by(Reservation.sales_order_line_id.asc())
        .all()
    )


def _validate_requests(sales_order_id: int, requests) -> list[ReservationRequest]:
    requests = list(requests)
    if not requests:
        raise ValidationError("At least one line is required to reserve stock")

    seen_lines = set()
    for req in requests:
        require_positive_qty(req.qty)
        if req.sales_order_line_id in seen_lines:
            raise ValidationError(
                "A sales order line can only be reserved once",
                line_id=req.sales_order_line_id,
            )
        seen_lines.add(req.sales_order_line_id)

        line = db.session.get(SalesOrderLine, req.sales_order_line_id)
        if line is None or line.sales_order_id != sales_order_id:
            raise NotFoundError(
                "Sales order line not found on this order",
                sales_order_id=sales_order_id,
                line_id=req.sales_order_line_id,
            )
    return requests


def _reserve_inner(sales_order_id: int, requests) -> list[Reservation]:
    """Check-and-write for a batch. Caller holds the document and stock keys."""
    requests = _validate_requests(sales_order_id, requests)

    existing = (
        db.session.query(Reservation.sales_order_line_id)
        .filter(Reservation.sales_order_line_id.in_([r.sales_order_line_id for r in requests]))
        .first()
    )
    if existing:
        raise ValidationError(
            "Sales order line already holds a reservation",
            line_id=existing[0],
        )

    # Group by stock key; the running total per key is what must fit
    grouped: "OrderedDict[tuple, list[ReservationRequest]]" = OrderedDict()
    for req in requests:
        grouped.setdefault(req.key, []).append(req)

    items = {}
    for key, reqs in grouped.items():
        _, product_id, location_id, lot = key
        require_active_location(location_id)
        item = _get_stock_item(product_id, location_id, lot, lock=True)
        available = item.available_qty if item else 0
        running = 0
        for req in reqs:
            running += req.qty
            if running > available:
                raise InsufficientStockError(
                    f"Insufficient stock to reserve line {req.sales_order_line_id}: "
                    f"product {product_id} at location {location_id} has {available} available, "
                    f"batch needs {running}",
                    product_id=product_id,
                    location_id=location_id,
                    lot_number=lot,
                    line_id=req.sales_order_line_id,
                    requested=req.qty,
                    available=max(0, available - (running - req.qty)),
                )
        items[key] = item

    created = []
    for key, reqs in grouped.items():
        item = items[key]
        _, product_id, location_id, lot = key
        for req in reqs:
            item.reserved_qty += req.qty
            reservation = Reservation(
                sales_order_id=sales_order_id,
                sales_order_line_id=req.sales_order_line_id,
                product_id=product_id,
                location_id=location_id,
                lot_number=lot,
                qty=req.qty,
            )
            db.session.add(reservation)
            created.append(reservation)
    db.session.flush()
    return created


def reserve(sales_order_id: int, requests) -> list[Reservation]:
    """
    Reserve every line of a batch, or none of them.

    Args:
        sales_order_id: Owning sales order
        requests: Iterable of ReservationRequest

    Returns:
        Created Reservation rows, in request order per stock key

    Raises:
        InsufficientStockError: Some line does not fit; names the line and location
        ValidationError: Empty batch, bad qty, line reserved twice
        ContentionError: Key locks or optimistic retries exhausted
    """
    requests = list(requests)
    for req in requests:
        require_positive_qty(req.qty)
        if req.product_id is None or req.location_id is None:
            raise ValidationError(
                "product_id and location_id are required to reserve stock",
                line_id=req.sales_order_line_id,
            )

    def _op():
        lock_keys(sorted({req.key for req in requests}, key=repr))
        return _reserve_inner(sales_order_id, requests)

    return ledger_transaction(_op, keys=[document_key("sales_order", sales_order_id)])


def _release_inner(sales_order_id: int) -> list[dict]:
    """Delete all reservations of an order and restore available_qty. Caller holds the document key."""
    reservations = lock_for_update(
        db.session.query(Reservation).filter(Reservation.sales_order_id == sales_order_id)
    ).all()
    if not reservations:
        raise ReservationNotFoundError(
            "Sales order holds no reservations",
            sales_order_id=sales_order_id,
        )
    lock_keys(_stock_keys(reservations))

    released = []
    for reservation in reservations:
        item = _get_stock_item(
            reservation.product_id, reservation.location_id, reservation.lot_number, lock=True
        )
        item.reserved_qty -= reservation.qty
        released.append(reservation.to_dict())
        db.session.delete(reservation)
    db.session.flush()
    return released


def release(sales_order_id: int) -> list[dict]:
    """
    Remove every reservation held by a sales order (cancellation path).

    Returns:
        The released reservations as dicts

    Raises:
        ReservationNotFoundError: The order holds no reservations
    """
    return ledger_transaction(
        lambda: _release_inner(sales_order_id),
        keys=[document_key("sales_order", sales_order_id)],
    )


def _consume_inner(
    sales_order_id: int,
    line_id: int,
    qty: int,
    *,
    note: str | None = None,
) -> StockMove:
    """Reserved units -> sale move. Caller holds the document key."""
    require_positive_qty(qty)
    reservation = lock_for_update(
        db.session.query(Reservation).filter_by(
            sales_order_id=sales_order_id, sales_order_line_id=line_id
        )
    ).first()
    if reservation is None:
        raise ReservationNotFoundError(
            "No reservation for this sales order line",
            sales_order_id=sales_order_id,
            line_id=line_id,
        )
    if qty > reservation.qty:
        raise OverConsumptionError(
            f"Cannot consume {qty}; only {reservation.qty} reserved for line {line_id}",
            line_id=line_id,
            reserved=reservation.qty,
            attempted=qty,
        )

    lock_keys(_stock_keys([reservation]))
    move = _apply_move_inner(
        product_id=reservation.product_id,
        qty=qty,
        reason="sale",
        from_location_id=reservation.location_id,
        lot_number=reservation.lot_number,
        ref_table="sales_orders",
        ref_id=sales_order_id,
        note=note,
        from_reservation=True,
    )

    reservation.qty -= qty
    if reservation.qty == 0:
        db.session.delete(reservation)
    db.session.flush()
    return move


def consume(sales_order_id: int, line_id: int, qty: int, *, note: str | None = None) -> StockMove:
    """
    Ship reserved units of one line.

    Raises:
        ReservationNotFoundError: The line holds no reservation
        OverConsumptionError: qty exceeds what is still reserved
    """
    return ledger_transaction(
        lambda: _consume_inner(sales_order_id, line_id, qty, note=note),
        keys=[document_key("sales_order", sales_order_id)],
    )
