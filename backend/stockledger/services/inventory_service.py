# Overview: Service-layer operations for inventory; the stock ledger and move engine.

# backend/stockledger/services/inventory_service.py

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..errors import (
    InsufficientStockError,
    NotFoundError,
    OverConsumptionError,
    ValidationError,
)
from ..models import Location, StockItem, StockMove, Warehouse, MOVE_REASONS
from stockledger.time_utils import utcnow, parse_iso_date
from .ledger_service import append_ledger_event
from .location_service import require_active_location
from .concurrency import ledger_transaction, lock_for_update, stock_key
"""
Stock Ledger Invariants (authoritative)

Inventory model:
- StockMove rows are the source of truth. They are append-only; corrections
  are new offsetting moves.
- StockItem is the materialized balance per (product, location, lot). Its qty
  always equals the fold of the moves for that key:
      qty = SUM(move.qty WHERE to = location) - SUM(move.qty WHERE from = location)
- available_qty = qty - reserved_qty, and 0 <= reserved_qty <= qty at all times
  (CHECK constraints back this up in the schema).

Direction:
- qty is always positive. to_location only = receipt, from_location only =
  consumption, both = transfer.

Availability:
- A consuming move needs available_qty >= qty at the source.
- Reservation-backed consumption (shipping a reserved sales order line) skips
  that check and decrements reserved_qty together with qty, because the
  reservation already took the quantity out of available_qty.

Cost (moving average, documented policy):
- Any move that adds stock with a known unit cost recomputes the destination
  cost as (old_qty * old_cost + qty * unit_cost) / (old_qty + qty), rounded
  to the nearest cent (half-up).
- Transfers carry the source's current cost into the destination average.
- Adds without a cost leave the average unchanged.
- Consumption never changes cost_per_unit_cents.
- FIFO / lot-level costing is out of scope.

Concurrency:
- Every mutation runs inside ledger_transaction() holding the stock keys it
  touches; see services/concurrency.py.
"""


RECEIPT_ONLY_REASONS = ("purchase", "return")
CONSUMPTION_ONLY_REASONS = ("sale",)
SINGLE_SIDED_REASONS = ("adjustment", "recount")


def normalize_lot(lot_number: str | None) -> str:
    """None and "" are the same un-lotted key."""
    if lot_number is None:
        return ""
    return str(lot_number).strip()


def require_positive_qty(qty, field: str = "qty") -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError(f"{field} must be an integer")
    if qty <= 0:
        raise ValidationError(f"{field} must be positive")
    return qty


def _validate_move(
    *,
    product_id,
    qty,
    reason: str,
    from_location_id: int | None,
    to_location_id: int | None,
    unit_cost_cents: int | None,
) -> None:
    if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
        raise ValidationError("product_id must be a positive integer")
    require_positive_qty(qty)

    if reason not in MOVE_REASONS:
        raise ValidationError(
            f"Invalid reason '{reason}'. Must be one of: {', '.join(MOVE_REASONS)}"
        )

    if from_location_id is None and to_location_id is None:
        raise ValidationError("A stock move needs from_location_id, to_location_id, or both")
    if from_location_id is not None and from_location_id == to_location_id:
        raise ValidationError("from_location_id and to_location_id must differ")

    if reason in RECEIPT_ONLY_REASONS and (from_location_id is not None or to_location_id is None):
        raise ValidationError(f"'{reason}' moves are receipts: set to_location_id only")
    if reason in CONSUMPTION_ONLY_REASONS and (from_location_id is None or to_location_id is not None):
        raise ValidationError(f"'{reason}' moves are consumptions: set from_location_id only")
    if reason == "transfer" and (from_location_id is None or to_location_id is None):
        raise ValidationError("'transfer' moves need both from_location_id and to_location_id")
    if reason == "damage" and from_location_id is None:
        raise ValidationError("'damage' moves need from_location_id")
    if reason in SINGLE_SIDED_REASONS and from_location_id is not None and to_location_id is not None:
        raise ValidationError(f"'{reason}' moves touch a single location")

    if unit_cost_cents is not None:
        if isinstance(unit_cost_cents, bool) or not isinstance(unit_cost_cents, int):
            raise ValidationError("unit_cost_cents must be an integer")
        if unit_cost_cents < 0:
            raise ValidationError("unit_cost_cents cannot be negative")


def moving_average_cost(
    old_qty: int, old_cost_cents: int | None, add_qty: int, add_cost_cents: int | None
) -> int | None:
    """
    Quantity-weighted moving average, nearest-cent rounding (half-up).

    An add without a cost leaves the average unchanged; a first known cost
    becomes the average as-is.
    """
    if add_cost_cents is None:
        return old_cost_cents
    if old_cost_cents is None or old_qty <= 0:
        return add_cost_cents
    total_units = old_qty + add_qty
    total_cost = old_qty * old_cost_cents + add_qty * add_cost_cents
    return (total_cost + (total_units // 2)) // total_units


def _get_stock_item(product_id: int, location_id: int, lot: str, *, lock: bool = False) -> StockItem | None:
    query = db.session.query(StockItem).filter_by(
        product_id=product_id, location_id=location_id, lot_number=lot
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


def _get_or_create_stock_item(product_id: int, location_id: int, lot: str) -> StockItem:
    item = _get_stock_item(product_id, location_id, lot, lock=True)
    if item is None:
        item = StockItem(
            product_id=product_id,
            location_id=location_id,
            lot_number=lot,
            qty=0,
            reserved_qty=0,
        )
        db.session.add(item)
        db.session.flush()
    return item


def _apply_move_inner(
    *,
    product_id: int,
    qty: int,
    reason: str,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    lot_number: str | None = None,
    unit_cost_cents: int | None = None,
    ref_table: str | None = None,
    ref_id: int | None = None,
    note: str | None = None,
    expiry_date: date | None = None,
    from_reservation: bool = False,
) -> StockMove:
    """Core move logic without key locks, retry, or commit.

    Called by the public apply_move() and by the reservation and order
    workflows, which hold the stock keys themselves.
    """
    _validate_move(
        product_id=product_id,
        qty=qty,
        reason=reason,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        unit_cost_cents=unit_cost_cents,
    )
    lot = normalize_lot(lot_number)
    now = utcnow()

    if from_location_id is not None:
        require_active_location(from_location_id)
    if to_location_id is not None:
        require_active_location(to_location_id)

    move_cost = unit_cost_cents
    carried_expiry = expiry_date

    if from_location_id is not None:
        source = _get_stock_item(product_id, from_location_id, lot, lock=True)
        if from_reservation:
            reserved = source.reserved_qty if source else 0
            if reserved < qty:
                raise OverConsumptionError(
                    "Reserved quantity does not cover this consumption",
                    product_id=product_id,
                    location_id=from_location_id,
                    reserved=reserved,
                    attempted=qty,
                )
            source.reserved_qty -= qty
        else:
            available = source.available_qty if source else 0
            if available < qty:
                raise InsufficientStockError(
                    f"Insufficient stock for product {product_id} at location {from_location_id}: "
                    f"requested {qty}, available {available}",
                    product_id=product_id,
                    location_id=from_location_id,
                    lot_number=lot,
                    requested=qty,
                    available=available,
                )
        source.qty -= qty
        source.last_movement_date = now

        if move_cost is None:
            move_cost = source.cost_per_unit_cents
        if carried_expiry is None:
            carried_expiry = source.expiry_date

    if to_location_id is not None:
        dest = _get_or_create_stock_item(product_id, to_location_id, lot)
        if move_cost is None:
            move_cost = dest.cost_per_unit_cents
        else:
            dest.cost_per_unit_cents = moving_average_cost(
                dest.qty, dest.cost_per_unit_cents, qty, move_cost
            )
        dest.qty += qty
        dest.last_movement_date = now
        if dest.expiry_date is None and carried_expiry is not None:
            dest.expiry_date = carried_expiry

    move = StockMove(
        product_id=product_id,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        lot_number=lot,
        qty=qty,
        unit_cost_cents=move_cost,
        reason=reason,
        ref_table=ref_table,
        ref_id=ref_id,
        note=note[:255] if note else None,
        created_at=now,
    )
    db.session.add(move)
    db.session.flush()
    return move


def _move_keys(product_id, from_location_id, to_location_id, lot_number) -> list[tuple]:
    keys = []
    for location_id in (from_location_id, to_location_id):
        if location_id is not None:
            keys.append(stock_key(product_id, location_id, normalize_lot(lot_number)))
    return keys


def _org_for_location(location_id: int | None) -> int | None:
    if location_id is None:
        return None
    location = db.session.get(Location, location_id)
    return location.warehouse.org_id if location else None


def apply_move(
    *,
    product_id: int,
    qty: int,
    reason: str,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    lot_number: str | None = None,
    unit_cost_cents: int | None = None,
    ref_table: str | None = None,
    ref_id: int | None = None,
    note: str | None = None,
    expiry_date=None,
    actor_user_id: int | None = None,
) -> StockMove:
    """
    Validate and apply one stock move atomically.

    Appends the StockMove, updates the source and/or destination StockItem and
    records an audit event, all in one transaction.

    Args:
        product_id: Catalog product key
        qty: Positive unit count
        reason: purchase, sale, adjustment, transfer, return, damage, recount
        from_location_id: Source (None for pure receipts)
        to_location_id: Destination (None for pure consumption)
        lot_number: Optional lot; None and "" are the same key
        unit_cost_cents: Cost of the added units (receipts/adds only)
        expiry_date: date or ISO string, kept on the destination item

    Returns:
        The appended StockMove

    Raises:
        ValidationError: Bad qty, reason or location pair; inactive location
        InsufficientStockError: Source available_qty < qty
        ContentionError: Key locks or optimistic retries exhausted
    """
    _validate_move(
        product_id=product_id,
        qty=qty,
        reason=reason,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        unit_cost_cents=unit_cost_cents,
    )
    try:
        expiry = parse_iso_date(expiry_date)
    except ValueError:
        raise ValidationError("expiry_date must be an ISO date") from None

    def _op():
        move = _apply_move_inner(
            product_id=product_id,
            qty=qty,
            reason=reason,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            lot_number=lot_number,
            unit_cost_cents=unit_cost_cents,
            ref_table=ref_table,
            ref_id=ref_id,
            note=note,
            expiry_date=expiry,
        )
        append_ledger_event(
            org_id=_org_for_location(from_location_id or to_location_id),
            event_type=f"stock.{move.move_type}",
            entity_type="stock_move",
            entity_id=move.id,
            actor_user_id=actor_user_id,
            note=note,
            payload={"reason": reason, "qty": qty, "product_id": product_id},
        )
        return move

    return ledger_transaction(
        _op, keys=_move_keys(product_id, from_location_id, to_location_id, lot_number)
    )


# =============================================================================
# Convenience operations built on apply_move
# =============================================================================

def adjust_stock(
    *,
    product_id: int,
    location_id: int,
    qty_delta: int,
    reason: str = "adjustment",
    lot_number: str | None = None,
    unit_cost_cents: int | None = None,
    note: str | None = None,
    ref_table: str | None = None,
    ref_id: int | None = None,
    actor_user_id: int | None = None,
) -> StockMove:
    """Signed single-location correction: positive adds, negative removes."""
    if isinstance(qty_delta, bool) or not isinstance(qty_delta, int) or qty_delta == 0:
        raise ValidationError("qty_delta must be a non-zero integer")
    if qty_delta > 0:
        return apply_move(
            product_id=product_id,
            qty=qty_delta,
            reason=reason,
            to_location_id=location_id,
            lot_number=lot_number,
            unit_cost_cents=unit_cost_cents,
            note=note,
            ref_table=ref_table,
            ref_id=ref_id,
            actor_user_id=actor_user_id,
        )
    return apply_move(
        product_id=product_id,
        qty=-qty_delta,
        reason=reason,
        from_location_id=location_id,
        lot_number=lot_number,
        note=note,
        ref_table=ref_table,
        ref_id=ref_id,
        actor_user_id=actor_user_id,
    )


def transfer_stock(
    *,
    product_id: int,
    from_location_id: int,
    to_location_id: int,
    qty: int,
    lot_number: str | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> StockMove:
    """Move available stock between two locations; the destination averages in the source cost."""
    return apply_move(
        product_id=product_id,
        qty=qty,
        reason="transfer",
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        lot_number=lot_number,
        note=note,
        actor_user_id=actor_user_id,
    )


def recount_stock(
    *,
    product_id: int,
    location_id: int,
    counted_qty: int,
    lot_number: str | None = None,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> StockMove | None:
    """
    Bring on-hand to a physically counted quantity with one offsetting move.

    Returns None when the count matches (only last_count_date changes).

    Raises:
        InsufficientStockError: counted_qty is below the reserved quantity
    """
    if isinstance(counted_qty, bool) or not isinstance(counted_qty, int) or counted_qty < 0:
        raise ValidationError("counted_qty must be a non-negative integer")
    lot = normalize_lot(lot_number)

    def _op():
        require_active_location(location_id)
        item = _get_or_create_stock_item(product_id, location_id, lot)
        if counted_qty < item.reserved_qty:
            raise InsufficientStockError(
                f"Counted quantity {counted_qty} is below the reserved quantity {item.reserved_qty}; "
                "release reservations first",
                product_id=product_id,
                location_id=location_id,
                lot_number=lot,
                requested=item.reserved_qty,
                available=counted_qty,
            )

        delta = counted_qty - item.qty
        move = None
        if delta > 0:
            move = _apply_move_inner(
                product_id=product_id,
                qty=delta,
                reason="recount",
                to_location_id=location_id,
                lot_number=lot,
                note=note,
            )
        elif delta < 0:
            move = _apply_move_inner(
                product_id=product_id,
                qty=-delta,
                reason="recount",
                from_location_id=location_id,
                lot_number=lot,
                note=note,
            )
        item.last_count_date = utcnow()

        append_ledger_event(
            org_id=_org_for_location(location_id),
            event_type="stock.recounted",
            entity_type="stock_move" if move else "stock_item",
            entity_id=move.id if move else item.id,
            actor_user_id=actor_user_id,
            note=note,
            payload={"product_id": product_id, "counted_qty": counted_qty, "delta": delta},
        )
        return move

    return ledger_transaction(_op, keys=[stock_key(product_id, location_id, lot)])


# =============================================================================
# Read queries
# =============================================================================

def get_stock_snapshot(product_id: int, location_id: int | None = None) -> list[StockItem]:
    """Current StockItems for a product, optionally narrowed to one location. Read-only."""
    q = db.session.query(StockItem).filter(StockItem.product_id == product_id)
    if location_id is not None:
        q = q.filter(StockItem.location_id == location_id)
    return q.order_by(StockItem.location_id.asc(), StockItem.lot_number.asc()).all()


def get_stock_item(product_id: int, location_id: int, lot_number: str | None = None) -> StockItem:
    item = _get_stock_item(product_id, location_id, normalize_lot(lot_number))
    if item is None:
        raise NotFoundError(
            "No stock recorded for this product at this location",
            product_id=product_id,
            location_id=location_id,
            lot_number=normalize_lot(lot_number) or None,
        )
    return item


def get_move_history(
    product_id: int,
    location_id: int | None = None,
    *,
    after_id: int | None = None,
    limit: int | None = None,
) -> list[StockMove]:
    """
    Moves for a product in append order (ascending id).

    Page with after_id = the last id of the previous page. limit defaults to
    and is capped at MOVE_HISTORY_PAGE_LIMIT.
    """
    page_limit = int(current_app.config.get("MOVE_HISTORY_PAGE_LIMIT") or 200)
    if limit is None or limit <= 0 or limit > page_limit:
        limit = page_limit

    q = db.session.query(StockMove).filter(StockMove.product_id == product_id)
    if location_id is not None:
        q = q.filter(
            or_(StockMove.from_location_id == location_id, StockMove.to_location_id == location_id)
        )
    if after_id is not None:
        q = q.filter(StockMove.id > after_id)
    return q.order_by(StockMove.id.asc()).limit(limit).all()


def replay_quantity(product_id: int, location_id: int, lot_number: str | None = None) -> int:
    """Fold every move for one key from an empty state."""
    lot = normalize_lot(lot_number)
    inbound = (
        db.session.query(func.coalesce(func.sum(StockMove.qty), 0))
        .filter(
            StockMove.product_id == product_id,
            StockMove.to_location_id == location_id,
            StockMove.lot_number == lot,
        )
        .scalar()
    )
    outbound = (
        db.session.query(func.coalesce(func.sum(StockMove.qty), 0))
        .filter(
            StockMove.product_id == product_id,
            StockMove.from_location_id == location_id,
            StockMove.lot_number == lot,
        )
        .scalar()
    )
    return int(inbound or 0) - int(outbound or 0)


def verify_ledger(product_id: int | None = None) -> list[dict]:
    """
    Compare every StockItem with the fold of its moves.

    Returns one entry per drifting key (empty list means the ledger is consistent).
    """
    q = db.session.query(StockItem)
    if product_id is not None:
        q = q.filter(StockItem.product_id == product_id)

    drift = []
    for item in q.order_by(StockItem.id.asc()).all():
        expected = replay_quantity(item.product_id, item.location_id, item.lot_number)
        problems = []
        if expected != item.qty:
            problems.append("qty does not match move history")
        if item.reserved_qty < 0 or item.reserved_qty > item.qty:
            problems.append("reserved_qty out of range")
        if problems:
            drift.append(
                {
                    "stock_item_id": item.id,
                    "product_id": item.product_id,
                    "location_id": item.location_id,
                    "lot_number": item.lot_number or None,
                    "qty": item.qty,
                    "replayed_qty": expected,
                    "reserved_qty": item.reserved_qty,
                    "problems": problems,
                }
            )
    return drift


def get_channel_availability(product_ids) -> dict[int, int]:
    """
    Sellable quantity per product across active locations of active warehouses.

    The read that outbound channel sync pushes; products with no stock map to 0.
    """
    ids = [int(pid) for pid in product_ids]
    result = {pid: 0 for pid in ids}
    if not ids:
        return result

    rows = (
        db.session.query(
            StockItem.product_id,
            func.coalesce(func.sum(StockItem.qty - StockItem.reserved_qty), 0),
        )
        .join(Location, Location.id == StockItem.location_id)
        .join(Warehouse, Warehouse.id == Location.warehouse_id)
        .filter(
            StockItem.product_id.in_(ids),
            Location.is_active.is_(True),
            Warehouse.is_active.is_(True),
        )
        .group_by(StockItem.product_id)
        .all()
    )
    for pid, available in rows:
        result[int(pid)] = int(available or 0)
    return result
