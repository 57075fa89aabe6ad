# Overview: Service-layer operations for inventory adjustments; reviewed manual corrections to the ledger.

"""
Inventory Adjustment Service

WHY: Manual corrections (shrink, damage, found stock, recounts) are documents
with a review step, so nothing reaches the stock ledger until approved.

LIFECYCLE:
1. pending: Created, lines being entered; does NOT affect stock
2. approved: Every line posted as a StockMove in ONE transaction (terminal)
3. rejected: Closed without touching stock (terminal)

APPROVAL:
- Positive qty_adjustment adds stock at the line's location; negative removes
  it and needs that much available (reserved units cannot be adjusted away).
- qty_before / qty_after and the resulting stock_move_id are captured per line.
- Any failing line aborts the whole approval; the document stays pending.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..models import InventoryAdjustment, InventoryAdjustmentLine, Warehouse
from stockledger.time_utils import utcnow
from .concurrency import document_key, ledger_transaction, lock_for_update, lock_keys, stock_key
from .document_service import next_document_number
from .inventory_service import _apply_move_inner, _get_stock_item, normalize_lot
from .ledger_service import append_ledger_event
from .lifecycle_service import AdjustmentStatus, TransitionResult, ensure_transition, validate_status
from .location_service import get_org_location


ENTITY = "adjustment"

ADJUSTMENT_REASONS = ("adjustment", "damage", "recount", "return")


def get_adjustment(adjustment_id: int) -> InventoryAdjustment:
    adj = db.session.get(InventoryAdjustment, adjustment_id)
    if not adj:
        raise NotFoundError(f"Adjustment {adjustment_id} not found", adjustment_id=adjustment_id)
    return adj


def _get_locked(adjustment_id: int) -> InventoryAdjustment:
    adj = lock_for_update(db.session.query(InventoryAdjustment).filter_by(id=adjustment_id)).first()
    if not adj:
        raise NotFoundError(f"Adjustment {adjustment_id} not found", adjustment_id=adjustment_id)
    return adj


def list_adjustments(*, org_id: int | None = None, status: str | None = None) -> list[InventoryAdjustment]:
    q = db.session.query(InventoryAdjustment)
    if org_id is not None:
        q = q.filter(InventoryAdjustment.org_id == org_id)
    if status:
        q = q.filter(InventoryAdjustment.status == validate_status(ENTITY, status).value)
    return q.order_by(InventoryAdjustment.id.desc()).all()


def _add_line_inner(
    adj: InventoryAdjustment,
    *,
    product_id: int,
    location_id: int,
    qty_adjustment: int,
    lot_number: str | None = None,
    unit_cost_cents: int | None = None,
    note: str | None = None,
) -> InventoryAdjustmentLine:
    if adj.status != AdjustmentStatus.PENDING.value:
        raise InvalidTransitionError(
            ENTITY,
            adj.status,
            adj.status,
            message=f"Cannot add lines to a {adj.status} adjustment",
        )
    if isinstance(product_id, bool) or not isinstance(product_id, int) or product_id <= 0:
        raise ValidationError("product_id must be a positive integer")
    if isinstance(qty_adjustment, bool) or not isinstance(qty_adjustment, int) or qty_adjustment == 0:
        raise ValidationError("qty_adjustment must be a non-zero integer")
    if adj.reason == "damage" and qty_adjustment > 0:
        raise ValidationError("Damage adjustments can only remove stock")
    if adj.reason == "return" and qty_adjustment < 0:
        raise ValidationError("Return adjustments can only add stock")
    if unit_cost_cents is not None:
        if isinstance(unit_cost_cents, bool) or not isinstance(unit_cost_cents, int) or unit_cost_cents < 0:
            raise ValidationError("unit_cost_cents must be a non-negative integer")
        if qty_adjustment < 0:
            raise ValidationError("unit_cost_cents only applies to lines that add stock")
    get_org_location(location_id, adj.org_id, adj.warehouse_id)

    line = InventoryAdjustmentLine(
        product_id=product_id,
        location_id=location_id,
        lot_number=normalize_lot(lot_number) or None,
        qty_adjustment=qty_adjustment,
        unit_cost_cents=unit_cost_cents,
        note=note,
    )
    adj.lines.append(line)
    db.session.flush()
    return line


def create_adjustment(
    *,
    org_id: int,
    reason: str = "adjustment",
    warehouse_id: int | None = None,
    notes: str | None = None,
    created_by_user_id: int | None = None,
    lines: list[dict] | None = None,
) -> InventoryAdjustment:
    if not org_id:
        raise ValidationError("org_id is required")
    if reason not in ADJUSTMENT_REASONS:
        raise ValidationError(
            f"Invalid reason '{reason}'. Must be one of: {', '.join(ADJUSTMENT_REASONS)}"
        )

    def _op():
        if warehouse_id is not None:
            warehouse = db.session.get(Warehouse, warehouse_id)
            if not warehouse or warehouse.org_id != org_id:
                raise NotFoundError("Warehouse not found for this org", warehouse_id=warehouse_id)

        adj = InventoryAdjustment(
            org_id=org_id,
            adjustment_number=next_document_number(org_id=org_id, document_type=ENTITY),
            warehouse_id=warehouse_id,
            reason=reason,
            status=AdjustmentStatus.PENDING.value,
            notes=notes,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(adj)
        db.session.flush()

        for line in lines or []:
            _add_line_inner(adj, **line)

        append_ledger_event(
            org_id=org_id,
            event_type="adjustment.created",
            entity_type=ENTITY,
            entity_id=adj.id,
            actor_user_id=created_by_user_id,
            note=f"Adjustment {adj.adjustment_number} created",
        )
        return adj

    return ledger_transaction(_op)


def add_adjustment_line(adjustment_id: int, **fields) -> InventoryAdjustmentLine:
    def _op():
        adj = _get_locked(adjustment_id)
        return _add_line_inner(adj, **fields)

    return ledger_transaction(_op, keys=[document_key(ENTITY, adjustment_id)])


def approve_adjustment(adjustment_id: int, *, approved_by_user_id: int | None = None) -> TransitionResult:
    """
    Post every line of a pending adjustment to the ledger.

    Raises:
        InsufficientStockError: A removing line exceeds available stock
        ValidationError: No lines, or a line points at an inactive location
    """
    def _op():
        adj = _get_locked(adjustment_id)
        previous = adj.status
        new_status = ensure_transition(ENTITY, previous, AdjustmentStatus.APPROVED)
        if not adj.lines:
            raise ValidationError("Cannot approve an adjustment without lines", adjustment_id=adj.id)

        lock_keys(
            [stock_key(line.product_id, line.location_id, normalize_lot(line.lot_number)) for line in adj.lines]
        )

        moves = []
        for line in adj.lines:
            lot = normalize_lot(line.lot_number)
            item = _get_stock_item(line.product_id, line.location_id, lot, lock=True)
            line.qty_before = item.qty if item else 0

            qty = abs(line.qty_adjustment)
            if line.qty_adjustment > 0:
                move = _apply_move_inner(
                    product_id=line.product_id,
                    qty=qty,
                    reason=adj.reason,
                    to_location_id=line.location_id,
                    lot_number=lot,
                    unit_cost_cents=line.unit_cost_cents,
                    ref_table="inventory_adjustments",
                    ref_id=adj.id,
                    note=line.note or adj.notes,
                )
            else:
                move = _apply_move_inner(
                    product_id=line.product_id,
                    qty=qty,
                    reason=adj.reason,
                    from_location_id=line.location_id,
                    lot_number=lot,
                    ref_table="inventory_adjustments",
                    ref_id=adj.id,
                    note=line.note or adj.notes,
                )
            line.qty_after = line.qty_before + line.qty_adjustment
            line.stock_move_id = move.id
            moves.append(move)

        adj.status = new_status
        adj.approved_by_user_id = approved_by_user_id
        adj.approved_at = utcnow()
        db.session.flush()

        append_ledger_event(
            org_id=adj.org_id,
            event_type="adjustment.approved",
            entity_type=ENTITY,
            entity_id=adj.id,
            actor_user_id=approved_by_user_id,
            payload={"moves": [move.id for move in moves]},
        )
        current_app.logger.info(
            "Adjustment %s approved: %s lines posted", adj.adjustment_number, len(moves)
        )
        return TransitionResult(document=adj, status=adj.status, moves=moves)

    return ledger_transaction(_op, keys=[document_key(ENTITY, adjustment_id)])


def reject_adjustment(
    adjustment_id: int,
    *,
    rejected_by_user_id: int | None = None,
    reason: str | None = None,
) -> TransitionResult:
    def _op():
        adj = _get_locked(adjustment_id)
        adj.status = ensure_transition(ENTITY, adj.status, AdjustmentStatus.REJECTED)
        adj.rejected_by_user_id = rejected_by_user_id
        adj.rejected_at = utcnow()
        adj.rejection_reason = reason
        db.session.flush()

        append_ledger_event(
            org_id=adj.org_id,
            event_type="adjustment.rejected",
            entity_type=ENTITY,
            entity_id=adj.id,
            actor_user_id=rejected_by_user_id,
            note=reason,
        )
        current_app.logger.info("Adjustment %s rejected", adj.adjustment_number)
        return TransitionResult(document=adj, status=adj.status)

    return ledger_transaction(_op, keys=[document_key(ENTITY, adjustment_id)])
