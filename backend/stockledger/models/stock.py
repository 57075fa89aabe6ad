from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from ..errors import ImmutableRecordError
from stockledger.time_utils import to_utc_z, to_iso_date


MOVE_REASONS = ("purchase", "sale", "adjustment", "transfer", "return", "damage", "recount")


class StockItem(db.Model):
    """
    Materialized ledger balance for one (product, location, lot) key.

    INVARIANTS (enforced by CHECK constraints and the ledger service):
    - qty >= 0
    - reserved_qty >= 0
    - reserved_qty <= qty
    - available_qty = qty - reserved_qty (derived, never stored)

    qty always equals the fold of StockMove rows for the same key.
    Rows are mutated only by the stock ledger and reservation services; never
    edited directly.

    LOT KEY: lot_number is stored as "" when the stock is not lot-tracked so
    the composite unique constraint also covers un-lotted stock.

    COST: cost_per_unit_cents is a moving average recomputed on receipts only.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", "lot_number", name="uq_stock_items_key"),
        db.CheckConstraint("qty >= 0", name="ck_stock_items_qty_nonnegative"),
        db.CheckConstraint("reserved_qty >= 0", name="ck_stock_items_reserved_nonnegative"),
        db.CheckConstraint("reserved_qty <= qty", name="ck_stock_items_reserved_le_qty"),
        db.Index("ix_stock_items_product_location", "product_id", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Products live in the external catalog; product_id is an opaque key
    product_id = db.Column(db.Integer, nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    lot_number = db.Column(db.String(64), nullable=False, default="")

    qty = db.Column(db.Integer, nullable=False, default=0)
    reserved_qty = db.Column(db.Integer, nullable=False, default=0)

    cost_per_unit_cents = db.Column(db.Integer, nullable=True)

    expiry_date = db.Column(db.Date, nullable=True)
    last_movement_date = db.Column(db.DateTime(timezone=True), nullable=True)
    last_count_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location", backref=db.backref("stock_items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def available_qty(self):
        return self.qty - self.reserved_qty

    def __repr__(self) -> str:
        return (
            f"<StockItem product_id={self.product_id} location_id={self.location_id} "
            f"lot={self.lot_number!r} qty={self.qty} reserved={self.reserved_qty}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "lot_number": self.lot_number or None,
            "qty": self.qty,
            "reserved_qty": self.reserved_qty,
            "available_qty": self.available_qty,
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "expiry_date": to_iso_date(self.expiry_date),
            "last_movement_date": to_utc_z(self.last_movement_date),
            "last_count_date": to_utc_z(self.last_count_date),
            "version_id": self.version_id,
        }


class StockMove(db.Model):
    """
    Immutable ledger entry. The source of truth for on-hand quantity.

    DIRECTION:
    qty is always positive; direction comes from the location pair.
    - to_location only    -> receipt
    - from_location only  -> consumption
    - both                -> transfer

    APPEND-ONLY: rows are never updated or deleted (ORM listeners below raise
    ImmutableRecordError). Corrections are new offsetting moves.
    """
    __tablename__ = "stock_moves"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_stock_moves_qty_positive"),
        db.CheckConstraint(
            "from_location_id IS NOT NULL OR to_location_id IS NOT NULL",
            name="ck_stock_moves_has_location",
        ),
        db.Index("ix_stock_moves_product_from", "product_id", "from_location_id"),
        db.Index("ix_stock_moves_product_to", "product_id", "to_location_id"),
        db.Index("ix_stock_moves_ref", "ref_table", "ref_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, nullable=False, index=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    lot_number = db.Column(db.String(64), nullable=False, default="")

    qty = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    # purchase, sale, adjustment, transfer, return, damage, recount
    reason = db.Column(db.String(16), nullable=False, index=True)

    # Back-reference to the document that caused the move
    ref_table = db.Column(db.String(64), nullable=True)
    ref_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    @property
    def move_type(self) -> str:
        if self.from_location_id is None:
            return "receipt"
        if self.to_location_id is None:
            return "consumption"
        return "transfer"

    def signed_qty_for(self, location_id: int) -> int:
        """Quantity delta this move contributes to one location."""
        delta = 0
        if self.to_location_id == location_id:
            delta += self.qty
        if self.from_location_id == location_id:
            delta -= self.qty
        return delta

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "lot_number": self.lot_number or None,
            "qty": self.qty,
            "unit_cost_cents": self.unit_cost_cents,
            "reason": self.reason,
            "move_type": self.move_type,
            "ref_table": self.ref_table,
            "ref_id": self.ref_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class Reservation(db.Model):
    """
    Quantity held against one sales order line without leaving on-hand.

    Exists only while its sales order is confirmed and not yet fully shipped.
    Creating it increments StockItem.reserved_qty; releasing or consuming it
    decrements the same amount.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.UniqueConstraint("sales_order_line_id", name="uq_reservations_line"),
        db.CheckConstraint("qty > 0", name="ck_reservations_qty_positive"),
        db.Index("ix_reservations_key", "product_id", "location_id", "lot_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    sales_order_line_id = db.Column(db.Integer, db.ForeignKey("sales_order_lines.id"), nullable=False)

    product_id = db.Column(db.Integer, nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    lot_number = db.Column(db.String(64), nullable=False, default="")

    qty = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_order_id": self.sales_order_id,
            "sales_order_line_id": self.sales_order_line_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "lot_number": self.lot_number or None,
            "qty": self.qty,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@event.listens_for(StockMove, "before_update")
def prevent_stock_move_update(mapper, connection, target):
    raise ImmutableRecordError(
        "Stock moves are append-only; post an offsetting move instead",
        entity_type="stock_move",
        entity_id=target.id,
    )


@event.listens_for(StockMove, "before_delete")
def prevent_stock_move_delete(mapper, connection, target):
    raise ImmutableRecordError(
        "Stock moves are append-only; post an offsetting move instead",
        entity_type="stock_move",
        entity_id=target.id,
    )
