from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


class InventoryAdjustment(db.Model):
    """
    Manual stock correction document (shrink, damage, found stock, recount).

    LIFECYCLE:
    1. pending: Created, lines being entered; does NOT affect stock
    2. approved: Every line applied to the ledger in one transaction
    3. rejected: Closed without touching stock

    WHY: Manual corrections go through review before they reach the ledger,
    the same way receipts and shipments are driven by their documents.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.UniqueConstraint("org_id", "adjustment_number", name="uq_adjustments_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)
    adjustment_number = db.Column(db.String(64), nullable=False)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    # adjustment, damage, recount, return
    reason = db.Column(db.String(16), nullable=False, default="adjustment")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by_user_id = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "InventoryAdjustmentLine",
        backref="adjustment",
        lazy=True,
        order_by="InventoryAdjustmentLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "adjustment_number": self.adjustment_number,
            "warehouse_id": self.warehouse_id,
            "reason": self.reason,
            "status": self.status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InventoryAdjustmentLine(db.Model):
    """
    Signed quantity change for one stock key.

    qty_before / qty_after are captured when the document is approved.
    """
    __tablename__ = "inventory_adjustment_lines"
    __table_args__ = (
        db.CheckConstraint("qty_adjustment <> 0", name="ck_adjustment_lines_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    adjustment_id = db.Column(db.Integer, db.ForeignKey("inventory_adjustments.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    lot_number = db.Column(db.String(64), nullable=True)

    qty_adjustment = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    qty_before = db.Column(db.Integer, nullable=True)
    qty_after = db.Column(db.Integer, nullable=True)
    stock_move_id = db.Column(db.Integer, db.ForeignKey("stock_moves.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "adjustment_id": self.adjustment_id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "lot_number": self.lot_number,
            "qty_adjustment": self.qty_adjustment,
            "unit_cost_cents": self.unit_cost_cents,
            "qty_before": self.qty_before,
            "qty_after": self.qty_after,
            "stock_move_id": self.stock_move_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
