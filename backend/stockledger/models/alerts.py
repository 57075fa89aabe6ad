from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


class StockThreshold(db.Model):
    """
    Alert thresholds for a product, optionally narrowed to one location.

    Lookup order: (product, location) row, then (product, NULL) row, then the
    ALERT_* application config defaults.
    """
    __tablename__ = "stock_thresholds"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_thresholds_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    low_stock_qty = db.Column(db.Integer, nullable=False)
    overstock_qty = db.Column(db.Integer, nullable=True)
    expiry_warning_days = db.Column(db.Integer, nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "low_stock_qty": self.low_stock_qty,
            "overstock_qty": self.overstock_qty,
            "expiry_warning_days": self.expiry_warning_days,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockAlert(db.Model):
    """
    Derived stock signal with its own bookkeeping lifecycle.

    NOT authoritative: produced by comparing StockItem state to thresholds.
    Lifecycle: active -> acknowledged -> resolved (resolved is terminal).
    """
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.Index("ix_stock_alerts_key_status", "product_id", "location_id", "alert_type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    lot_number = db.Column(db.String(64), nullable=False, default="")

    # low_stock, zero_stock, overstock, expiring_soon
    alert_type = db.Column(db.String(16), nullable=False)
    # low, medium, high, critical
    alert_level = db.Column(db.String(16), nullable=False)
    # active, acknowledged, resolved
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    current_qty = db.Column(db.Integer, nullable=True)
    threshold_qty = db.Column(db.Integer, nullable=True)
    message = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledged_by_user_id = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_id": self.location_id,
            "warehouse_id": self.warehouse_id,
            "lot_number": self.lot_number or None,
            "alert_type": self.alert_type,
            "alert_level": self.alert_level,
            "status": self.status,
            "current_qty": self.current_qty,
            "threshold_qty": self.threshold_qty,
            "message": self.message,
            "created_at": to_utc_z(self.created_at),
            "acknowledged_at": to_utc_z(self.acknowledged_at),
            "acknowledged_by_user_id": self.acknowledged_by_user_id,
            "resolved_at": to_utc_z(self.resolved_at),
        }
