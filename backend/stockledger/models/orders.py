from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, to_iso_date


class PurchaseOrder(db.Model):
    """
    Supplier purchase order; the only document that receives stock.

    LIFECYCLE:
    draft -> sent -> confirmed -> partially_received -> received
    draft | sent | confirmed -> cancelled (only before any receipt)

    Receiving a line appends a StockMove (reason=purchase) and bumps the
    line's qty_received. Header status is recomputed from the lines.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "po_number", name="uq_purchase_orders_org_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)

    # Document number (e.g., "PO-0001") - unique per org
    po_number = db.Column(db.String(64), nullable=False)

    supplier_id = db.Column(db.Integer, nullable=True, index=True)
    supplier_name = db.Column(db.String(255), nullable=False)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)

    status = db.Column(db.String(24), nullable=False, default="draft", index=True)

    order_date = db.Column(db.Date, nullable=False)
    expected_delivery_date = db.Column(db.Date, nullable=True)
    received_date = db.Column(db.Date, nullable=True)

    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    payment_terms = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    warehouse = db.relationship("Warehouse")
    lines = db.relationship(
        "PurchaseOrderLine",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + (self.tax_cents or 0) + (self.shipping_cents or 0)

    @property
    def has_receipts(self) -> bool:
        return any(line.qty_received > 0 for line in self.lines)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "order_date": to_iso_date(self.order_date),
            "expected_delivery_date": to_iso_date(self.expected_delivery_date),
            "received_date": to_iso_date(self.received_date),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "payment_terms": self.payment_terms,
            "notes": self.notes,
            "sent_at": to_utc_z(self.sent_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class PurchaseOrderLine(db.Model):
    """Ordered vs. received quantity for one product on a purchase order."""
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.CheckConstraint("qty_ordered > 0", name="ck_po_lines_qty_ordered_positive"),
        db.CheckConstraint("qty_received >= 0", name="ck_po_lines_qty_received_nonnegative"),
        db.CheckConstraint("qty_received <= qty_ordered", name="ck_po_lines_no_over_receipt"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(255), nullable=True)
    product_sku = db.Column(db.String(64), nullable=True)

    qty_ordered = db.Column(db.Integer, nullable=False)
    qty_received = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    # Default putaway location; receipts may override per delivery
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    lot_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def line_total_cents(self) -> int:
        return (self.qty_ordered or 0) * (self.unit_cost_cents or 0)

    @property
    def qty_outstanding(self) -> int:
        return self.qty_ordered - (self.qty_received or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "qty_ordered": self.qty_ordered,
            "qty_received": self.qty_received,
            "qty_outstanding": self.qty_outstanding,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "location_id": self.location_id,
            "lot_number": self.lot_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class SalesOrder(db.Model):
    """
    Customer sales order; reserves stock on confirmation and consumes it on shipment.

    LIFECYCLE:
    pending -> confirmed -> processing -> picked -> packed -> shipped -> delivered
    any state before shipped -> cancelled (releases reservations)
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "so_number", name="uq_sales_orders_org_number"),
        db.Index("ix_sales_orders_channel_order", "channel", "channel_order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)

    so_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=False)

    # direct, web, marketplace, ...
    channel = db.Column(db.String(32), nullable=False, default="direct")
    channel_order_id = db.Column(db.String(128), nullable=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    order_date = db.Column(db.Date, nullable=False)
    required_date = db.Column(db.Date, nullable=True)
    shipped_date = db.Column(db.Date, nullable=True)
    delivered_date = db.Column(db.Date, nullable=True)

    carrier = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)

    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    warehouse = db.relationship("Warehouse")
    lines = db.relationship(
        "SalesOrderLine",
        backref="sales_order",
        lazy=True,
        order_by="SalesOrderLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def subtotal_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + (self.tax_cents or 0) + (self.shipping_cents or 0)

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "so_number": self.so_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "channel": self.channel,
            "channel_order_id": self.channel_order_id,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "order_date": to_iso_date(self.order_date),
            "required_date": to_iso_date(self.required_date),
            "shipped_date": to_iso_date(self.shipped_date),
            "delivered_date": to_iso_date(self.delivered_date),
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "notes": self.notes,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SalesOrderLine(db.Model):
    """
    One product on a sales order, fulfilled from a designated location.

    qty_shipped <= qty_picked <= qty_ordered; each counter only grows.
    """
    __tablename__ = "sales_order_lines"
    __table_args__ = (
        db.CheckConstraint("qty_ordered > 0", name="ck_so_lines_qty_ordered_positive"),
        db.CheckConstraint("qty_picked >= 0 AND qty_picked <= qty_ordered", name="ck_so_lines_picked_range"),
        db.CheckConstraint("qty_shipped >= 0 AND qty_shipped <= qty_picked", name="ck_so_lines_shipped_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(255), nullable=True)
    product_sku = db.Column(db.String(64), nullable=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    lot_number = db.Column(db.String(64), nullable=True)

    qty_ordered = db.Column(db.Integer, nullable=False)
    qty_picked = db.Column(db.Integer, nullable=False, default=0)
    qty_shipped = db.Column(db.Integer, nullable=False, default=0)

    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def line_total_cents(self) -> int:
        return (self.qty_ordered or 0) * (self.unit_price_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_order_id": self.sales_order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "location_id": self.location_id,
            "lot_number": self.lot_number,
            "qty_ordered": self.qty_ordered,
            "qty_picked": self.qty_picked,
            "qty_shipped": self.qty_shipped,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
