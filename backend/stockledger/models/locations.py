from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


LOCATION_TYPES = ("storage", "staging", "receiving", "shipping", "damage", "quarantine")


class Warehouse(db.Model):
    """
    Physical warehouse within an organization.

    MULTI-TENANT: Warehouses are scoped to organizations via org_id.
    Organizations themselves live outside this service; org_id is an opaque key.

    DEFAULT WAREHOUSE:
    Exactly one active warehouse per org carries is_default=True. The location
    service enforces this when warehouses are created, re-defaulted or deactivated.

    LIFECYCLE:
    Soft-deactivated via is_active=False. Never hard-deleted while any of its
    locations holds stock.
    """
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("org_id", "code", name="uq_warehouses_org_code"),
        db.Index("ix_warehouses_org_default", "org_id", "is_default"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, nullable=False, index=True)

    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)
    country = db.Column(db.String(64), nullable=True)
    manager_name = db.Column(db.String(255), nullable=True)
    timezone = db.Column(db.String(64), nullable=False, default="UTC")

    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} code={self.code!r} org_id={self.org_id} default={self.is_default}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "code": self.code,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
            "manager_name": self.manager_name,
            "timezone": self.timezone,
            "is_default": self.is_default,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """
    Bin/shelf/zone inside a warehouse; the unit stock is tracked against.

    Codes are unique within the owning warehouse. The zone/aisle/rack/shelf/bin
    hierarchy and capacity figures are advisory and never enforced by the ledger.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("warehouse_id", "code", name="uq_locations_warehouse_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    zone = db.Column(db.String(32), nullable=True)
    aisle = db.Column(db.String(32), nullable=True)
    rack = db.Column(db.String(32), nullable=True)
    shelf = db.Column(db.String(32), nullable=True)
    bin = db.Column(db.String(32), nullable=True)

    # storage, staging, receiving, shipping, damage, quarantine
    location_type = db.Column(db.String(16), nullable=False, default="storage")

    capacity_volume = db.Column(db.Numeric(12, 3), nullable=True)
    capacity_weight = db.Column(db.Numeric(12, 3), nullable=True)
    temperature_controlled = db.Column(db.Boolean, nullable=False, default=False)
    hazmat_approved = db.Column(db.Boolean, nullable=False, default=False)
    barcode = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} code={self.code!r} warehouse_id={self.warehouse_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "warehouse_id": self.warehouse_id,
            "code": self.code,
            "name": self.name,
            "zone": self.zone,
            "aisle": self.aisle,
            "rack": self.rack,
            "shelf": self.shelf,
            "bin": self.bin,
            "location_type": self.location_type,
            "capacity_volume": float(self.capacity_volume) if self.capacity_volume is not None else None,
            "capacity_weight": float(self.capacity_weight) if self.capacity_weight is not None else None,
            "temperature_controlled": self.temperature_controlled,
            "hazmat_approved": self.hazmat_approved,
            "barcode": self.barcode,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
