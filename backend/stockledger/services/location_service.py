# Overview: Service-layer operations for warehouses and locations; the reference data stock is keyed on.

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import (
    Warehouse,
    Location,
    LOCATION_TYPES,
    StockItem,
    StockMove,
    Reservation,
    PurchaseOrderLine,
    SalesOrderLine,
    StockThreshold,
    StockAlert,
)
from .concurrency import ledger_transaction, lock_for_update


def _org_key(org_id: int) -> tuple:
    return ("warehouse_org", int(org_id))


def _get_warehouse_locked(warehouse_id: int) -> Warehouse:
    warehouse = lock_for_update(db.session.query(Warehouse).filter_by(id=warehouse_id)).first()
    if not warehouse:
        raise NotFoundError("Warehouse not found", warehouse_id=warehouse_id)
    return warehouse


def get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if not warehouse:
        raise NotFoundError("Warehouse not found", warehouse_id=warehouse_id)
    return warehouse


def list_warehouses(org_id: int | None = None, *, include_inactive: bool = False) -> list[Warehouse]:
    q = db.session.query(Warehouse)
    if org_id is not None:
        q = q.filter(Warehouse.org_id == org_id)
    if not include_inactive:
        q = q.filter(Warehouse.is_active.is_(True))
    return q.order_by(Warehouse.org_id.asc(), Warehouse.code.asc()).all()


def get_default_warehouse(org_id: int) -> Warehouse | None:
    return (
        db.session.query(Warehouse)
        .filter_by(org_id=org_id, is_default=True, is_active=True)
        .first()
    )


def create_warehouse(
    *,
    org_id: int,
    code: str,
    name: str,
    address: str | None = None,
    city: str | None = None,
    postal_code: str | None = None,
    country: str | None = None,
    manager_name: str | None = None,
    timezone: str = "UTC",
    is_default: bool = False,
) -> Warehouse:
    """
    Create a warehouse. The first warehouse of an org always becomes its default.
    """
    if not org_id:
        raise ValidationError("org_id is required")
    code = (code or "").strip()
    name = (name or "").strip()
    if not code:
        raise ValidationError("Warehouse code is required")
    if not name:
        raise ValidationError("Warehouse name is required")

    def _op():
        if db.session.query(Warehouse).filter_by(org_id=org_id, code=code).first():
            raise ValidationError(f"Warehouse code '{code}' already exists", org_id=org_id)

        has_default = get_default_warehouse(org_id) is not None
        make_default = is_default or not has_default
        if make_default and has_default:
            _clear_default(org_id)

        warehouse = Warehouse(
            org_id=org_id,
            code=code,
            name=name,
            address=address,
            city=city,
            postal_code=postal_code,
            country=country,
            manager_name=manager_name,
            timezone=timezone or "UTC",
            is_default=make_default,
            is_active=True,
        )
        db.session.add(warehouse)
        db.session.flush()
        return warehouse

    return ledger_transaction(_op, keys=[_org_key(org_id)])


def _clear_default(org_id: int) -> None:
    for current in lock_for_update(
        db.session.query(Warehouse).filter_by(org_id=org_id, is_default=True)
    ).all():
        current.is_default = False
    db.session.flush()


def set_default_warehouse(warehouse_id: int) -> Warehouse:
    """Make one warehouse the org default, clearing the previous default in the same transaction."""
    warehouse = get_warehouse(warehouse_id)
    org_id = warehouse.org_id

    def _op():
        target = _get_warehouse_locked(warehouse_id)
        if not target.is_active:
            raise ValidationError("Inactive warehouse cannot be the default", warehouse_id=warehouse_id)
        if target.is_default:
            return target
        _clear_default(org_id)
        target.is_default = True
        db.session.flush()
        return target

    return ledger_transaction(_op, keys=[_org_key(org_id)])


def deactivate_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = get_warehouse(warehouse_id)

    def _op():
        target = _get_warehouse_locked(warehouse_id)
        if target.is_default:
            raise ValidationError(
                "Default warehouse cannot be deactivated; set another default first",
                warehouse_id=warehouse_id,
            )
        _ensure_no_reservations([loc.id for loc in target.locations])
        target.is_active = False
        db.session.flush()
        return target

    return ledger_transaction(_op, keys=[_org_key(warehouse.org_id)])


def delete_warehouse(warehouse_id: int) -> None:
    """
    Hard-delete a warehouse and its locations.

    Refused while it is the default, or while any of its locations is still
    referenced by stock, movement history or orders.
    """
    warehouse = get_warehouse(warehouse_id)

    def _op():
        target = _get_warehouse_locked(warehouse_id)
        if target.is_default:
            raise ValidationError("Default warehouse cannot be deleted", warehouse_id=warehouse_id)
        for location in list(target.locations):
            _purge_location(location)
        db.session.flush()
        db.session.delete(target)
        db.session.flush()

    ledger_transaction(_op, keys=[_org_key(warehouse.org_id)])


# =============================================================================
# Locations
# =============================================================================

def get_location(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if not location:
        raise NotFoundError("Location not found", location_id=location_id)
    return location


def get_org_location(location_id: int, org_id: int, warehouse_id: int | None = None) -> Location:
    """
    Location owned by org_id, for use on an order or adjustment of that org.

    When the document names a warehouse the location must sit inside it.
    """
    location = get_location(location_id)
    if location.warehouse.org_id != org_id:
        raise NotFoundError("Location not found for this org", location_id=location_id, org_id=org_id)
    if warehouse_id is not None and location.warehouse_id != warehouse_id:
        raise ValidationError(
            "Location is not in the document's warehouse",
            location_id=location_id,
            warehouse_id=warehouse_id,
        )
    return location


def require_active_location(location_id: int) -> Location:
    """Location that may take part in a stock move (it and its warehouse are active)."""
    location = get_location(location_id)
    if not location.is_active:
        raise ValidationError("Location is inactive", location_id=location_id)
    if not location.warehouse.is_active:
        raise ValidationError(
            "Location belongs to an inactive warehouse",
            location_id=location_id,
            warehouse_id=location.warehouse_id,
        )
    return location


def list_locations(
    warehouse_id: int,
    *,
    include_inactive: bool = False,
    location_type: str | None = None,
) -> list[Location]:
    get_warehouse(warehouse_id)
    q = db.session.query(Location).filter(Location.warehouse_id == warehouse_id)
    if not include_inactive:
        q = q.filter(Location.is_active.is_(True))
    if location_type:
        q = q.filter(Location.location_type == location_type)
    return q.order_by(Location.code.asc()).all()


def create_location(
    *,
    warehouse_id: int,
    code: str,
    name: str | None = None,
    location_type: str = "storage",
    zone: str | None = None,
    aisle: str | None = None,
    rack: str | None = None,
    shelf: str | None = None,
    bin: str | None = None,
    capacity_volume=None,
    capacity_weight=None,
    temperature_controlled: bool = False,
    hazmat_approved: bool = False,
    barcode: str | None = None,
) -> Location:
    code = (code or "").strip()
    if not code:
        raise ValidationError("Location code is required")
    location_type = location_type or "storage"
    if location_type not in LOCATION_TYPES:
        raise ValidationError(
            f"Invalid location_type '{location_type}'. Must be one of: {', '.join(LOCATION_TYPES)}"
        )
    for label, value in (("capacity_volume", capacity_volume), ("capacity_weight", capacity_weight)):
        if value is not None and value < 0:
            raise ValidationError(f"{label} cannot be negative")

    def _op():
        warehouse = _get_warehouse_locked(warehouse_id)
        if not warehouse.is_active:
            raise ValidationError("Cannot add a location to an inactive warehouse", warehouse_id=warehouse_id)
        if db.session.query(Location).filter_by(warehouse_id=warehouse_id, code=code).first():
            raise ValidationError(
                f"Location code '{code}' already exists in this warehouse",
                warehouse_id=warehouse_id,
            )

        location = Location(
            warehouse_id=warehouse_id,
            code=code,
            name=name,
            location_type=location_type,
            zone=zone,
            aisle=aisle,
            rack=rack,
            shelf=shelf,
            bin=bin,
            capacity_volume=capacity_volume,
            capacity_weight=capacity_weight,
            temperature_controlled=bool(temperature_controlled),
            hazmat_approved=bool(hazmat_approved),
            barcode=barcode,
            is_active=True,
        )
        db.session.add(location)
        db.session.flush()
        return location

    return ledger_transaction(_op, keys=[("warehouse", int(warehouse_id))])


def deactivate_location(location_id: int) -> Location:
    """
    Stop a location from taking part in new moves. Existing stock stays put.

    Refused while reservations hold stock there, since those orders could
    no longer ship.
    """
    def _op():
        location = lock_for_update(db.session.query(Location).filter_by(id=location_id)).first()
        if not location:
            raise NotFoundError("Location not found", location_id=location_id)
        _ensure_no_reservations([location.id])
        location.is_active = False
        db.session.flush()
        return location

    return ledger_transaction(_op, keys=[("location", int(location_id))])


def _ensure_no_reservations(location_ids) -> None:
    if not location_ids:
        return
    held = (
        db.session.query(Reservation)
        .filter(Reservation.location_id.in_(location_ids))
        .first()
    )
    if held:
        raise ValidationError(
            "Location holds reserved stock for open sales orders; ship or cancel them first",
            location_id=held.location_id,
            sales_order_id=held.sales_order_id,
        )


def _ensure_location_unused(location_id: int) -> None:
    on_hand = (
        db.session.query(StockItem)
        .filter(StockItem.location_id == location_id, StockItem.qty > 0)
        .first()
    )
    if on_hand:
        raise ValidationError(
            "Location still holds stock; move it out or deactivate the location",
            location_id=location_id,
        )

    has_history = (
        db.session.query(StockMove.id)
        .filter(
            (StockMove.from_location_id == location_id) | (StockMove.to_location_id == location_id)
        )
        .first()
    )
    if has_history:
        raise ValidationError(
            "Location has movement history; deactivate it instead",
            location_id=location_id,
        )

    for model in (Reservation, PurchaseOrderLine, SalesOrderLine):
        if db.session.query(model.id).filter(model.location_id == location_id).first():
            raise ValidationError(
                "Location is referenced by orders; deactivate it instead",
                location_id=location_id,
            )


def delete_location(location_id: int) -> None:
    def _op():
        location = lock_for_update(db.session.query(Location).filter_by(id=location_id)).first()
        if not location:
            raise NotFoundError("Location not found", location_id=location_id)
        _purge_location(location)
        db.session.flush()

    ledger_transaction(_op, keys=[("location", int(location_id))])


def _purge_location(location: Location) -> None:
    _ensure_location_unused(location.id)
    # Empty balance rows carry no history once the moves check passed
    for model in (StockItem, StockThreshold, StockAlert):
        db.session.query(model).filter(model.location_id == location.id).delete(
            synchronize_session=False
        )
    db.session.delete(location)
