# backend/stockledger/routes/warehouses.py
"""
Location directory routes: warehouses and their locations.

Warehouses are scoped by org_id (tenancy lives outside this service, so the
caller passes it in the body or query string).
"""
from flask import Blueprint, jsonify, request

from ..decorators import handle_ledger_errors
from ..models import Location, Warehouse
from ..services import location_service
from ..validation import (
    ModelValidationPolicy,
    optional_int,
    require_json_object,
    validate_payload,
)


warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api")

WAREHOUSE_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "org_id",
        "code",
        "name",
        "address",
        "city",
        "postal_code",
        "country",
        "manager_name",
        "timezone",
        "is_default",
    },
    required_on_create={"org_id", "code", "name"},
)

LOCATION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "code",
        "name",
        "location_type",
        "zone",
        "aisle",
        "rack",
        "shelf",
        "bin",
        "capacity_volume",
        "capacity_weight",
        "temperature_controlled",
        "hazmat_approved",
        "barcode",
    },
    required_on_create={"code"},
)


def _flag(name: str) -> bool:
    return request.args.get(name, "false").strip().lower() in ("1", "true", "yes")


@warehouses_bp.post("/warehouses")
@handle_ledger_errors
def create_warehouse_route():
    data = validate_payload(
        model=Warehouse,
        payload=require_json_object(request.get_json(silent=True)),
        policy=WAREHOUSE_CREATE_POLICY,
    )
    warehouse = location_service.create_warehouse(**data)
    return {"warehouse": warehouse.to_dict()}, 201


@warehouses_bp.get("/warehouses")
@handle_ledger_errors
def list_warehouses_route():
    org_id = optional_int(request.args, "org_id")
    warehouses = location_service.list_warehouses(org_id, include_inactive=_flag("include_inactive"))
    return jsonify({"warehouses": [w.to_dict() for w in warehouses]}), 200


@warehouses_bp.get("/warehouses/<int:warehouse_id>")
@handle_ledger_errors
def get_warehouse_route(warehouse_id: int):
    return {"warehouse": location_service.get_warehouse(warehouse_id).to_dict()}, 200


@warehouses_bp.post("/warehouses/<int:warehouse_id>/default")
@handle_ledger_errors
def set_default_warehouse_route(warehouse_id: int):
    warehouse = location_service.set_default_warehouse(warehouse_id)
    return {"warehouse": warehouse.to_dict()}, 200


@warehouses_bp.post("/warehouses/<int:warehouse_id>/deactivate")
@handle_ledger_errors
def deactivate_warehouse_route(warehouse_id: int):
    warehouse = location_service.deactivate_warehouse(warehouse_id)
    return {"warehouse": warehouse.to_dict()}, 200


@warehouses_bp.delete("/warehouses/<int:warehouse_id>")
@handle_ledger_errors
def delete_warehouse_route(warehouse_id: int):
    location_service.delete_warehouse(warehouse_id)
    return {"deleted": True, "warehouse_id": warehouse_id}, 200


@warehouses_bp.post("/warehouses/<int:warehouse_id>/locations")
@handle_ledger_errors
def create_location_route(warehouse_id: int):
    data = validate_payload(
        model=Location,
        payload=require_json_object(request.get_json(silent=True)),
        policy=LOCATION_CREATE_POLICY,
    )
    location = location_service.create_location(warehouse_id=warehouse_id, **data)
    return {"location": location.to_dict()}, 201


@warehouses_bp.get("/warehouses/<int:warehouse_id>/locations")
@handle_ledger_errors
def list_locations_route(warehouse_id: int):
    locations = location_service.list_locations(
        warehouse_id,
        include_inactive=_flag("include_inactive"),
        location_type=request.args.get("location_type"),
    )
    return jsonify({"locations": [loc.to_dict() for loc in locations]}), 200


@warehouses_bp.post("/locations/<int:location_id>/deactivate")
@handle_ledger_errors
def deactivate_location_route(location_id: int):
    location = location_service.deactivate_location(location_id)
    return {"location": location.to_dict()}, 200


@warehouses_bp.delete("/locations/<int:location_id>")
@handle_ledger_errors
def delete_location_route(location_id: int):
    location_service.delete_location(location_id)
    return {"deleted": True, "location_id": location_id}, 200
