# Overview: Status machines for purchase orders, sales orders and adjustments.

"""
Document Lifecycle Service

================================================================================
PURPOSE: Single source of truth for which status transitions are legal
================================================================================

PURCHASE ORDER:
    draft -> sent -> confirmed -> partially_received -> received
    draft | sent | confirmed -> cancelled

SALES ORDER:
    pending -> confirmed -> processing -> picked -> packed -> shipped -> delivered
    pending | confirmed | processing | picked | packed -> cancelled

INVENTORY ADJUSTMENT:
    pending -> approved | rejected

RULES:
1. Only transitions listed in the tables below are allowed.
2. Terminal states (received, delivered, cancelled, approved, rejected) have
   no outgoing transitions.
3. Statuses are stored as their string value; anything else is rejected when
   the enum is constructed.
4. Self-transitions are only listed where a workflow stays put on purpose
   (partial receipts, partial shipments).
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..errors import InvalidTransitionError, ValidationError


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    CONFIRMED = "confirmed"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class SalesOrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    PICKED = "picked"
    PACKED = "packed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class AdjustmentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


_PO = PurchaseOrderStatus
_SO = SalesOrderStatus
_ADJ = AdjustmentStatus

PURCHASE_ORDER_TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    _PO.DRAFT: frozenset({_PO.SENT, _PO.CANCELLED}),
    _PO.SENT: frozenset({_PO.CONFIRMED, _PO.CANCELLED}),
    _PO.CONFIRMED: frozenset({_PO.PARTIALLY_RECEIVED, _PO.RECEIVED, _PO.CANCELLED}),
    _PO.PARTIALLY_RECEIVED: frozenset({_PO.PARTIALLY_RECEIVED, _PO.RECEIVED}),
    _PO.RECEIVED: frozenset(),
    _PO.CANCELLED: frozenset(),
}

SALES_ORDER_TRANSITIONS: dict[SalesOrderStatus, frozenset[SalesOrderStatus]] = {
    _SO.PENDING: frozenset({_SO.CONFIRMED, _SO.CANCELLED}),
    _SO.CONFIRMED: frozenset({_SO.PROCESSING, _SO.CANCELLED}),
    _SO.PROCESSING: frozenset({_SO.PROCESSING, _SO.PICKED, _SO.CANCELLED}),
    _SO.PICKED: frozenset({_SO.PACKED, _SO.CANCELLED}),
    _SO.PACKED: frozenset({_SO.PACKED, _SO.SHIPPED, _SO.CANCELLED}),
    _SO.SHIPPED: frozenset({_SO.DELIVERED}),
    _SO.DELIVERED: frozenset(),
    _SO.CANCELLED: frozenset(),
}

ADJUSTMENT_TRANSITIONS: dict[AdjustmentStatus, frozenset[AdjustmentStatus]] = {
    _ADJ.PENDING: frozenset({_ADJ.APPROVED, _ADJ.REJECTED}),
    _ADJ.APPROVED: frozenset(),
    _ADJ.REJECTED: frozenset(),
}

_MACHINES = {
    "purchase_order": (PurchaseOrderStatus, PURCHASE_ORDER_TRANSITIONS),
    "sales_order": (SalesOrderStatus, SALES_ORDER_TRANSITIONS),
    "adjustment": (AdjustmentStatus, ADJUSTMENT_TRANSITIONS),
}


def check_transition_tables(machines) -> None:
    """Every state must appear in its table, so a new enum member cannot be
    added without deciding its transitions."""
    for entity, (enum_cls, table) in machines.items():
        if set(table) != set(enum_cls):
            raise RuntimeError(f"{entity} transition table is incomplete")


check_transition_tables(_MACHINES)


def _machine(entity: str):
    try:
        return _MACHINES[entity]
    except KeyError:
        raise ValueError(f"Unknown document type '{entity}'") from None


def validate_status(entity: str, status: str) -> Enum:
    """
    Coerce a stored status string into its enum member.

    Raises:
        ValidationError: If status is not a state of this machine
    """
    enum_cls, _ = _machine(entity)
    try:
        return enum_cls(status)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {entity} status '{status}'. Must be one of: {allowed}"
        ) from None


def can_transition(entity: str, from_status: str, to_status: str) -> bool:
    """Check a transition against the entity's table."""
    _, table = _machine(entity)
    current = validate_status(entity, from_status)
    target = validate_status(entity, to_status)
    return target in table[current]


def ensure_transition(entity: str, from_status: str, to_status: str) -> str:
    """
    Raise InvalidTransitionError unless from_status -> to_status is allowed.

    Returns the target status value so callers can assign it directly.
    """
    if not can_transition(entity, from_status, to_status):
        raise InvalidTransitionError(
            entity,
            getattr(from_status, "value", from_status),
            getattr(to_status, "value", to_status),
        )
    return validate_status(entity, to_status).value


def is_terminal(entity: str, status: str) -> bool:
    _, table = _machine(entity)
    return not table[validate_status(entity, status)]


@dataclass
class TransitionResult:
    """Outcome of a workflow transition: the document, its new status and what it wrote."""
    document: object
    status: str
    moves: list = field(default_factory=list)
    reservations: list = field(default_factory=list)
    released: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "document": self.document.to_dict(),
            "moves": [move.to_dict() for move in self.moves],
            "reservations": [r.to_dict() for r in self.reservations],
            "released": list(self.released),
        }
