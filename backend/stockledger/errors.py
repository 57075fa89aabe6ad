# Overview: Typed failures raised by the ledger, reservation and workflow services.

"""
Stock ledger error taxonomy (authoritative)

Every failure a caller can receive from the service layer is a LedgerError.
Routes map them to HTTP responses using ``status_code`` and ``to_dict()``.

- ContentionError is the only class produced by automatic retry exhaustion.
- All other classes are terminal for the call that raised them; the whole
  business transition is rolled back before the error reaches the caller.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all ledger, reservation and workflow failures."""

    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError, ValueError):
    """Malformed input: non-positive qty, bad location pair, unknown reason."""

    status_code = 400
    code = "validation_error"


class NotFoundError(LedgerError):
    """A referenced warehouse, location, order or line does not exist."""

    status_code = 404
    code = "not_found"


class InsufficientStockError(LedgerError):
    """Available quantity at a location cannot cover the request."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(
        self,
        message: str,
        *,
        product_id: int | None = None,
        location_id: int | None = None,
        lot_number: str | None = None,
        line_id: int | None = None,
        requested: int | None = None,
        available: int | None = None,
    ):
        super().__init__(
            message,
            product_id=product_id,
            location_id=location_id,
            lot_number=lot_number or None,
            line_id=line_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.location_id = location_id
        self.line_id = line_id
        self.requested = requested
        self.available = available


class OverReceiptError(LedgerError):
    """Cumulative receipts on a purchase order line would exceed qty_ordered."""

    status_code = 409
    code = "over_receipt"


class OverConsumptionError(LedgerError):
    """Shipment quantity exceeds what remains reserved (or picked) for a line."""

    status_code = 409
    code = "over_consumption"


class ReservationNotFoundError(LedgerError):
    """Consume/release on a sales order (or line) that holds no reservation."""

    status_code = 404
    code = "reservation_not_found"


class InvalidTransitionError(LedgerError):
    """Status machine violation on a purchase order, sales order or adjustment."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, entity: str, from_status: str, to_status: str, message: str | None = None):
        super().__init__(
            message or f"Cannot move {entity} from {from_status} to {to_status}",
            entity=entity,
            from_status=from_status,
            to_status=to_status,
        )
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status


class ContentionError(LedgerError):
    """Lock wait or optimistic-retry budget exhausted; retry the business operation."""

    status_code = 503
    code = "contention"


class ImmutableRecordError(LedgerError):
    """An append-only record (stock move, ledger event) was updated or deleted."""

    status_code = 409
    code = "immutable_record"
