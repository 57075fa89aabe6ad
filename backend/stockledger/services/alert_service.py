# Overview: Service-layer operations for stock alerts; derives signals from ledger state and tracks their bookkeeping.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..models import Location, StockAlert, StockItem, StockThreshold, Warehouse
from stockledger.time_utils import utcnow, today as utc_today
from .concurrency import ledger_transaction
"""
Stock Alert Invariants (authoritative)

- Alerts are derived, never authoritative. Evaluating or refreshing alerts
  never writes StockItems or StockMoves.
- evaluate() is a pure function of one StockItem snapshot and its thresholds.
- Signals, in priority order:
    zero_stock     available_qty == 0                         critical
    low_stock      0 < available_qty <= low_stock_qty         high if <= half, else medium
    overstock      qty > overstock_qty (when configured)      low
    expiring_soon  expiry within expiry_warning_days          medium (already expired: high)
- Lifecycle: active -> acknowledged -> resolved; resolved is terminal.
- At most one open (active/acknowledged) alert per (product, location, lot, type).
"""


ALERT_TYPES = ("zero_stock", "low_stock", "overstock", "expiring_soon")
ALERT_LEVELS = ("low", "medium", "high", "critical")
ALERT_STATUSES = ("active", "acknowledged", "resolved")
OPEN_STATUSES = ("active", "acknowledged")

ALERT_TRANSITIONS = {
    "active": ("acknowledged", "resolved"),
    "acknowledged": ("resolved",),
    "resolved": (),
}


@dataclass(frozen=True)
class AlertThresholds:
    low_stock_qty: int
    overstock_qty: int | None = None
    expiry_warning_days: int | None = 30


@dataclass(frozen=True)
class AlertSignal:
    alert_type: str
    alert_level: str
    current_qty: int
    threshold_qty: int | None
    message: str


def evaluate_all(item, thresholds: AlertThresholds, today: date | None = None) -> list[AlertSignal]:
    """Every signal that holds for one StockItem, highest priority first."""
    signals = []
    available = item.qty - item.reserved_qty

    if available <= 0:
        signals.append(
            AlertSignal(
                alert_type="zero_stock",
                alert_level="critical",
                current_qty=available,
                threshold_qty=0,
                message="No available stock",
            )
        )
    elif available <= thresholds.low_stock_qty:
        level = "high" if available * 2 <= thresholds.low_stock_qty else "medium"
        signals.append(
            AlertSignal(
                alert_type="low_stock",
                alert_level=level,
                current_qty=available,
                threshold_qty=thresholds.low_stock_qty,
                message=f"Available stock {available} is at or below {thresholds.low_stock_qty}",
            )
        )

    if thresholds.overstock_qty is not None and item.qty > thresholds.overstock_qty:
        signals.append(
            AlertSignal(
                alert_type="overstock",
                alert_level="low",
                current_qty=item.qty,
                threshold_qty=thresholds.overstock_qty,
                message=f"On-hand stock {item.qty} exceeds {thresholds.overstock_qty}",
            )
        )

    expiry = getattr(item, "expiry_date", None)
    if expiry is not None and item.qty > 0 and thresholds.expiry_warning_days is not None:
        days_left = (expiry - (today or utc_today())).days
        if days_left <= thresholds.expiry_warning_days:
            expired = days_left < 0
            signals.append(
                AlertSignal(
                    alert_type="expiring_soon",
                    alert_level="high" if expired else "medium",
                    current_qty=item.qty,
                    threshold_qty=thresholds.expiry_warning_days,
                    message=(
                        f"Stock expired on {expiry.isoformat()}"
                        if expired
                        else f"Stock expires in {days_left} days"
                    ),
                )
            )

    return signals


def evaluate(item, thresholds: AlertThresholds, today: date | None = None) -> AlertSignal | None:
    """Highest-priority signal for one StockItem, or None when it is healthy."""
    signals = evaluate_all(item, thresholds, today)
    return signals[0] if signals else None


def default_thresholds() -> AlertThresholds:
    cfg = current_app.config
    return AlertThresholds(
        low_stock_qty=int(cfg.get("ALERT_LOW_STOCK_QTY") or 0),
        overstock_qty=cfg.get("ALERT_OVERSTOCK_QTY"),
        expiry_warning_days=cfg.get("ALERT_EXPIRY_WARNING_DAYS"),
    )


def resolve_thresholds(product_id: int, location_id: int | None = None) -> AlertThresholds:
    """
    Lookup order: (product, location) row, then (product, NULL) row, then
    the ALERT_* app config defaults. Unset columns fall through to the defaults.
    """
    defaults = default_thresholds()
    row = None
    if location_id is not None:
        row = (
            db.session.query(StockThreshold)
            .filter_by(product_id=product_id, location_id=location_id)
            .first()
        )
    if row is None:
        row = (
            db.session.query(StockThreshold)
            .filter(StockThreshold.product_id == product_id, StockThreshold.location_id.is_(None))
            .first()
        )
    if row is None:
        return defaults
    return AlertThresholds(
        low_stock_qty=row.low_stock_qty,
        overstock_qty=row.overstock_qty if row.overstock_qty is not None else defaults.overstock_qty,
        expiry_warning_days=(
            row.expiry_warning_days
            if row.expiry_warning_days is not None
            else defaults.expiry_warning_days
        ),
    )


def set_threshold(
    *,
    product_id: int,
    low_stock_qty: int,
    location_id: int | None = None,
    overstock_qty: int | None = None,
    expiry_warning_days: int | None = None,
) -> StockThreshold:
    for label, value in (
        ("low_stock_qty", low_stock_qty),
        ("overstock_qty", overstock_qty),
        ("expiry_warning_days", expiry_warning_days),
    ):
        if value is None and label != "low_stock_qty":
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(f"{label} must be a non-negative integer")
    if overstock_qty is not None and overstock_qty <= low_stock_qty:
        raise ValidationError("overstock_qty must be greater than low_stock_qty")

    def _op():
        if location_id is not None and db.session.get(Location, location_id) is None:
            raise NotFoundError("Location not found", location_id=location_id)
        q = db.session.query(StockThreshold).filter(StockThreshold.product_id == product_id)
        if location_id is None:
            q = q.filter(StockThreshold.location_id.is_(None))
        else:
            q = q.filter(StockThreshold.location_id == location_id)
        row = q.first()
        if row is None:
            row = StockThreshold(product_id=product_id, location_id=location_id, low_stock_qty=low_stock_qty)
            db.session.add(row)
        row.low_stock_qty = low_stock_qty
        row.overstock_qty = overstock_qty
        row.expiry_warning_days = expiry_warning_days
        db.session.flush()
        return row

    return ledger_transaction(_op, keys=[("stock_threshold", int(product_id), location_id or 0)])


def refresh_alerts(product_id: int | None = None, *, today: date | None = None) -> dict:
    """
    Re-evaluate stock at active locations and reconcile open alerts.

    - Opens an alert for each new signal (no duplicate while one is open).
    - Updates level/qty of alerts whose condition still holds.
    - Resolves open alerts whose condition has cleared.

    Returns:
        {"created": [StockAlert], "resolved": [StockAlert]}
    """
    as_of = today or utc_today()

    def _op():
        q = (
            db.session.query(StockItem, Location)
            .join(Location, Location.id == StockItem.location_id)
            .join(Warehouse, Warehouse.id == Location.warehouse_id)
            .filter(Location.is_active.is_(True), Warehouse.is_active.is_(True))
        )
        if product_id is not None:
            q = q.filter(StockItem.product_id == product_id)

        open_q = db.session.query(StockAlert).filter(StockAlert.status.in_(OPEN_STATUSES))
        if product_id is not None:
            open_q = open_q.filter(StockAlert.product_id == product_id)
        open_alerts: dict[tuple, StockAlert] = {}
        for alert in open_q.all():
            open_alerts[(alert.product_id, alert.location_id, alert.lot_number, alert.alert_type)] = alert

        created, resolved = [], []
        seen = set()
        threshold_cache: dict[tuple, AlertThresholds] = {}

        for item, location in q.order_by(StockItem.id.asc()).all():
            cache_key = (item.product_id, item.location_id)
            if cache_key not in threshold_cache:
                threshold_cache[cache_key] = resolve_thresholds(item.product_id, item.location_id)
            for signal in evaluate_all(item, threshold_cache[cache_key], as_of):
                key = (item.product_id, item.location_id, item.lot_number, signal.alert_type)
                seen.add(key)
                alert = open_alerts.get(key)
                if alert is not None:
                    alert.alert_level = signal.alert_level
                    alert.current_qty = signal.current_qty
                    alert.threshold_qty = signal.threshold_qty
                    alert.message = signal.message
                    continue
                alert = StockAlert(
                    product_id=item.product_id,
                    location_id=item.location_id,
                    warehouse_id=location.warehouse_id,
                    lot_number=item.lot_number,
                    alert_type=signal.alert_type,
                    alert_level=signal.alert_level,
                    status="active",
                    current_qty=signal.current_qty,
                    threshold_qty=signal.threshold_qty,
                    message=signal.message,
                )
                db.session.add(alert)
                created.append(alert)

        now = utcnow()
        for key, alert in open_alerts.items():
            if key not in seen:
                alert.status = "resolved"
                alert.resolved_at = now
                resolved.append(alert)

        db.session.flush()
        return {"created": created, "resolved": resolved}

    result = ledger_transaction(_op, keys=[("alert_refresh",)])
    current_app.logger.info(
        "Alert refresh: %s created, %s resolved", len(result["created"]), len(result["resolved"])
    )
    return result


def get_alert(alert_id: int) -> StockAlert:
    alert = db.session.get(StockAlert, alert_id)
    if not alert:
        raise NotFoundError(f"Alert {alert_id} not found", alert_id=alert_id)
    return alert


def _move_alert(alert_id: int, target: str, apply) -> StockAlert:
    def _op():
        alert = get_alert(alert_id)
        if target not in ALERT_TRANSITIONS.get(alert.status, ()):
            raise InvalidTransitionError("stock_alert", alert.status, target)
        alert.status = target
        apply(alert)
        db.session.flush()
        return alert

    return ledger_transaction(_op, keys=[("stock_alert", int(alert_id))])


def acknowledge_alert(alert_id: int, *, user_id: int | None = None) -> StockAlert:
    def _apply(alert):
        alert.acknowledged_at = utcnow()
        alert.acknowledged_by_user_id = user_id

    return _move_alert(alert_id, "acknowledged", _apply)


def resolve_alert(alert_id: int) -> StockAlert:
    def _apply(alert):
        alert.resolved_at = utcnow()

    return _move_alert(alert_id, "resolved", _apply)


def list_alerts(
    *,
    status: str | None = None,
    product_id: int | None = None,
    location_id: int | None = None,
    alert_type: str | None = None,
    alert_level: str | None = None,
) -> list[StockAlert]:
    if status and status not in ALERT_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Must be one of: {', '.join(ALERT_STATUSES)}")
    if alert_type and alert_type not in ALERT_TYPES:
        raise ValidationError(f"Invalid alert_type '{alert_type}'. Must be one of: {', '.join(ALERT_TYPES)}")
    if alert_level and alert_level not in ALERT_LEVELS:
        raise ValidationError(f"Invalid alert_level '{alert_level}'. Must be one of: {', '.join(ALERT_LEVELS)}")

    q = db.session.query(StockAlert)
    if status:
        q = q.filter(StockAlert.status == status)
    if product_id is not None:
        q = q.filter(StockAlert.product_id == product_id)
    if location_id is not None:
        q = q.filter(StockAlert.location_id == location_id)
    if alert_type:
        q = q.filter(StockAlert.alert_type == alert_type)
    if alert_level:
        q = q.filter(StockAlert.alert_level == alert_level)
    return q.order_by(StockAlert.id.desc()).all()
