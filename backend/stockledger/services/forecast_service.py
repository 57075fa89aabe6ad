# Overview: Service-layer operations for demand forecasting; turns an injected oracle's output into reorder suggestions.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Location, StockItem
from .inventory_service import get_channel_availability
from .purchase_order_service import create_purchase_order
"""
Forecasting Boundary (authoritative)

- Demand forecasting is an external strategy (ForecastOracle). Its output is
  advisory: it pre-populates reorder suggestions and draft purchase orders,
  and never reaches the stock ledger directly.
- Oracle output is sanitised before use: negative or non-finite quantities
  become 0, confidence is clamped to [0, 1].
- NullForecastOracle (zero demand, zero confidence) is the default, so the
  ledger and workflows behave identically with or without a forecaster.
"""


@dataclass(frozen=True)
class ForecastResult:
    predicted_demand: float
    recommended_order_qty: float
    confidence: float


class ForecastOracle(Protocol):
    def forecast(self, product_id: int, period_days: int) -> ForecastResult:
        ...


class NullForecastOracle:
    """Predicts nothing; every suggestion comes out as zero."""

    def forecast(self, product_id: int, period_days: int) -> ForecastResult:
        return ForecastResult(predicted_demand=0, recommended_order_qty=0, confidence=0.0)


@dataclass(frozen=True)
class ReorderSuggestion:
    product_id: int
    period_days: int
    available_qty: int
    predicted_demand: int
    recommended_order_qty: int
    confidence: float

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "period_days": self.period_days,
            "available_qty": self.available_qty,
            "predicted_demand": self.predicted_demand,
            "recommended_order_qty": self.recommended_order_qty,
            "confidence": self.confidence,
        }


def get_forecast_oracle(oracle: ForecastOracle | None = None) -> ForecastOracle:
    if oracle is not None:
        return oracle
    configured = current_app.config.get("FORECAST_ORACLE")
    return configured if configured is not None else NullForecastOracle()


def _non_negative_int(value) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number <= 0:
        return 0
    return int(math.ceil(number))


def _clamp_confidence(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return min(1.0, max(0.0, number))


def _available_in_warehouse(product_ids: list[int], warehouse_id: int) -> dict[int, int]:
    result = {pid: 0 for pid in product_ids}
    rows = (
        db.session.query(StockItem)
        .join(Location, Location.id == StockItem.location_id)
        .filter(
            StockItem.product_id.in_(product_ids),
            Location.warehouse_id == warehouse_id,
            Location.is_active.is_(True),
        )
        .all()
    )
    for item in rows:
        result[item.product_id] += item.available_qty
    return result


def suggest_reorders(
    product_ids,
    period_days: int = 30,
    *,
    warehouse_id: int | None = None,
    oracle: ForecastOracle | None = None,
) -> list[ReorderSuggestion]:
    """
    One reorder suggestion per product, combining ledger availability with the oracle.

    A failing oracle call yields a zero suggestion for that product and is logged;
    it never aborts the batch.
    """
    ids = [int(pid) for pid in product_ids]
    if isinstance(period_days, bool) or not isinstance(period_days, int) or period_days <= 0:
        raise ValidationError("period_days must be a positive integer")

    strategy = get_forecast_oracle(oracle)
    if warehouse_id is None:
        available = get_channel_availability(ids)
    else:
        available = _available_in_warehouse(ids, warehouse_id)

    suggestions = []
    for pid in ids:
        try:
            result = strategy.forecast(pid, period_days)
        except Exception:
            current_app.logger.exception("Forecast oracle failed for product %s", pid)
            result = None

        if result is None:
            demand, recommended, confidence = 0, 0, 0.0
        else:
            demand = _non_negative_int(getattr(result, "predicted_demand", 0))
            recommended = _non_negative_int(getattr(result, "recommended_order_qty", 0))
            confidence = _clamp_confidence(getattr(result, "confidence", 0))

        suggestions.append(
            ReorderSuggestion(
                product_id=pid,
                period_days=period_days,
                available_qty=available.get(pid, 0),
                predicted_demand=demand,
                recommended_order_qty=recommended,
                confidence=confidence,
            )
        )
    return suggestions


def draft_purchase_order_from_suggestions(
    suggestions,
    *,
    org_id: int,
    supplier_name: str,
    supplier_id: int | None = None,
    warehouse_id: int | None = None,
    location_id: int | None = None,
    unit_costs: dict | None = None,
    created_by_user_id: int | None = None,
):
    """
    Draft a purchase order whose lines are the positive suggestions.

    Returns None when nothing needs ordering. The draft still goes through the
    normal send/confirm/receive workflow before any stock moves.
    """
    unit_costs = unit_costs or {}
    lines = [
        {
            "product_id": s.product_id,
            "qty_ordered": s.recommended_order_qty,
            "unit_cost_cents": int(unit_costs.get(s.product_id, 0)),
            "location_id": location_id,
        }
        for s in suggestions
        if s.recommended_order_qty > 0
    ]
    if not lines:
        return None
    return create_purchase_order(
        org_id=org_id,
        supplier_name=supplier_name,
        supplier_id=supplier_id,
        warehouse_id=warehouse_id,
        notes="Drafted from reorder suggestions",
        created_by_user_id=created_by_user_id,
        lines=lines,
    )
