"""
Stock alert tests: signal evaluation, refresh reconciliation, bookkeeping.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from stockledger.errors import InvalidTransitionError, NotFoundError, ValidationError
from stockledger.models import StockAlert, StockItem, StockMove
from stockledger.services import alert_service, inventory_service, location_service
from stockledger.services.alert_service import AlertThresholds, evaluate, evaluate_all

from conftest import PRODUCT_ID, OTHER_PRODUCT_ID, receive


TODAY = date(2030, 1, 15)


def _item(qty, reserved_qty=0, expiry_date=None):
    return SimpleNamespace(qty=qty, reserved_qty=reserved_qty, expiry_date=expiry_date)


class TestEvaluate:
    def test_healthy_stock(self):
        assert evaluate(_item(50), AlertThresholds(low_stock_qty=10)) is None

    def test_zero_available_is_critical(self):
        signal = evaluate(_item(4, reserved_qty=4), AlertThresholds(low_stock_qty=10))

        assert signal.alert_type == "zero_stock"
        assert signal.alert_level == "critical"

    @pytest.mark.parametrize("available,level", [(5, "high"), (3, "high"), (6, "medium"), (10, "medium")])
    def test_low_stock_levels(self, available, level):
        signal = evaluate(_item(available), AlertThresholds(low_stock_qty=10))

        assert signal.alert_type == "low_stock"
        assert signal.alert_level == level
        assert signal.threshold_qty == 10

    def test_low_stock_uses_available_not_on_hand(self):
        signal = evaluate(_item(20, reserved_qty=15), AlertThresholds(low_stock_qty=10))

        assert signal.alert_type == "low_stock"
        assert signal.current_qty == 5

    def test_overstock_only_when_configured(self):
        assert evaluate(_item(500), AlertThresholds(low_stock_qty=10)) is None

        signal = evaluate(_item(500), AlertThresholds(low_stock_qty=10, overstock_qty=100))
        assert signal.alert_type == "overstock"
        assert signal.alert_level == "low"

    def test_expiring_soon(self):
        thresholds = AlertThresholds(low_stock_qty=10, expiry_warning_days=30)

        soon = evaluate(_item(50, expiry_date=date(2030, 2, 1)), thresholds, TODAY)
        expired = evaluate(_item(50, expiry_date=date(2030, 1, 1)), thresholds, TODAY)
        far = evaluate(_item(50, expiry_date=date(2031, 1, 1)), thresholds, TODAY)

        assert (soon.alert_type, soon.alert_level) == ("expiring_soon", "medium")
        assert (expired.alert_type, expired.alert_level) == ("expiring_soon", "high")
        assert far is None

    def test_signals_in_priority_order(self):
        signals = evaluate_all(
            _item(5, expiry_date=date(2030, 1, 20)),
            AlertThresholds(low_stock_qty=10, expiry_warning_days=30),
            TODAY,
        )

        assert [s.alert_type for s in signals] == ["low_stock", "expiring_soon"]


class TestRefresh:
    def test_refresh_opens_alerts_once(self, db_session, location):
        receive(PRODUCT_ID, location.id, 5)

        first = alert_service.refresh_alerts()
        second = alert_service.refresh_alerts()

        assert [(a.alert_type, a.alert_level) for a in first["created"]] == [("low_stock", "high")]
        assert second["created"] == []
        assert db_session.query(StockAlert).count() == 1

    def test_refresh_resolves_cleared_conditions(self, db_session, location):
        receive(PRODUCT_ID, location.id, 5)
        alert_service.refresh_alerts()

        receive(PRODUCT_ID, location.id, 50)
        result = alert_service.refresh_alerts()

        assert [a.alert_type for a in result["resolved"]] == ["low_stock"]
        assert result["resolved"][0].resolved_at is not None
        assert alert_service.list_alerts(status="active") == []

    def test_refresh_updates_level_of_open_alert(self, db_session, location):
        receive(PRODUCT_ID, location.id, 8)
        alert_service.refresh_alerts()

        inventory_service.adjust_stock(product_id=PRODUCT_ID, location_id=location.id, qty_delta=-4)
        result = alert_service.refresh_alerts()

        alert = alert_service.list_alerts(product_id=PRODUCT_ID)[0]
        assert result["created"] == []
        assert (alert.alert_level, alert.current_qty) == ("high", 4)

    def test_refresh_never_writes_stock(self, db_session, location):
        receive(PRODUCT_ID, location.id, 5)
        moves_before = db_session.query(StockMove).count()
        qty_before = db_session.query(StockItem).one().qty

        alert_service.refresh_alerts()

        assert db_session.query(StockMove).count() == moves_before
        assert db_session.query(StockItem).one().qty == qty_before

    def test_refresh_by_product_and_expiry(self, db_session, location):
        receive(PRODUCT_ID, location.id, 50, lot_number="L1", expiry_date="2030-01-25")
        receive(OTHER_PRODUCT_ID, location.id, 2)

        result = alert_service.refresh_alerts(PRODUCT_ID, today=TODAY)

        assert [(a.alert_type, a.lot_number) for a in result["created"]] == [("expiring_soon", "L1")]

    def test_inactive_locations_are_skipped(self, db_session, location):
        receive(PRODUCT_ID, location.id, 5)
        location_service.deactivate_location(location.id)

        assert alert_service.refresh_alerts()["created"] == []

    def test_location_threshold_overrides_default(self, db_session, location):
        receive(PRODUCT_ID, location.id, 5)
        alert_service.set_threshold(product_id=PRODUCT_ID, location_id=location.id, low_stock_qty=2)

        assert alert_service.refresh_alerts()["created"] == []

    def test_product_threshold_applies_everywhere(self, db_session, location):
        receive(PRODUCT_ID, location.id, 15)
        alert_service.set_threshold(product_id=PRODUCT_ID, low_stock_qty=20)

        created = alert_service.refresh_alerts()["created"]
        assert [(a.alert_type, a.threshold_qty) for a in created] == [("low_stock", 20)]


class TestBookkeeping:
    def _open_alert(self, location):
        receive(PRODUCT_ID, location.id, 5)
        return alert_service.refresh_alerts()["created"][0]

    def test_acknowledge_then_resolve(self, db_session, location):
        alert = self._open_alert(location)

        acked = alert_service.acknowledge_alert(alert.id, user_id=9)
        assert acked.status == "acknowledged"
        assert acked.acknowledged_by_user_id == 9

        resolved = alert_service.resolve_alert(alert.id)
        assert resolved.status == "resolved"

    def test_resolved_is_terminal(self, db_session, location):
        alert = self._open_alert(location)
        alert_service.resolve_alert(alert.id)

        with pytest.raises(InvalidTransitionError):
            alert_service.acknowledge_alert(alert.id)
        with pytest.raises(InvalidTransitionError):
            alert_service.resolve_alert(alert.id)

    def test_acknowledged_alert_is_not_duplicated(self, db_session, location):
        alert = self._open_alert(location)
        alert_service.acknowledge_alert(alert.id)

        assert alert_service.refresh_alerts()["created"] == []

    def test_missing_alert(self, db_session):
        with pytest.raises(NotFoundError):
            alert_service.acknowledge_alert(123456)

    def test_list_filters_are_validated(self, db_session):
        with pytest.raises(ValidationError):
            alert_service.list_alerts(status="snoozed")
        with pytest.raises(ValidationError):
            alert_service.list_alerts(alert_type="on_fire")


class TestThresholds:
    def test_overstock_must_exceed_low(self, db_session):
        with pytest.raises(ValidationError):
            alert_service.set_threshold(product_id=PRODUCT_ID, low_stock_qty=10, overstock_qty=10)

    def test_negative_values_rejected(self, db_session):
        with pytest.raises(ValidationError):
            alert_service.set_threshold(product_id=PRODUCT_ID, low_stock_qty=-1)

    def test_set_threshold_upserts(self, db_session, location):
        alert_service.set_threshold(product_id=PRODUCT_ID, location_id=location.id, low_stock_qty=3)
        alert_service.set_threshold(product_id=PRODUCT_ID, location_id=location.id, low_stock_qty=4)

        thresholds = alert_service.resolve_thresholds(PRODUCT_ID, location.id)
        assert thresholds.low_stock_qty == 4
        assert thresholds.expiry_warning_days == 30

    def test_unknown_location(self, db_session):
        with pytest.raises(NotFoundError):
            alert_service.set_threshold(product_id=PRODUCT_ID, location_id=999999, low_stock_qty=3)
