"""
Inventory adjustment tests: nothing posts until approval.
"""

import pytest

from stockledger.errors import InsufficientStockError, InvalidTransitionError, ValidationError
from stockledger.models import StockMove
from stockledger.services import adjustment_service, inventory_service

from conftest import ORG_ID, PRODUCT_ID, OTHER_PRODUCT_ID


def _adjustment(location_id, *deltas, reason="adjustment"):
    return adjustment_service.create_adjustment(
        org_id=ORG_ID,
        reason=reason,
        lines=[
            {"product_id": PRODUCT_ID, "location_id": location_id, "qty_adjustment": delta}
            for delta in deltas
        ],
    )


class TestAdjustments:
    def test_pending_adjustment_posts_nothing(self, db_session, stocked_location):
        adj = _adjustment(stocked_location.id, -2)

        assert adj.adjustment_number == "ADJ-0001"
        assert adj.status == "pending"
        assert inventory_service.get_stock_item(PRODUCT_ID, stocked_location.id).qty == 10

    def test_approve_posts_moves_and_captures_before_after(self, db_session, stocked_location):
        adj = _adjustment(stocked_location.id, -2, 5)

        result = adjustment_service.approve_adjustment(adj.id, approved_by_user_id=7)

        lines = result.document.lines
        assert result.status == "approved"
        assert len(result.moves) == 2
        assert (lines[0].qty_before, lines[0].qty_after) == (10, 8)
        assert (lines[1].qty_before, lines[1].qty_after) == (8, 13)
        assert lines[0].stock_move_id == result.moves[0].id
        assert result.document.approved_by_user_id == 7
        assert inventory_service.get_stock_item(PRODUCT_ID, stocked_location.id).qty == 13

    def test_approval_is_all_or_nothing(self, db_session, stocked_location):
        adj = _adjustment(stocked_location.id, -3, -8)

        with pytest.raises(InsufficientStockError):
            adjustment_service.approve_adjustment(adj.id)

        assert adjustment_service.get_adjustment(adj.id).status == "pending"
        assert inventory_service.get_stock_item(PRODUCT_ID, stocked_location.id).qty == 10
        assert db_session.query(StockMove).filter_by(reason="adjustment").count() == 0

    def test_reject_posts_nothing(self, db_session, stocked_location):
        adj = _adjustment(stocked_location.id, -2)

        result = adjustment_service.reject_adjustment(adj.id, rejected_by_user_id=3, reason="Miscounted")

        assert result.status == "rejected"
        assert result.document.rejection_reason == "Miscounted"
        assert inventory_service.get_stock_item(PRODUCT_ID, stocked_location.id).qty == 10

    def test_approved_adjustment_is_final(self, db_session, stocked_location):
        adj = _adjustment(stocked_location.id, -2)
        adjustment_service.approve_adjustment(adj.id)

        with pytest.raises(InvalidTransitionError):
            adjustment_service.reject_adjustment(adj.id)
        with pytest.raises(InvalidTransitionError):
            adjustment_service.add_adjustment_line(
                adj.id, product_id=OTHER_PRODUCT_ID, location_id=stocked_location.id, qty_adjustment=1
            )

    def test_damage_lines_must_remove_stock(self, db_session, stocked_location):
        with pytest.raises(ValidationError):
            _adjustment(stocked_location.id, 2, reason="damage")

        adj = _adjustment(stocked_location.id, -2, reason="damage")
        result = adjustment_service.approve_adjustment(adj.id)
        assert result.moves[0].reason == "damage"

    def test_return_lines_add_stock_with_cost(self, db_session, stocked_location):
        adj = adjustment_service.create_adjustment(
            org_id=ORG_ID,
            reason="return",
            lines=[
                {
                    "product_id": PRODUCT_ID,
                    "location_id": stocked_location.id,
                    "qty_adjustment": 10,
                    "unit_cost_cents": 300,
                }
            ],
        )

        adjustment_service.approve_adjustment(adj.id)

        item = inventory_service.get_stock_item(PRODUCT_ID, stocked_location.id)
        assert item.qty == 20
        assert item.cost_per_unit_cents == 400

    def test_cost_on_removing_line_is_rejected(self, db_session, stocked_location):
        with pytest.raises(ValidationError):
            adjustment_service.create_adjustment(
                org_id=ORG_ID,
                lines=[
                    {
                        "product_id": PRODUCT_ID,
                        "location_id": stocked_location.id,
                        "qty_adjustment": -1,
                        "unit_cost_cents": 100,
                    }
                ],
            )

    def test_approve_requires_lines(self, db_session, stocked_location):
        adj = adjustment_service.create_adjustment(org_id=ORG_ID)

        with pytest.raises(ValidationError):
            adjustment_service.approve_adjustment(adj.id)

    def test_list_by_status(self, db_session, stocked_location):
        first = _adjustment(stocked_location.id, -1)
        second = _adjustment(stocked_location.id, 1)
        adjustment_service.approve_adjustment(second.id)

        pending = adjustment_service.list_adjustments(org_id=ORG_ID, status="pending")
        assert [a.id for a in pending] == [first.id]

        with pytest.raises(ValidationError):
            adjustment_service.list_adjustments(status="bogus")
