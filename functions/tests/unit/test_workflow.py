"""
Unit Tests for the Workflow State Machine

Tests:
- Sequence order and terminal behaviour
- Shop branch detection
- Bulk advance with and without a forced shop
- Manual status override
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from chromaflow.models import ShopLocation, WorkflowStatus
from chromaflow.workflow import (
    INITIAL_STATUS,
    TERMINAL_STATUS,
    WORKFLOW_SEQUENCE,
    advance_items,
    get_next_status,
    needs_shop_assignment,
    set_status_items,
    status_index,
)

NOW = "2026-03-01T12:00:00.000Z"


class TestSequence:
    """Tests for the fixed stage order."""

    @pytest.mark.unit
    def test_sequence_bounds(self):
        assert len(WORKFLOW_SEQUENCE) == 8
        assert INITIAL_STATUS == WorkflowStatus.UNRECEIVED
        assert TERMINAL_STATUS == WorkflowStatus.SHIPPED

    @pytest.mark.unit
    def test_seven_steps_reach_shipped(self):
        status = WorkflowStatus.UNRECEIVED
        for _ in range(7):
            status = get_next_status(status)
        assert status == WorkflowStatus.SHIPPED

    @pytest.mark.unit
    def test_shipped_is_terminal(self):
        assert get_next_status(WorkflowStatus.SHIPPED) == WorkflowStatus.SHIPPED

    @pytest.mark.unit
    def test_unknown_status_returned_unchanged(self):
        assert get_next_status("Lost") == "Lost"

    @pytest.mark.unit
    def test_status_index(self):
        assert status_index(WorkflowStatus.UNRECEIVED) == 0
        assert status_index(WorkflowStatus.SHIPPED) == 7
        assert status_index("Lost") == 8


class TestNeedsShopAssignment:
    """Tests for branch-point detection."""

    @pytest.mark.unit
    @pytest.mark.parametrize("status", [WorkflowStatus.BLASTING, WorkflowStatus.SHOP_SORTING])
    def test_branch_statuses_need_shop(self, factory, status):
        items = [factory.create_item("1", status=status)]
        assert needs_shop_assignment(items, {"1"}) is True

    @pytest.mark.unit
    def test_unselected_branch_item_ignored(self, factory):
        items = [
            factory.create_item("1", status=WorkflowStatus.BLASTING),
            factory.create_item("2", status=WorkflowStatus.RECEIVED),
        ]
        assert needs_shop_assignment(items, {"2"}) is False

    @pytest.mark.unit
    def test_empty_selection(self, factory):
        items = [factory.create_item("1", status=WorkflowStatus.BLASTING)]
        assert needs_shop_assignment(items, set()) is False


class TestAdvanceItems:
    """Tests for bulk advance."""

    @pytest.mark.unit
    def test_blasting_with_forced_shop_goes_to_painting(self, factory):
        items = [factory.create_item("1", status=WorkflowStatus.BLASTING)]
        result = advance_items(items, {"1"}, forced_shop=ShopLocation.SHOP_B, now=NOW)
        assert result[0].status == WorkflowStatus.PAINTING
        assert result[0].shop == ShopLocation.SHOP_B
        assert result[0].updated_at == NOW

    @pytest.mark.unit
    def test_shop_sorting_with_forced_shop_goes_to_painting(self, factory):
        items = [factory.create_item("1", status=WorkflowStatus.SHOP_SORTING)]
        result = advance_items(items, {"1"}, forced_shop=ShopLocation.SHOP_E, now=NOW)
        assert result[0].status == WorkflowStatus.PAINTING
        assert result[0].shop == ShopLocation.SHOP_E

    @pytest.mark.unit
    def test_blasting_without_shop_goes_to_shop_sorting(self, factory):
        items = [factory.create_item("1", status=WorkflowStatus.BLASTING, shop=ShopLocation.SHOP_A)]
        result = advance_items(items, {"1"}, now=NOW)
        assert result[0].status == WorkflowStatus.SHOP_SORTING
        assert result[0].shop == ShopLocation.SHOP_A

    @pytest.mark.unit
    def test_forced_shop_ignored_for_other_stages(self, factory):
        items = [factory.create_item("1", status=WorkflowStatus.PAINTING)]
        result = advance_items(items, {"1"}, forced_shop=ShopLocation.SHOP_C, now=NOW)
        assert result[0].status == WorkflowStatus.PACKING
        assert result[0].shop == ShopLocation.NONE

    @pytest.mark.unit
    def test_unselected_items_untouched(self, factory):
        items = [factory.create_item("1"), factory.create_item("2")]
        result = advance_items(items, {"1"}, now=NOW)
        assert result[1] is items[1]
        assert result[0].status == WorkflowStatus.RECEIVED
        assert items[0].status == WorkflowStatus.UNRECEIVED

    @pytest.mark.unit
    def test_shipped_stays_shipped(self, factory):
        items = [factory.create_item("1", status=WorkflowStatus.SHIPPED)]
        result = advance_items(items, {"1"}, now=NOW)
        assert result[0].status == WorkflowStatus.SHIPPED
        assert result[0].updated_at == NOW

    @pytest.mark.unit
    def test_empty_selection_is_noop(self, factory):
        items = [factory.create_item("1")]
        result = advance_items(items, set())
        assert result == items
        assert result[0] is items[0]

    @pytest.mark.unit
    def test_unknown_ids_ignored(self, factory):
        items = [factory.create_item("1")]
        result = advance_items(items, {"999"})
        assert result[0] is items[0]

    @pytest.mark.unit
    def test_order_preserved(self, factory):
        items = [factory.create_item(str(i)) for i in range(5)]
        result = advance_items(items, {"1", "3"}, now=NOW)
        assert [i.id for i in result] == ["0", "1", "2", "3", "4"]


class TestSetStatusItems:
    """Tests for the manual override."""

    @pytest.mark.unit
    def test_any_jump_allowed(self, factory):
        items = [factory.create_item("1", status=WorkflowStatus.SHIPPED)]
        result = set_status_items(items, {"1"}, WorkflowStatus.UNRECEIVED, now=NOW)
        assert result[0].status == WorkflowStatus.UNRECEIVED
        assert result[0].updated_at == NOW

    @pytest.mark.unit
    def test_shop_kept_when_not_given(self, factory):
        items = [factory.create_item("1", shop=ShopLocation.SHOP_D)]
        result = set_status_items(items, {"1"}, WorkflowStatus.PACKING)
        assert result[0].shop == ShopLocation.SHOP_D

    @pytest.mark.unit
    def test_shop_replaced_when_given(self, factory):
        items = [factory.create_item("1", shop=ShopLocation.SHOP_D)]
        result = set_status_items(items, {"1"}, WorkflowStatus.SHOP_SORTING, shop=ShopLocation.SHOP_A)
        assert result[0].status == WorkflowStatus.SHOP_SORTING
        assert result[0].shop == ShopLocation.SHOP_A

    @pytest.mark.unit
    def test_unselected_untouched(self, factory):
        items = [factory.create_item("1"), factory.create_item("2")]
        result = set_status_items(items, {"2"}, WorkflowStatus.PACKING)
        assert result[0] is items[0]
        assert result[1].status == WorkflowStatus.PACKING
