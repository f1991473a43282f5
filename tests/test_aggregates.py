"""Tests for counts, sums and ordered grouping."""

from __future__ import annotations

import pytest

from crm_views.aggregates import GroupSummary, count, count_by, group_by, sum_of, summarize_groups
from crm_views.crm_models import DEAL_STAGE_ORDER, Deal, DealStage


def test_sum_of_empty_is_zero() -> None:
    assert sum_of([], "value") == 0


def test_sum_of_values() -> None:
    assert sum_of([{"value": 100}, {"value": 250}], "value") == 350


def test_sum_skips_missing_values() -> None:
    assert sum_of([{"value": 100}, {"value": None}, {}], "value") == 100


def test_count_with_and_without_predicate() -> None:
    values = [1, 2, 3, 4]
    assert count(values) == 4
    assert count(values, lambda value: value % 2 == 0) == 2
    assert count(iter(values)) == 4


class TestGroupBy:
    def test_all_keys_present_for_empty_input(self) -> None:
        groups = group_by([], lambda deal: deal.stage, DEAL_STAGE_ORDER)
        assert list(groups) == list(DEAL_STAGE_ORDER)
        assert all(members == [] for members in groups.values())

    def test_order_follows_keys_not_arrival(self) -> None:
        deals = [
            Deal(id=1, title="A", stage="Won"),
            Deal(id=2, title="B", stage="Lead"),
            Deal(id=3, title="C", stage="Won"),
        ]
        groups = group_by(deals, lambda deal: deal.stage, DEAL_STAGE_ORDER)
        assert len(groups) == len(DEAL_STAGE_ORDER)
        assert list(groups)[0] == "Lead"
        assert [deal.id for deal in groups["Won"]] == [1, 3]
        assert groups["Negotiation"] == []

    def test_enum_keys_use_their_value(self) -> None:
        groups = group_by([DealStage.WON], lambda stage: stage, DEAL_STAGE_ORDER)
        assert groups["Won"] == [DealStage.WON]

    def test_unlisted_keys_dropped_without_fallback(self) -> None:
        groups = group_by([Deal(id=1, title="A", stage="Parked")], lambda deal: deal.stage, DEAL_STAGE_ORDER)
        assert sum(len(members) for members in groups.values()) == 0

    def test_unlisted_keys_go_to_fallback(self) -> None:
        groups = group_by(
            [Deal(id=1, title="A", stage="Parked")],
            lambda deal: deal.stage,
            DEAL_STAGE_ORDER,
            fallback_key="Lead",
        )
        assert [deal.id for deal in groups["Lead"]] == [1]

    def test_fallback_must_be_a_listed_key(self) -> None:
        with pytest.raises(ValueError):
            group_by([], lambda record: record, ["a", "b"], fallback_key="c")


def test_summarize_groups_keeps_group_order() -> None:
    deals = [
        Deal(id=1, title="A", stage="Won", value=100),
        Deal(id=2, title="B", stage="Won", value=250),
        Deal(id=3, title="C", stage="Lead", value=40),
    ]
    summary = summarize_groups(group_by(deals, lambda deal: deal.stage, DEAL_STAGE_ORDER), "value")
    assert summary[0] == GroupSummary("Lead", 1, 40)
    assert summary[DEAL_STAGE_ORDER.index("Won")] == GroupSummary("Won", 2, 350)
    assert summary[DEAL_STAGE_ORDER.index("Lost")] == GroupSummary("Lost", 0, 0)


def test_count_by() -> None:
    counts = count_by(["call", "email", "call"], lambda kind: kind, ["call", "email", "meeting"])
    assert counts == {"call": 2, "email": 1, "meeting": 0}
