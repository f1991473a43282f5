"""Tests for the composable filter pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import List

import pytest

from crm_views.crm_models import Activity, Task
from crm_views.filters import (
    CategoryEquals,
    CompletionFilter,
    DateWindowFilter,
    FilterPipeline,
    PredicateKind,
    TextSearch,
    apply_filters,
    read_field,
)


@pytest.fixture
def activities() -> List[Activity]:
    """A handful of activities spread across this week and last."""
    rows = [
        (1, "call", "Discovery call with Ada", datetime(2024, 6, 15, 8, 30)),
        (2, "email", "Sent license terms", datetime(2024, 6, 14, 16, 0)),
        (3, "meeting", "Audit kickoff", datetime(2024, 6, 11, 10, 0)),
        (4, "call", "Follow-up CALL", datetime(2024, 6, 5, 12, 0)),
        (5, "note", "Left voicemail", datetime(2024, 6, 15, 9, 45)),
    ]
    return [
        Activity(id=record_id, type=kind, contact_id=1, description=text, date=when)
        for record_id, kind, text, when in rows
    ]


@pytest.fixture
def tasks() -> List[Task]:
    return [
        Task(id=1, title="Send proposal", due_date=datetime(2024, 6, 15, 9, 0), priority="high"),
        Task(id=2, title="Follow up", due_date=datetime(2024, 6, 16, 11, 0)),
        Task(id=3, title="Archive", due_date=datetime(2024, 6, 10, 12, 0), priority="low", completed=True),
        Task(id=4, title="Prepare report", due_date=datetime(2024, 6, 12, 17, 0), priority="high"),
    ]


def _ids(records) -> List[int]:
    return [record.id for record in records]


def test_text_search_is_case_insensitive_substring(activities: List[Activity]) -> None:
    result = apply_filters(activities, [TextSearch("call", ["description"])])
    assert _ids(result) == [1, 4]


def test_empty_search_is_passthrough(activities: List[Activity]) -> None:
    predicate = TextSearch("   ", ["description"])
    assert predicate.is_passthrough
    assert apply_filters(activities, [predicate]) == activities


def test_search_over_derived_field(activities: List[Activity]) -> None:
    names = {1: "Ada Lovelace"}
    predicate = TextSearch("lovelace", [lambda activity: names.get(activity.contact_id)])
    assert len(apply_filters(activities, [predicate])) == len(activities)


def test_category_all_disables_check(activities: List[Activity]) -> None:
    assert apply_filters(activities, [CategoryEquals("type", "all")]) == activities
    assert _ids(apply_filters(activities, [CategoryEquals("type", "call")])) == [1, 4]


def test_predicates_compose_by_and(activities: List[Activity], now: datetime) -> None:
    result = apply_filters(
        activities,
        [
            DateWindowFilter("date", "today", now),
            CategoryEquals("type", "call"),
            TextSearch("discovery", ["description"]),
        ],
    )
    assert _ids(result) == [1]


def test_pipeline_orders_predicates_search_categorical_date(now: datetime) -> None:
    pipeline = FilterPipeline(
        [
            DateWindowFilter("date", "today", now),
            CategoryEquals("type", "call"),
            TextSearch("x", ["description"]),
        ]
    )
    assert [predicate.kind for predicate in pipeline.predicates] == [
        PredicateKind.SEARCH,
        PredicateKind.CATEGORICAL,
        PredicateKind.DATE,
    ]


@pytest.mark.parametrize(
    "predicates",
    [
        [TextSearch("a", ["description"])],
        [CategoryEquals("type", "email"), TextSearch("terms", ["description"])],
        [DateWindowFilter("date", "thisWeek", datetime(2024, 6, 15, 10, 0)), CategoryEquals("type", "call")],
        [DateWindowFilter("date", "lastWeek", datetime(2024, 6, 15, 10, 0))],
    ],
)
def test_filter_is_subset_and_idempotent(activities: List[Activity], predicates) -> None:
    once = apply_filters(activities, predicates)
    twice = apply_filters(once, predicates)
    assert all(record in activities for record in once)
    assert twice == once


class TestCompletionFilter:
    def test_completed(self, tasks: List[Task], now: datetime) -> None:
        assert _ids(apply_filters(tasks, [CompletionFilter("completed", now)])) == [3]

    def test_pending(self, tasks: List[Task], now: datetime) -> None:
        assert _ids(apply_filters(tasks, [CompletionFilter("pending", now)])) == [1, 2, 4]

    def test_overdue_requires_past_due_and_not_completed(self, tasks: List[Task], now: datetime) -> None:
        assert _ids(apply_filters(tasks, [CompletionFilter("overdue", now)])) == [1, 4]

    def test_unknown_status_is_passthrough(self, tasks: List[Task], now: datetime) -> None:
        assert CompletionFilter("someday", now).is_passthrough

    def test_combined_with_priority(self, tasks: List[Task], now: datetime) -> None:
        result = apply_filters(tasks, [CategoryEquals("priority", "high"), CompletionFilter("overdue", now)])
        assert _ids(result) == [1, 4]


def test_matches_single_record(activities: List[Activity], now: datetime) -> None:
    pipeline = FilterPipeline([CategoryEquals("type", "note"), DateWindowFilter("date", "today", now)])
    assert pipeline.matches(activities[4])
    assert not pipeline.matches(activities[0])


def test_read_field_supports_mappings_and_callables() -> None:
    assert read_field({"name": "Ada"}, "name") == "Ada"
    assert read_field({"name": "Ada"}, lambda record: record["name"].upper()) == "ADA"
    assert read_field(object(), "missing") is None
