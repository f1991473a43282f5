"""Tests for the in-memory record store and list queries."""

from __future__ import annotations

import asyncio

import pytest

from crm_views.errors import StoreUnavailable
from crm_views.record_store import InMemoryRecordStore, ListQuery, SortOrder, apply_query


@pytest.mark.asyncio
async def test_create_assigns_monotonic_ids_never_reused() -> None:
    store = InMemoryRecordStore()
    await store.open()
    first = await store.create("Contact", {"name": "Ada"})
    second = await store.create("Contact", {"name": "Grace"})
    assert await store.delete("Contact", second["id"])
    third = await store.create("Contact", {"name": "Alan"})
    assert (first["id"], second["id"], third["id"]) == (1, 2, 3)
    assert first["created_at"] == first["updated_at"]


@pytest.mark.asyncio
async def test_update_merges_fields_and_refreshes_timestamp() -> None:
    store = InMemoryRecordStore()
    await store.open()
    created = await store.create("Deal", {"title": "Pilot", "stage": "Lead"})
    await asyncio.sleep(0.001)
    updated = await store.update("Deal", created["id"], {"stage": "Won"})
    assert updated["title"] == "Pilot"
    assert updated["stage"] == "Won"
    assert updated["created_at"] == created["created_at"]
    assert updated["updated_at"] > created["updated_at"]


@pytest.mark.asyncio
async def test_missing_records() -> None:
    store = InMemoryRecordStore()
    await store.open()
    assert await store.get("Task", 1) is None
    assert await store.update("Task", 1, {"title": "x"}) is None
    assert await store.delete("Task", 1) is False


@pytest.mark.asyncio
async def test_callers_receive_copies() -> None:
    store = InMemoryRecordStore()
    await store.open()
    created = await store.create("Contact", {"name": "Ada", "tags": ["vip"]})
    created["name"] = "Mutated"
    listed = await store.list("Contact")
    listed.records[0]["tags"].append("leaked")
    fresh = await store.get("Contact", created["id"])
    assert fresh["name"] == "Ada"
    assert fresh["tags"] == ["vip"]


@pytest.mark.asyncio
async def test_closed_store_is_unavailable() -> None:
    store = InMemoryRecordStore()
    with pytest.raises(StoreUnavailable):
        await store.list("Contact")
    async with store:
        await store.create("Contact", {"name": "Ada"})
    assert not store.is_open
    with pytest.raises(StoreUnavailable):
        await store.get("Contact", 1)


@pytest.mark.asyncio
async def test_reopened_store_starts_empty() -> None:
    store = InMemoryRecordStore()
    async with store:
        await store.create("Contact", {"name": "Ada"})
    async with store:
        result = await store.list("Contact")
    assert result.total == 0


@pytest.mark.asyncio
async def test_unsupported_entity() -> None:
    store = InMemoryRecordStore()
    await store.open()
    with pytest.raises(ValueError):
        await store.list("Invoice")


@pytest.mark.asyncio
async def test_failure_injection_is_consumed() -> None:
    store = InMemoryRecordStore()
    await store.open()
    store.fail_next("Contact")
    with pytest.raises(StoreUnavailable):
        await store.list("Contact")
    assert (await store.list("Contact")).total == 0
    store.set_offline()
    with pytest.raises(StoreUnavailable):
        await store.list("Deal")
    assert store.calls[-1] == ("Deal", "list")


def test_seed_keeps_ids_and_advances_counter() -> None:
    store = InMemoryRecordStore()
    asyncio.run(store.open())
    store.seed({"Contact": [{"Id": 5, "name": "Ada"}, {"id": 2, "name": "Grace"}]})
    created = asyncio.run(store.create("Contact", {"name": "Alan"}))
    assert created["id"] == 6


class TestApplyQuery:
    ROWS = [
        {"id": 1, "name": "Beta quote", "status": "Sent", "contact_id": 1},
        {"id": 2, "name": "alpha quote", "status": "Draft", "contact_id": 2},
        {"id": 3, "name": "Gamma", "status": None, "contact_id": 1},
    ]

    def test_where_search_sort_page(self) -> None:
        result = apply_query(
            self.ROWS,
            ListQuery(search="QUOTE", sort_by="name", sort_order=SortOrder.ASC, page=0, limit=1),
        )
        assert result.total == 2
        assert [row["id"] for row in result.records] == [2]

    def test_where_clause(self) -> None:
        result = apply_query(self.ROWS, ListQuery(where={"contact_id": 1}))
        assert [row["id"] for row in result.records] == [1, 3]

    def test_none_sorts_last(self) -> None:
        result = apply_query(self.ROWS, ListQuery(sort_by="status"))
        assert [row["id"] for row in result.records] == [2, 1, 3]

    def test_page_past_end_keeps_total(self) -> None:
        result = apply_query(self.ROWS, ListQuery(page=5, limit=2))
        assert result.records == []
        assert result.total == 3

    @pytest.mark.parametrize("kwargs", [{"page": -1}, {"limit": 0}])
    def test_invalid_paging(self, kwargs) -> None:
        with pytest.raises(ValueError):
            ListQuery(**kwargs)
