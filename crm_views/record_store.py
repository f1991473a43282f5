"""Record store boundary and the in-memory implementation.

A record store offers list/get/create/update/delete per entity type and owns
its own state. Records cross the boundary as plain dictionaries in snake_case;
repositories turn them into models. The in-memory store is the session-scoped
replacement for module-level mock arrays: state is created by ``open()``,
dropped by ``close()``, and callers only ever receive copies.
"""

from __future__ import annotations

import abc
import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Tuple

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

ENTITY_TYPES: Tuple[str, ...] = ("Contact", "Deal", "Task", "Activity", "Quote")

Record = Dict[str, Any]


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class ListQuery:
    """Optional server-side filtering, sorting and paging for ``list``."""

    search: Optional[str] = None
    search_field: str = "name"
    where: Mapping[str, Any] = field(default_factory=dict)
    sort_by: Optional[str] = None
    sort_order: SortOrder = SortOrder.ASC
    page: Optional[int] = None
    limit: Optional[int] = None

    def __post_init__(self) -> None:
        if self.page is not None and self.page < 0:
            raise ValueError("page must be zero or positive.")
        if self.limit is not None and self.limit <= 0:
            raise ValueError("limit must be positive.")

    @property
    def offset(self) -> int:
        if self.page is None or self.limit is None:
            return 0
        return self.page * self.limit


@dataclass(frozen=True)
class ListResult:
    records: List[Record]
    total: int


class RecordStore(abc.ABC):
    """Asynchronous CRUD surface per entity type."""

    async def open(self) -> None:
        """Acquire resources. Stores without resources need not override."""

    async def close(self) -> None:
        """Release resources."""

    async def __aenter__(self) -> "RecordStore":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @abc.abstractmethod
    async def list(self, entity: str, query: Optional[ListQuery] = None) -> ListResult:
        ...

    @abc.abstractmethod
    async def get(self, entity: str, record_id: int) -> Optional[Record]:
        ...

    @abc.abstractmethod
    async def create(self, entity: str, fields: Mapping[str, Any]) -> Record:
        ...

    @abc.abstractmethod
    async def update(self, entity: str, record_id: int, fields: Mapping[str, Any]) -> Optional[Record]:
        ...

    @abc.abstractmethod
    async def delete(self, entity: str, record_id: int) -> bool:
        ...


def _sort_key(value: Any) -> Tuple[bool, Any]:
    if isinstance(value, str):
        return (False, value.lower())
    return (value is None, value if value is not None else 0)


def apply_query(records: Iterable[Record], query: Optional[ListQuery]) -> ListResult:
    """Apply a :class:`ListQuery` to already-fetched records."""
    rows = list(records)
    if query is None:
        return ListResult(records=rows, total=len(rows))
    for key, expected in query.where.items():
        rows = [row for row in rows if row.get(key) == expected]
    needle = (query.search or "").strip().lower()
    if needle:
        rows = [row for row in rows if needle in str(row.get(query.search_field) or "").lower()]
    if query.sort_by:
        rows.sort(
            key=lambda row: _sort_key(row.get(query.sort_by)),
            reverse=query.sort_order == SortOrder.DESC,
        )
    total = len(rows)
    if query.limit is not None:
        rows = rows[query.offset : query.offset + query.limit]
    return ListResult(records=rows, total=total)


class InMemoryRecordStore(RecordStore):
    """Session-scoped store holding records in per-entity dictionaries."""

    def __init__(
        self,
        *,
        entity_types: Iterable[str] = ENTITY_TYPES,
        latency: float = 0.0,
    ) -> None:
        self._entity_types = tuple(entity_types)
        self._latency = latency
        self._delays: Dict[str, float] = {}
        self._tables: Optional[Dict[str, Dict[int, Record]]] = None
        self._next_ids: Dict[str, int] = {}
        self._unavailable: Dict[str, int] = {}
        self._offline = False
        self.calls: List[Tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._tables is None:
            self._tables = {entity: {} for entity in self._entity_types}
            self._next_ids = {entity: 1 for entity in self._entity_types}
            logger.debug("Opened in-memory record store for %s", ", ".join(self._entity_types))

    async def close(self) -> None:
        self._tables = None
        self._next_ids = {}

    @property
    def is_open(self) -> bool:
        return self._tables is not None

    def seed(self, data: Mapping[str, Iterable[Mapping[str, Any]]]) -> None:
        """Bulk-load records, keeping any ``id``/``Id`` they carry."""
        tables = self._require_open_sync()
        now = datetime.now()
        for entity, rows in data.items():
            table = self._table(tables, entity)
            for row in rows:
                record = dict(row)
                raw_id = record.pop("Id", None)
                record_id = int(record.pop("id", raw_id) or self._next_ids[entity])
                record.setdefault("created_at", now)
                record.setdefault("updated_at", record["created_at"])
                record["id"] = record_id
                table[record_id] = record
                self._next_ids[entity] = max(self._next_ids[entity], record_id + 1)

    # ------------------------------------------------------------------
    # Fault and latency injection
    # ------------------------------------------------------------------

    def set_delay(self, entity: str, seconds: float) -> None:
        self._delays[entity] = seconds

    def fail_next(self, entity: str, times: int = 1) -> None:
        """Make the next ``times`` calls touching ``entity`` raise ``StoreUnavailable``."""
        self._unavailable[entity] = self._unavailable.get(entity, 0) + times

    def set_offline(self, offline: bool = True) -> None:
        self._offline = offline

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    async def list(self, entity: str, query: Optional[ListQuery] = None) -> ListResult:
        table = await self._begin(entity, "list")
        result = apply_query(table.values(), query)
        return ListResult(records=copy.deepcopy(result.records), total=result.total)

    async def get(self, entity: str, record_id: int) -> Optional[Record]:
        table = await self._begin(entity, "get")
        record = table.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def create(self, entity: str, fields: Mapping[str, Any]) -> Record:
        table = await self._begin(entity, "create")
        record_id = self._next_ids[entity]
        self._next_ids[entity] = record_id + 1
        now = datetime.now()
        record = {**copy.deepcopy(dict(fields)), "id": record_id, "created_at": now, "updated_at": now}
        table[record_id] = record
        logger.debug("Created %s %s", entity, record_id)
        return copy.deepcopy(record)

    async def update(self, entity: str, record_id: int, fields: Mapping[str, Any]) -> Optional[Record]:
        table = await self._begin(entity, "update")
        existing = table.get(record_id)
        if existing is None:
            return None
        merged = {**existing, **copy.deepcopy(dict(fields))}
        merged["id"] = record_id
        merged["created_at"] = existing.get("created_at")
        merged["updated_at"] = datetime.now()
        table[record_id] = merged
        return copy.deepcopy(merged)

    async def delete(self, entity: str, record_id: int) -> bool:
        table = await self._begin(entity, "delete")
        if record_id not in table:
            return False
        del table[record_id]
        logger.debug("Deleted %s %s", entity, record_id)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_open_sync(self) -> Dict[str, Dict[int, Record]]:
        if self._tables is None:
            raise StoreUnavailable("Record store is not open.")
        return self._tables

    def _table(self, tables: MutableMapping[str, Dict[int, Record]], entity: str) -> Dict[int, Record]:
        if entity not in tables:
            raise ValueError(f"Unsupported entity type '{entity}'.")
        return tables[entity]

    async def _begin(self, entity: str, operation: str) -> Dict[int, Record]:
        self.calls.append((entity, operation))
        delay = self._delays.get(entity, self._latency)
        if delay:
            await asyncio.sleep(delay)
        if self._offline:
            raise StoreUnavailable(f"Record store offline during {operation} on {entity}.")
        pending_failures = self._unavailable.get(entity, 0)
        if pending_failures:
            self._unavailable[entity] = pending_failures - 1
            raise StoreUnavailable(f"Record store failed {operation} on {entity}.")
        tables = self._require_open_sync()
        return self._table(tables, entity)
