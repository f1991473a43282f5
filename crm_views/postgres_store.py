"""Postgres-backed record store.

Every entity type shares one JSONB document table keyed by ``(entity_type,
record_id)``. The identity column is never reset during a session, so deleted
identifiers are not handed out again.
"""

from __future__ import annotations

import functools
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from .config import DatabaseConfig
from .errors import StoreUnavailable
from .record_store import ENTITY_TYPES, ListQuery, ListResult, Record, RecordStore, SortOrder

logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS crm_records (
        entity_type TEXT NOT NULL,
        record_id BIGINT GENERATED ALWAYS AS IDENTITY,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (entity_type, record_id)
    );
"""

_DRIVER_ERRORS = (psycopg.OperationalError, psycopg.InterfaceError)

_dumps = functools.partial(json.dumps, default=str)


def _jsonb(value: Mapping[str, Any]) -> Jsonb:
    payload = {key: val for key, val in value.items() if key not in {"id", "created_at", "updated_at"}}
    return Jsonb(payload, dumps=_dumps)


def _to_record(row: Mapping[str, Any]) -> Record:
    record = dict(row["payload"] or {})
    record["id"] = row["record_id"]
    record["created_at"] = row["created_at"]
    record["updated_at"] = row["updated_at"]
    return record


class PostgresRecordStore(RecordStore):
    """Record store over an async psycopg connection."""

    def __init__(self, config: Optional[DatabaseConfig] = None) -> None:
        self._config = config or DatabaseConfig.from_env()
        self._conn: Optional[AsyncConnection] = None

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await AsyncConnection.connect(
                self._config.conninfo(),
                autocommit=True,
                row_factory=dict_row,
            )
        except _DRIVER_ERRORS as exc:
            raise StoreUnavailable(f"Could not connect to {self._config.host}:{self._config.port}.") from exc
        await self._execute(_SCHEMA)
        logger.info("Connected to Postgres record store at %s/%s", self._config.host, self._config.dbname)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def reset(self) -> None:
        """Remove every record; used by integration tests."""
        await self._execute("DELETE FROM crm_records;")

    # ------------------------------------------------------------------
    # SQL helpers
    # ------------------------------------------------------------------

    def _connection(self) -> AsyncConnection:
        if self._conn is None:
            raise StoreUnavailable("Record store is not open.")
        return self._conn

    async def _fetchall(self, query: str, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        try:
            async with self._connection().cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        except _DRIVER_ERRORS as exc:
            raise StoreUnavailable(f"Postgres request failed: {exc}") from exc

    async def _fetchone(self, query: str, params: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    async def _execute(self, query: str, params: Optional[Mapping[str, Any]] = None) -> None:
        try:
            async with self._connection().cursor() as cur:
                await cur.execute(query, params)
        except _DRIVER_ERRORS as exc:
            raise StoreUnavailable(f"Postgres request failed: {exc}") from exc

    @staticmethod
    def _check_entity(entity: str) -> None:
        if entity not in ENTITY_TYPES:
            raise ValueError(f"Unsupported entity type '{entity}'.")

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    async def list(self, entity: str, query: Optional[ListQuery] = None) -> ListResult:
        self._check_entity(entity)
        query = query or ListQuery()
        clauses = ["entity_type = %(entity)s"]
        params: Dict[str, Any] = {"entity": entity}
        if query.where:
            clauses.append("payload @> %(where)s")
            params["where"] = Jsonb(dict(query.where), dumps=_dumps)
        needle = (query.search or "").strip()
        if needle:
            clauses.append("payload ->> %(search_field)s::text ILIKE %(pattern)s")
            params["search_field"] = query.search_field
            params["pattern"] = f"%{needle}%"
        sql = f"SELECT *, COUNT(*) OVER () AS total FROM crm_records WHERE {' AND '.join(clauses)}"
        if query.sort_by:
            direction = "DESC" if query.sort_order == SortOrder.DESC else "ASC"
            sql += f" ORDER BY payload -> %(sort_by)s::text {direction} NULLS LAST, record_id"
            params["sort_by"] = query.sort_by
        else:
            sql += " ORDER BY record_id"
        if query.limit is not None:
            sql += " LIMIT %(limit)s OFFSET %(offset)s"
            params["limit"] = query.limit
            params["offset"] = query.offset
        rows = await self._fetchall(sql + ";", params)
        total = rows[0]["total"] if rows else 0
        if not rows and query.limit is not None and query.offset:
            # The window count is lost when the page is past the end.
            count_row = await self._fetchone(
                f"SELECT COUNT(*) AS total FROM crm_records WHERE {' AND '.join(clauses)};",
                params,
            )
            total = count_row["total"] if count_row else 0
        return ListResult(records=[_to_record(row) for row in rows], total=int(total))

    async def get(self, entity: str, record_id: int) -> Optional[Record]:
        self._check_entity(entity)
        row = await self._fetchone(
            "SELECT * FROM crm_records WHERE entity_type = %(entity)s AND record_id = %(id)s;",
            {"entity": entity, "id": record_id},
        )
        return _to_record(row) if row else None

    async def create(self, entity: str, fields: Mapping[str, Any]) -> Record:
        self._check_entity(entity)
        row = await self._fetchone(
            "INSERT INTO crm_records (entity_type, payload) VALUES (%(entity)s, %(payload)s) RETURNING *;",
            {"entity": entity, "payload": _jsonb(fields)},
        )
        if not row:
            raise StoreUnavailable(f"Failed to insert {entity}.")
        return _to_record(row)

    async def update(self, entity: str, record_id: int, fields: Mapping[str, Any]) -> Optional[Record]:
        self._check_entity(entity)
        row = await self._fetchone(
            """
            UPDATE crm_records
            SET payload = payload || %(payload)s, updated_at = NOW()
            WHERE entity_type = %(entity)s AND record_id = %(id)s
            RETURNING *;
            """,
            {"entity": entity, "id": record_id, "payload": _jsonb(fields)},
        )
        return _to_record(row) if row else None

    async def delete(self, entity: str, record_id: int) -> bool:
        self._check_entity(entity)
        row = await self._fetchone(
            "DELETE FROM crm_records WHERE entity_type = %(entity)s AND record_id = %(id)s RETURNING record_id;",
            {"entity": entity, "id": record_id},
        )
        return row is not None
