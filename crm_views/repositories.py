"""Per-entity repositories over a record store.

Repositories validate writes before they reach the store, normalize raw
records into models, and raise typed failures. They never retry and never
swallow a store failure.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, Generic, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from .crm_models import (
    Activity,
    ActivityType,
    CRMBaseModel,
    Contact,
    Deal,
    DealStage,
    Quote,
    QuoteStatus,
    Task,
    TaskPriority,
    _require_non_empty_string,
    _validate_email,
    _validate_enum_value,
    _validate_non_negative_number,
    _validate_probability,
    fold_address_fields,
    normalize_raw_keys,
)
from .errors import NotFound, ValidationFailure
from .filters import TextSearch, apply_filters
from .record_store import ListQuery, RecordStore, SortOrder

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=CRMBaseModel)

_STORE_MANAGED = frozenset({"id", "created_at", "updated_at"})


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "record"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


@dataclass(frozen=True)
class Page(Generic[M]):
    """One page of a server-side listing."""

    records: List[M]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class EntityRepository(Generic[M]):
    """CRUD for one entity type."""

    entity: ClassVar[str]
    model: ClassVar[Type[CRMBaseModel]]
    required_fields: ClassVar[Tuple[str, ...]] = ()
    defaults: ClassVar[Mapping[str, Any]] = {}

    def __init__(self, store: RecordStore, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> RecordStore:
        return self._store

    # ------------------------------------------------------------------
    # Normalization and validation
    # ------------------------------------------------------------------

    def normalize(self, raw: Mapping[str, Any]) -> M:
        """Turn a raw store record into a model."""
        try:
            return self.model.model_validate(raw)  # type: ignore[return-value]
        except ValidationError as exc:
            raise ValidationFailure(
                f"Malformed {self.entity} record: {_format_validation_error(exc)}",
                details={"record_id": raw.get("id", raw.get("Id"))},
            ) from exc

    def _raw_keys(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        return normalize_raw_keys(fields)

    def _canonical_keys(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Accept snake_case or camelCase keys; drop store-managed and unknown ones."""
        aliases = {info.alias: name for name, info in self.model.model_fields.items() if info.alias}
        payload: Dict[str, Any] = {}
        for key, value in self._raw_keys(fields).items():
            name = aliases.get(key, key)
            if name in self.model.model_fields and name not in _STORE_MANAGED:
                payload[name] = value
        return payload

    def _check_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Entity-specific checks on the fields being written."""
        return payload

    def _validate_model(self, record: Mapping[str, Any]) -> M:
        try:
            return self.model.model_validate(record)  # type: ignore[return-value]
        except ValidationError as exc:
            raise ValidationFailure(
                f"Invalid {self.entity}: {_format_validation_error(exc)}"
            ) from exc

    def prepare_create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate a create submission and return the record to send."""
        payload = {**self._create_defaults(), **self._canonical_keys(fields)}
        for name in self.required_fields:
            value = payload.get(name)
            if value is None:
                raise ValidationFailure(f"{self.entity} {name} is required.")
            if isinstance(value, str):
                _require_non_empty_string(value, f"{self.entity} {name}")
        payload = self._check_fields(payload)
        draft = self._validate_model({**payload, "id": 0})
        return draft.to_record()

    def _create_defaults(self) -> Dict[str, Any]:
        return dict(self.defaults)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _order(self, records: List[M]) -> List[M]:
        return records

    async def list(self, query: Optional[ListQuery] = None) -> List[M]:
        result = await self._store.list(self.entity, query)
        return self._order([self.normalize(raw) for raw in result.records])

    async def list_page(
        self,
        *,
        search: Optional[str] = None,
        search_field: str = "name",
        sort_by: Optional[str] = None,
        sort_order: SortOrder = SortOrder.ASC,
        page: int = 0,
        limit: int = 20,
    ) -> Page[M]:
        """Server-side search, sort and paging."""
        query = ListQuery(
            search=search,
            search_field=search_field,
            sort_by=sort_by,
            sort_order=SortOrder(sort_order),
            page=page,
            limit=limit,
        )
        result = await self._store.list(self.entity, query)
        records = [self.normalize(raw) for raw in result.records]
        return Page(records=records, total=result.total, page=page, limit=limit)

    async def list_where(self, **criteria: Any) -> List[M]:
        """Exact-match listing; re-checked locally for stores that ignore ``where``."""
        result = await self._store.list(self.entity, ListQuery(where=criteria))
        records = [self.normalize(raw) for raw in result.records]
        matching = [
            record for record in records
            if all(getattr(record, key, None) == value for key, value in criteria.items())
        ]
        return self._order(matching)

    async def get(self, record_id: int) -> M:
        raw = await self._store.get(self.entity, record_id)
        if raw is None:
            raise NotFound(self.entity, record_id)
        return self.normalize(raw)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, fields: Mapping[str, Any]) -> M:
        record = self.prepare_create(fields)
        raw = await self._store.create(self.entity, record)
        created = self.normalize(raw)
        logger.debug("Created %s %s", self.entity, created.id)  # type: ignore[attr-defined]
        return created

    async def update(self, record_id: int, fields: Mapping[str, Any]) -> M:
        """Merge ``fields`` into the stored record; unspecified fields keep their values."""
        payload = self._check_fields(self._canonical_keys(fields))
        existing = await self._store.get(self.entity, record_id)
        if existing is None:
            raise NotFound(self.entity, record_id)
        merged = self._validate_model({**existing, **payload})
        normalized = merged.to_record()
        changes = {name: normalized[name] for name in payload if name in normalized}
        raw = await self._store.update(self.entity, record_id, changes)
        if raw is None:
            raise NotFound(self.entity, record_id)
        return self.normalize(raw)

    async def delete(self, record_id: int) -> M:
        existing = await self.get(record_id)
        deleted = await self._store.delete(self.entity, record_id)
        if not deleted:
            raise NotFound(self.entity, record_id)
        logger.debug("Deleted %s %s", self.entity, record_id)
        return existing


class ContactRepository(EntityRepository[Contact]):
    entity = "Contact"
    model = Contact
    required_fields = ("name",)

    def _check_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "email" in payload:
            payload["email"] = _validate_email(payload["email"])
        return payload

    async def search(self, query: str) -> List[Contact]:
        """Substring search over name, email and company."""
        contacts = await self.list()
        return apply_filters(contacts, [TextSearch(query, ("name", "email", "company"))])


class DealRepository(EntityRepository[Deal]):
    entity = "Deal"
    model = Deal
    required_fields = ("title", "contact_id")
    defaults = {"stage": DealStage.LEAD.value, "probability": 0, "value": 0}

    def _check_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "stage" in payload:
            payload["stage"] = _validate_enum_value(payload["stage"], DealStage, "Deal stage")
        if "value" in payload:
            payload["value"] = _validate_non_negative_number(payload["value"], "Deal value")
        if "probability" in payload:
            payload["probability"] = _validate_probability(payload["probability"])
        if "title" in payload:
            _require_non_empty_string(payload["title"], "Deal title")
        return payload

    async def list_for_contact(self, contact_id: int) -> List[Deal]:
        return await self.list_where(contact_id=contact_id)

    async def update_stage(self, deal_id: int, stage: str) -> Deal:
        return await self.update(deal_id, {"stage": stage})


class TaskRepository(EntityRepository[Task]):
    entity = "Task"
    model = Task
    required_fields = ("title", "due_date")
    defaults = {"priority": TaskPriority.MEDIUM.value, "description": ""}

    def prepare_create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        # New tasks always start open, whatever the submission says.
        record = super().prepare_create(fields)
        record["completed"] = False
        return record

    def _check_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "priority" in payload:
            payload["priority"] = _validate_enum_value(payload["priority"], TaskPriority, "Task priority")
        if "title" in payload:
            _require_non_empty_string(payload["title"], "Task title")
        return payload

    def _order(self, records: List[Task]) -> List[Task]:
        return sorted(records, key=lambda task: task.due_date)

    async def list_for_contact(self, contact_id: int) -> List[Task]:
        return await self.list_where(contact_id=contact_id)

    async def toggle_complete(self, task_id: int) -> Task:
        task = await self.get(task_id)
        return await self.update(task_id, {"completed": not task.completed})


class ActivityRepository(EntityRepository[Activity]):
    entity = "Activity"
    model = Activity
    required_fields = ("type", "contact_id", "description")
    defaults = {"duration": 0}

    def _create_defaults(self) -> Dict[str, Any]:
        return {**self.defaults, "date": self._clock()}

    def _check_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "type" in payload:
            payload["type"] = _validate_enum_value(payload["type"], ActivityType, "Activity type")
        if payload.get("duration") in (None, ""):
            payload.pop("duration", None)
        elif "duration" in payload:
            payload["duration"] = int(_validate_non_negative_number(payload["duration"], "Activity duration"))
        return payload

    def _order(self, records: List[Activity]) -> List[Activity]:
        return sorted(records, key=lambda activity: activity.date, reverse=True)

    async def list_for_contact(self, contact_id: int) -> List[Activity]:
        return await self.list_where(contact_id=contact_id)

    async def list_for_deal(self, deal_id: int) -> List[Activity]:
        return await self.list_where(deal_id=deal_id)


class QuoteRepository(EntityRepository[Quote]):
    entity = "Quote"
    model = Quote
    required_fields = ("name",)
    defaults = {"status": QuoteStatus.DRAFT.value}

    def _raw_keys(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        # Address blocks are replaced as a whole on update.
        return fold_address_fields(normalize_raw_keys(fields))

    def _check_fields(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "status" in payload:
            payload["status"] = _validate_enum_value(payload["status"], QuoteStatus, "Quote status")
        return payload


@dataclass(frozen=True)
class Repositories:
    """The full set of repositories for one session."""

    contacts: ContactRepository
    deals: DealRepository
    tasks: TaskRepository
    activities: ActivityRepository
    quotes: QuoteRepository

    @classmethod
    def for_store(cls, store: RecordStore, *, clock: Callable[[], datetime] = datetime.now) -> "Repositories":
        return cls(
            contacts=ContactRepository(store, clock=clock),
            deals=DealRepository(store, clock=clock),
            tasks=TaskRepository(store, clock=clock),
            activities=ActivityRepository(store, clock=clock),
            quotes=QuoteRepository(store, clock=clock),
        )
