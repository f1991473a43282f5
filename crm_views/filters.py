"""Composable record filters.

A page configures a :class:`FilterPipeline` with predicate specs instead of
writing its own filtering loop. Specs compose by logical AND and always run
in the order search, categorical, date regardless of the order they were
given in, each stage narrowing the previous stage's output.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Callable, Generic, Iterable, List, Mapping, Optional, Sequence, TypeVar, Union

from .date_windows import PeriodToken, Window, parse_token, window_for

T = TypeVar("T")

FieldGetter = Union[str, Callable[[Any], Any]]

ALL = "all"


class PredicateKind(IntEnum):
    SEARCH = 0
    CATEGORICAL = 1
    DATE = 2


def read_field(record: Any, getter: FieldGetter) -> Any:
    """Read an attribute, a mapping key, or a derived value from ``record``."""
    if callable(getter):
        return getter(record)
    if isinstance(record, Mapping):
        return record.get(getter)
    return getattr(record, getter, None)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class TextSearch:
    """Case-insensitive substring match on any of ``fields``."""

    query: Optional[str]
    fields: Sequence[FieldGetter]
    kind: PredicateKind = dataclass_field(default=PredicateKind.SEARCH, init=False)

    @property
    def needle(self) -> str:
        return (self.query or "").strip().lower()

    @property
    def is_passthrough(self) -> bool:
        return not self.needle

    def compile(self) -> Callable[[Any], bool]:
        needle = self.needle

        def _matches(record: Any) -> bool:
            for getter in self.fields:
                value = read_field(record, getter)
                if value is not None and needle in str(value).lower():
                    return True
            return False

        return _matches


@dataclass(frozen=True)
class CategoryEquals:
    """Field equality against one enum value; ``"all"`` disables the check."""

    field: FieldGetter
    value: Any = ALL
    all_value: Any = ALL
    kind: PredicateKind = dataclass_field(default=PredicateKind.CATEGORICAL, init=False)

    @property
    def is_passthrough(self) -> bool:
        return self.value is None or _plain(self.value) == self.all_value

    def compile(self) -> Callable[[Any], bool]:
        expected = _plain(self.value)
        return lambda record: _plain(read_field(record, self.field)) == expected


class CompletionStatus(str, Enum):
    ALL = "all"
    COMPLETED = "completed"
    PENDING = "pending"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class CompletionFilter:
    """Task status filter; ``overdue`` means past due and not completed."""

    status: Union[str, CompletionStatus]
    now: datetime
    completed_field: FieldGetter = "completed"
    due_field: FieldGetter = "due_date"
    kind: PredicateKind = dataclass_field(default=PredicateKind.CATEGORICAL, init=False)

    @property
    def _status(self) -> CompletionStatus:
        try:
            return CompletionStatus(_plain(self.status))
        except ValueError:
            return CompletionStatus.ALL

    @property
    def is_passthrough(self) -> bool:
        return self._status is CompletionStatus.ALL

    def compile(self) -> Callable[[Any], bool]:
        status = self._status
        if status is CompletionStatus.COMPLETED:
            return lambda record: bool(read_field(record, self.completed_field))
        if status is CompletionStatus.PENDING:
            return lambda record: not read_field(record, self.completed_field)
        overdue = window_for(PeriodToken.OVERDUE, self.now)
        return lambda record: (
            not read_field(record, self.completed_field)
            and overdue.contains(read_field(record, self.due_field))
        )


@dataclass(frozen=True)
class DateWindowFilter:
    """Keep records whose date falls in the window for ``token``."""

    field: FieldGetter
    token: Union[str, PeriodToken, None]
    now: datetime
    kind: PredicateKind = dataclass_field(default=PredicateKind.DATE, init=False)

    @property
    def window(self) -> Window:
        return window_for(self.token, self.now)

    @property
    def is_passthrough(self) -> bool:
        return parse_token(self.token) is PeriodToken.ALL

    def compile(self) -> Callable[[Any], bool]:
        window = self.window
        return lambda record: window.contains(read_field(record, self.field))


Predicate = Union[TextSearch, CategoryEquals, CompletionFilter, DateWindowFilter]


class FilterPipeline(Generic[T]):
    """AND-composition of predicate specs in a fixed, stable order."""

    def __init__(self, predicates: Iterable[Predicate] = ()) -> None:
        self.predicates: List[Predicate] = sorted(predicates, key=lambda predicate: predicate.kind)

    def __len__(self) -> int:
        return len(self.predicates)

    @property
    def active(self) -> List[Predicate]:
        return [predicate for predicate in self.predicates if not predicate.is_passthrough]

    def apply(self, collection: Iterable[T]) -> List[T]:
        filtered = list(collection)
        for predicate in self.active:
            check = predicate.compile()
            filtered = [record for record in filtered if check(record)]
        return filtered

    def matches(self, record: T) -> bool:
        return all(predicate.compile()(record) for predicate in self.active)


def apply_filters(collection: Iterable[T], predicates: Iterable[Predicate]) -> List[T]:
    return FilterPipeline(predicates).apply(collection)
