"""Counts, sums and ordered grouping over cached collections."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, TypeVar

from .filters import FieldGetter, read_field

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


def count(collection: Iterable[T], predicate: Optional[Callable[[T], bool]] = None) -> int:
    """Total count, or the count of records satisfying ``predicate``."""
    if predicate is None:
        return sum(1 for _ in collection)
    return sum(1 for record in collection if predicate(record))


def sum_of(collection: Iterable[T], field: FieldGetter) -> float:
    """Arithmetic sum over a numeric field; missing values count as zero."""
    total: float = 0
    for record in collection:
        value = read_field(record, field)
        if value is not None:
            total += value
    return total


def group_by(
    collection: Iterable[T],
    key_fn: Callable[[T], Any],
    ordered_keys: Sequence[K],
    *,
    fallback_key: Optional[K] = None,
) -> Dict[K, List[T]]:
    """Partition records into groups that follow ``ordered_keys``.

    Every key is present even when no record maps to it, and iteration order
    is the order of ``ordered_keys``, never arrival order. A record whose key
    is not listed goes to ``fallback_key`` when one is given (it must be one
    of ``ordered_keys``) and is left out otherwise.
    """
    groups: Dict[K, List[T]] = {key: [] for key in ordered_keys}
    if fallback_key is not None and fallback_key not in groups:
        raise ValueError(f"fallback_key {fallback_key!r} must be one of ordered_keys.")
    for record in collection:
        key = key_fn(record)
        if isinstance(key, Enum):
            key = key.value
        if key in groups:
            groups[key].append(record)
        elif fallback_key is not None:
            groups[fallback_key].append(record)
    return groups


@dataclass(frozen=True)
class GroupSummary:
    key: Any
    count: int
    total: float


def summarize_groups(groups: Dict[Any, List[T]], field: FieldGetter) -> List[GroupSummary]:
    """Per-group count and field total, in group order."""
    return [GroupSummary(key, len(records), sum_of(records, field)) for key, records in groups.items()]


def count_by(collection: Iterable[T], key_fn: Callable[[T], Any], ordered_keys: Sequence[K]) -> Dict[K, int]:
    return {key: len(records) for key, records in group_by(collection, key_fn, ordered_keys).items()}
