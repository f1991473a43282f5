"""Foreign-key resolution between cached entity collections.

Resolution never raises. A null key, a key of the wrong shape, or a key that is
absent from the target collection all yield :data:`UNKNOWN`, which callers
render through :meth:`ReferenceResolver.label` as a fixed placeholder such as
``"Unknown Contact"``.

Example:
    contacts = [Contact(id=1, name="Ada Lovelace")]
    resolver = ReferenceResolver(contacts, placeholder="Unknown Contact")
    resolver.label(1)    # "Ada Lovelace"
    resolver.label(99)   # "Unknown Contact"
    resolver.resolve(None) is UNKNOWN  # True
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Generic, Iterable, Mapping, Optional, TypeVar, Union

T = TypeVar("T")


class _Unknown:
    """Sentinel for a reference that does not resolve."""

    _instance: Optional["_Unknown"] = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNKNOWN"


UNKNOWN = _Unknown()

Collection = Union[Mapping[Any, T], Iterable[T]]


def _normalize_key(key: Any) -> Any:
    """Identifiers are integers; digit strings from form input compare equal."""
    if key is None or isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str):
        text = key.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        return text or None
    return key


def _record_id(record: Any) -> Any:
    if isinstance(record, Mapping):
        return _normalize_key(record.get("id", record.get("Id")))
    return _normalize_key(getattr(record, "id", None))


def build_index(collection: Collection) -> Dict[Any, Any]:
    """Index records by identifier. Records without one are skipped."""
    if isinstance(collection, Mapping):
        pairs = ((_normalize_key(key), record) for key, record in collection.items())
    else:
        pairs = ((_record_id(record), record) for record in collection or ())
    return {record_id: record for record_id, record in pairs if record_id is not None}


def resolve(collection: Collection, foreign_key: Any) -> Any:
    """Return the record whose identifier equals ``foreign_key`` or ``UNKNOWN``."""
    key = _normalize_key(foreign_key)
    if key is None:
        return UNKNOWN
    try:
        index = build_index(collection)
        return index.get(key, UNKNOWN)
    except (TypeError, AttributeError):
        return UNKNOWN


def _default_display(record: Any) -> str:
    for attr in ("name", "title"):
        value = record.get(attr) if isinstance(record, Mapping) else getattr(record, attr, None)
        if value:
            return str(value)
    return str(_record_id(record))


class ReferenceResolver(Generic[T]):
    """Pre-indexed resolver for one target collection."""

    def __init__(
        self,
        collection: Collection,
        *,
        placeholder: str,
        display: Callable[[T], str] = _default_display,
    ) -> None:
        self._index = build_index(collection)
        self.placeholder = placeholder
        self._display = display

    def __contains__(self, foreign_key: Any) -> bool:
        return self.resolve(foreign_key) is not UNKNOWN

    def __len__(self) -> int:
        return len(self._index)

    def resolve(self, foreign_key: Any) -> Union[T, _Unknown]:
        key = _normalize_key(foreign_key)
        if key is None:
            return UNKNOWN
        try:
            return self._index.get(key, UNKNOWN)
        except TypeError:
            # Unhashable keys cannot match any identifier.
            return UNKNOWN

    def label(self, foreign_key: Any) -> str:
        record = self.resolve(foreign_key)
        if record is UNKNOWN:
            return self.placeholder
        return self._display(record)

    def optional_label(self, foreign_key: Any) -> Optional[str]:
        """Like :meth:`label` but ``None`` when no reference is set at all."""
        if _normalize_key(foreign_key) is None:
            return None
        return self.label(foreign_key)
