"""Load, cache and republish a derived view for one page.

State machine::

    IDLE -> LOADING -> READY        all required loads resolved
            LOADING -> FAILED       any required load raised (first failure wins)
    READY -> READY                  criteria change, recomputed from cache
    READY / FAILED -> LOADING       explicit reload

Every load is tagged with a monotonically increasing sequence number. Only the
most recently issued load may publish; an older load that finishes late is
discarded, whether it succeeded or failed. Criteria always flow from the
coordinator at build time, so a filter changed while a load is in flight is
applied to the data that load returns, never to an older snapshot.

Mutations are awaited before anything changes locally. On failure the current
view is kept as is and the failure is returned to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    TypeVar,
)

from .errors import CrmViewError

logger = logging.getLogger(__name__)

V = TypeVar("V")
R = TypeVar("R")

Loader = Callable[[Mapping[str, Any]], Awaitable[Any]]


class ViewState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ViewInputs:
    """Everything a builder may read: cached collections, criteria and clock."""

    collections: Mapping[str, Any]
    criteria: Mapping[str, Any]
    now: datetime


Builder = Callable[[ViewInputs], V]


@dataclass(frozen=True)
class MutationResult(Generic[R]):
    ok: bool
    value: Optional[R] = None
    error: Optional[CrmViewError] = None

    @property
    def message(self) -> Optional[str]:
        return str(self.error) if self.error else None


CacheUpdate = Callable[[Dict[str, Any], Any], None]


def replace_record(collection: str) -> CacheUpdate:
    """Cache update that swaps in the returned record by identifier."""

    def _apply(collections: Dict[str, Any], record: Any) -> None:
        collections[collection] = [
            record if getattr(existing, "id", None) == record.id else existing
            for existing in collections.get(collection, [])
        ]

    return _apply


def append_record(collection: str) -> CacheUpdate:
    def _apply(collections: Dict[str, Any], record: Any) -> None:
        collections[collection] = [*collections.get(collection, []), record]

    return _apply


def remove_record(collection: str) -> CacheUpdate:
    def _apply(collections: Dict[str, Any], record: Any) -> None:
        collections[collection] = [
            existing for existing in collections.get(collection, [])
            if getattr(existing, "id", None) != record.id
        ]

    return _apply


def _consume_outcome(task: "asyncio.Future[Any]") -> None:
    """Retrieve a discarded load's outcome so asyncio does not warn about it."""
    if not task.cancelled():
        task.exception()


@dataclass
class _Session:
    collections: Dict[str, Any] = field(default_factory=dict)
    loaded: bool = False


class ViewCoordinator(Generic[V]):
    """Owns one page's cached collections and its derived view."""

    def __init__(
        self,
        loaders: Mapping[str, Loader],
        build: Builder[V],
        *,
        criteria: Optional[Mapping[str, Any]] = None,
        refetch_on: Iterable[str] = (),
        name: str = "view",
        failure_message: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not loaders:
            raise ValueError("ViewCoordinator requires at least one loader.")
        self._loaders = dict(loaders)
        self._build = build
        self._criteria: Dict[str, Any] = dict(criteria or {})
        self._refetch_on = frozenset(refetch_on)
        self.name = name
        self.failure_message = failure_message or f"Failed to load {name} data"
        self._clock = clock

        self._state = ViewState.IDLE
        self._session = _Session()
        self._view: Optional[V] = None
        self._error: Optional[CrmViewError] = None
        self._issued = 0
        self._listeners: List[Callable[["ViewCoordinator[V]"], None]] = []

    # ------------------------------------------------------------------
    # Presentation surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def view(self) -> Optional[V]:
        """The latest derived view; kept while reloading or after a failed reload."""
        return self._view

    @property
    def error(self) -> Optional[CrmViewError]:
        return self._error

    @property
    def message(self) -> Optional[str]:
        return self.failure_message if self._state is ViewState.FAILED else None

    @property
    def criteria(self) -> Mapping[str, Any]:
        return MappingProxyType(self._criteria)

    @property
    def collections(self) -> Mapping[str, Any]:
        return MappingProxyType(self._session.collections)

    @property
    def sequence(self) -> int:
        return self._issued

    def subscribe(self, listener: Callable[["ViewCoordinator[V]"], None]) -> Callable[[], None]:
        """Register a callback run after every publish; returns an unsubscribe handle."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> ViewState:
        """Fetch every required collection concurrently and publish the result."""
        self._issued += 1
        sequence = self._issued
        self._state = ViewState.LOADING
        self._error = None
        self._publish()

        names = list(self._loaders)
        snapshot = MappingProxyType(dict(self._criteria))
        logger.info("Loading %s (#%d): %s", self.name, sequence, ", ".join(names))
        tasks = [asyncio.ensure_future(self._loaders[name](snapshot)) for name in names]
        try:
            results = await asyncio.gather(*tasks)
        except CrmViewError as exc:
            for task in tasks:
                if not task.done():
                    task.add_done_callback(_consume_outcome)
            if sequence != self._issued:
                logger.debug("Discarding failed %s load #%d; #%d is current", self.name, sequence, self._issued)
                return self._state
            self._fail(exc)
            return self._state

        if sequence != self._issued:
            logger.debug("Discarding stale %s load #%d; #%d is current", self.name, sequence, self._issued)
            return self._state

        self._session = _Session(collections=dict(zip(names, results)), loaded=True)
        self._state = ViewState.READY
        self._recompute()
        logger.info("Loaded %s (#%d)", self.name, sequence)
        return self._state

    async def reload(self) -> ViewState:
        """User-initiated reload; the only way out of ``FAILED``."""
        return await self.load()

    def _fail(self, exc: CrmViewError) -> None:
        self._state = ViewState.FAILED
        self._error = exc
        logger.warning("%s: %s", self.failure_message, exc)
        self._publish()

    # ------------------------------------------------------------------
    # Criteria
    # ------------------------------------------------------------------

    def apply_filter(self, **changes: Any) -> Optional[V]:
        """Update criteria and recompute synchronously from the cache.

        While a load is in flight only the criteria are stored; the load
        builds its view with whatever criteria are current when it lands.
        """
        self._criteria.update(changes)
        if self._state is ViewState.READY:
            self._recompute()
        return self._view

    async def update_criteria(self, **changes: Any) -> ViewState:
        """Like :meth:`apply_filter`, refetching when a server-side criterion changed."""
        needs_fetch = any(
            key in self._refetch_on and self._criteria.get(key) != value
            for key, value in changes.items()
        )
        self.apply_filter(**changes)
        if needs_fetch:
            return await self.load()
        return self._state

    def _recompute(self) -> None:
        inputs = ViewInputs(
            collections=MappingProxyType(self._session.collections),
            criteria=MappingProxyType(dict(self._criteria)),
            now=self._clock(),
        )
        self._view = self._build(inputs)
        self._publish()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def mutate(
        self,
        action: Callable[[], Awaitable[R]],
        *,
        on_success: Optional[CacheUpdate] = None,
    ) -> MutationResult[R]:
        """Run a store mutation, then refresh the view only if it succeeded.

        With ``on_success`` the cached collections are patched locally and the
        view recomputed; without it every collection is reloaded. A mutation
        that lands while a load is in flight also reloads, which supersedes
        the older load.
        """
        try:
            value = await action()
        except CrmViewError as exc:
            logger.warning("Mutation on %s failed: %s", self.name, exc)
            return MutationResult(ok=False, error=exc)

        if on_success is None or self._state is ViewState.LOADING:
            # A load already in flight may have read the store before this write.
            await self.load()
        elif self._session.loaded:
            collections = dict(self._session.collections)
            on_success(collections, value)
            self._session = _Session(collections=collections, loaded=True)
            if self._state is ViewState.READY:
                self._recompute()
        return MutationResult(ok=True, value=value)

    def _publish(self) -> None:
        for listener in list(self._listeners):
            listener(self)
