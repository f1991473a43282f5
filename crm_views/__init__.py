"""Relational view engine for CRM pages: repositories, filters, aggregates and coordinated loads."""

from .errors import CrmViewError, NotFound, StoreUnavailable, ValidationFailure  # noqa: F401
from .record_store import InMemoryRecordStore, RecordStore  # noqa: F401
from .reference_resolver import UNKNOWN, ReferenceResolver  # noqa: F401
from .repositories import Repositories  # noqa: F401
from .view_coordinator import ViewCoordinator, ViewState  # noqa: F401

__version__ = "0.1.0"
