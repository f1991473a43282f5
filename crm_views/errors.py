"""Typed failures raised by repositories and record stores.

The view coordinator is the single place that turns these into a user-visible
failure state. Everything below the coordinator raises; nothing retries.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CrmViewError(Exception):
    """Base class for all CRM view failures."""

    code = "CRM_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class StoreUnavailable(CrmViewError):
    """The record store could not complete a request."""

    code = "STORE_UNAVAILABLE"


class NotFound(CrmViewError, LookupError):
    """A lookup or mutation targeted a record that does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, record_id: Any) -> None:
        self.entity = entity
        self.record_id = record_id
        super().__init__(
            f"{entity} not found with ID '{record_id}'.",
            details={"entity": entity, "record_id": record_id},
        )


class ValidationFailure(CrmViewError, ValueError):
    """Required fields are missing or malformed."""

    code = "VALIDATION_FAILED"
