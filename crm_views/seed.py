"""Load JSON fixtures into an in-memory record store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

from .errors import ValidationFailure
from .record_store import InMemoryRecordStore
from .repositories import EntityRepository, Repositories

logger = logging.getLogger(__name__)

# Fixture section name -> repository attribute on ``Repositories``.
SEED_SECTIONS: Mapping[str, str] = {
    "contacts": "contacts",
    "deals": "deals",
    "tasks": "tasks",
    "activities": "activities",
    "quotes": "quotes",
}


def read_fixture(path: Union[str, Path]) -> Dict[str, List[Dict[str, Any]]]:
    """Read a fixture file of the form ``{"contacts": [...], "deals": [...]}``."""
    with Path(path).open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValidationFailure(f"Fixture {path} must contain a JSON object.")
    unknown = sorted(set(data) - set(SEED_SECTIONS))
    if unknown:
        raise ValidationFailure(f"Unknown fixture sections: {', '.join(unknown)}.")
    return data


def _normalized_rows(repository: EntityRepository, rows: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    normalized = []
    for row in rows:
        model = repository.normalize(row)
        record = model.to_record()
        record["id"] = model.id  # type: ignore[attr-defined]
        for stamp in ("created_at", "updated_at"):
            value = getattr(model, stamp, None)
            if value is not None:
                record[stamp] = value
        normalized.append(record)
    return normalized


def seed_store(
    store: InMemoryRecordStore,
    repositories: Repositories,
    data: Mapping[str, List[Mapping[str, Any]]],
) -> Dict[str, int]:
    """Normalize fixture rows through each repository model and bulk-load them.

    Rows may use snake_case or camelCase keys; the store always receives the
    snake_case shape so exact-match listings behave the same for every source.
    Returns the number of records loaded per section.
    """
    loaded: Dict[str, int] = {}
    by_entity: Dict[str, List[Dict[str, Any]]] = {}
    for section, attr in SEED_SECTIONS.items():
        rows = data.get(section) or []
        repository: EntityRepository = getattr(repositories, attr)
        by_entity[repository.entity] = _normalized_rows(repository, rows)
        loaded[section] = len(rows)
    store.seed(by_entity)
    logger.info(
        "Seeded in-memory store: %s",
        ", ".join(f"{count} {section}" for section, count in loaded.items()),
    )
    return loaded
