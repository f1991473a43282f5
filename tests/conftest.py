"""Shared fixtures: a fixed clock and a small seeded CRM."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest

from crm_views.record_store import InMemoryRecordStore
from crm_views.repositories import Repositories
from crm_views.seed import seed_store

# Saturday; the week runs Monday 2024-06-10 to Sunday 2024-06-16.
NOW = datetime(2024, 6, 15, 10, 0)

SEED: Dict[str, List[Dict[str, Any]]] = {
    "contacts": [
        {"id": 1, "name": "Ada Lovelace", "email": "ada@analytical.io", "company": "Analytical Engines", "position": "CTO"},
        {"id": 2, "name": "Grace Hopper", "email": "grace@navy.mil", "company": "US Navy"},
        {"id": 3, "name": "Alan Turing", "email": "alan@bletchley.co.uk", "company": "Bletchley Park"},
    ],
    "deals": [
        {"Id": 1, "title": "Engine retrofit", "value": 50000, "stage": "Lead", "contactId": 1, "probability": 10},
        {"Id": 2, "title": "Compiler license", "value": 30000, "stage": "Qualified", "contactId": 2, "probability": 40},
        {"Id": 3, "title": "Cipher audit", "value": 20000, "stage": "Won", "contactId": 3, "probability": 100},
        {"Id": 4, "title": "Navy training", "value": 10000, "stage": "Lost", "contactId": 2, "probability": 0},
        {"Id": 5, "title": "Difference engine", "value": 5000, "stage": "Proposal", "contactId": 99, "probability": 60},
    ],
    "tasks": [
        {"id": 1, "title": "Send proposal", "dueDate": "2024-06-15T09:00:00", "priority": "high", "contactId": 1},
        {"id": 2, "title": "Follow up with Grace", "dueDate": "2024-06-16T11:00:00", "priority": "medium", "contactId": 2},
        {"id": 3, "title": "Prepare audit report", "dueDate": "2024-06-12T17:00:00", "priority": "high", "contactId": 3},
        {"id": 4, "title": "Archive contract", "dueDate": "2024-06-10T12:00:00", "priority": "low", "completed": True, "contactId": 3},
        {"id": 5, "title": "Quarterly review", "description": "Board deck", "dueDate": "2024-07-01T09:00:00", "priority": "urgent"},
    ],
    "activities": [
        {"id": 1, "type": "call", "contactId": 1, "dealId": 1, "description": "Discovery call about engine retrofit", "date": "2024-06-15T08:30:00", "duration": 30},
        {"id": 2, "type": "email", "contactId": 2, "dealId": 2, "description": "Sent compiler license terms", "date": "2024-06-14T16:00:00"},
        {"id": 3, "type": "meeting", "contactId": 3, "dealId": 3, "description": "Audit kickoff meeting", "date": "2024-06-11T10:00:00", "duration": 60},
        {"id": 4, "type": "note", "contactId": 99, "description": "Left voicemail for unknown lead", "date": "2024-06-05T12:00:00"},
        {"id": 5, "type": "email", "contactId": 1, "description": "Shared retrofit timeline", "date": "2024-06-13T09:15:00"},
        {"id": 6, "type": "call", "contactId": 2, "dealId": 4, "description": "Training debrief", "date": "2024-05-20T14:00:00", "duration": 15},
    ],
    "quotes": [
        {"Id": 1, "Name": "Engine retrofit quote", "status": "Draft", "contactId": 1, "dealId": 1, "quoteDate": "2024-06-01", "expiresOn": "2024-07-01"},
        {"Id": 2, "Name": "Compiler license quote", "status": "Sent", "contactId": 2, "dealId": 2, "quoteDate": "2024-06-05", "expiresOn": "2024-06-30"},
        {
            "Id": 3,
            "Name": "Audit quote",
            "status": "Accepted",
            "contactId": 3,
            "dealId": 3,
            "quoteDate": "2024-05-28",
            "expiresOn": "2024-06-28",
            "billingStreet": "1 Bletchley Park",
            "billingCity": "Milton Keynes",
            "billingCountry": "UK",
            "Tags": "priority, audit",
        },
    ],
}


@dataclass
class Session:
    store: InMemoryRecordStore
    repos: Repositories


OpenSession = Callable[..., Awaitable[Session]]


@pytest.fixture
def now() -> datetime:
    """The wall clock every test runs at."""
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def seed_data() -> Dict[str, List[Dict[str, Any]]]:
    """A fresh copy of the seed fixture per test."""
    return copy.deepcopy(SEED)


@pytest.fixture
def open_session(clock: Callable[[], datetime], seed_data: Dict[str, List[Dict[str, Any]]]) -> OpenSession:
    """Factory for an opened in-memory store with repositories bound to it.

    Pass ``data=None`` (the default) for the standard seed, ``data={}`` for an
    empty store.
    """

    async def _open(data: Optional[Dict[str, List[Dict[str, Any]]]] = None, **store_kwargs: Any) -> Session:
        store = InMemoryRecordStore(**store_kwargs)
        await store.open()
        repos = Repositories.for_store(store, clock=clock)
        seed_store(store, repos, seed_data if data is None else data)
        return Session(store=store, repos=repos)

    return _open
