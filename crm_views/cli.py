"""Command-line entry point that loads one page view and prints it as JSON.

Usage:
    python -m crm_views dashboard --seed fixtures/demo.json
    python -m crm_views tasks --seed fixtures/demo.json --status overdue
    python -m crm_views quotes --store postgres --sort-by expires_on --page 1
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import fields, is_dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from dotenv import load_dotenv
from pydantic import BaseModel

from .config import DatabaseConfig, ViewSettings
from .date_windows import PeriodToken, normalize_timestamp
from .errors import CrmViewError
from .filters import ALL, CompletionStatus
from .pages import PAGES, QUOTE_SORT_FIELDS, contact_detail_page
from .postgres_store import PostgresRecordStore
from .record_store import InMemoryRecordStore, RecordStore, SortOrder
from .repositories import Repositories
from .seed import read_fixture, seed_store
from .view_coordinator import ViewCoordinator, ViewState

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--seed", type=Path, help="JSON fixture loaded into the in-memory store.")
    common.add_argument(
        "--store",
        choices=["memory", "postgres"],
        help="Record store backend (default: CRM_STORE or memory).",
    )
    common.add_argument("--now", help="ISO timestamp used as the current time for date windows.")
    common.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )

    parser = argparse.ArgumentParser(description="Render CRM page views from a record store.")
    pages = parser.add_subparsers(dest="page", required=True)

    pages.add_parser("dashboard", parents=[common], help="Pipeline metrics, recent activities, upcoming tasks.")
    pages.add_parser("deals", parents=[common], help="Deals grouped by pipeline stage.")

    contacts = pages.add_parser("contacts", parents=[common], help="Contact list or a single contact.")
    contacts.add_argument("--search", default="")
    contacts.add_argument("--id", type=int, dest="contact_id", help="Show one contact with its deals and activities.")

    tasks = pages.add_parser("tasks", parents=[common], help="Tasks with status and priority filters.")
    tasks.add_argument("--search", default="")
    tasks.add_argument("--status", default=CompletionStatus.ALL.value, choices=[s.value for s in CompletionStatus])
    tasks.add_argument("--priority", default=ALL, choices=[ALL, "low", "medium", "high"])

    activities = pages.add_parser("activities", parents=[common], help="Activity timeline.")
    activities.add_argument("--search", default="")
    activities.add_argument("--type", default=ALL, choices=[ALL, "call", "email", "meeting", "note"])
    activities.add_argument("--period", default=PeriodToken.ALL.value, choices=[token.value for token in PeriodToken])

    quotes = pages.add_parser("quotes", parents=[common], help="Server-side paged quotes.")
    quotes.add_argument("--search", default="")
    quotes.add_argument("--sort-by", default="name", choices=list(QUOTE_SORT_FIELDS))
    quotes.add_argument("--sort-order", default=SortOrder.ASC.value, choices=[order.value for order in SortOrder])
    quotes.add_argument("--page", type=int, default=0, dest="page_number")

    return parser.parse_args(list(argv))


def to_jsonable(value: Any) -> Any:
    """Convert views, rows and models into JSON-serializable structures."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_jsonable(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _clock(now: Optional[str]) -> Callable[[], datetime]:
    if not now:
        return datetime.now
    fixed = normalize_timestamp(now)
    if not isinstance(fixed, datetime):
        raise ValueError(f"--now must be an ISO timestamp, got '{now}'.")
    return lambda: fixed


def build_store(kind: str, settings: ViewSettings) -> RecordStore:
    if kind == "postgres":
        return PostgresRecordStore(DatabaseConfig.from_env())
    return InMemoryRecordStore(latency=settings.latency_ms / 1000)


def build_page(
    args: argparse.Namespace,
    repos: Repositories,
    settings: ViewSettings,
    clock: Callable[[], datetime],
) -> ViewCoordinator:
    if args.page == "contacts" and args.contact_id is not None:
        return contact_detail_page(repos, args.contact_id, settings, clock=clock)
    page = PAGES[args.page](repos, settings, clock=clock)
    if args.page == "contacts":
        page.apply_filter(search=args.search)
    elif args.page == "tasks":
        page.apply_filter(search=args.search, status=args.status, priority=args.priority)
    elif args.page == "activities":
        page.apply_filter(search=args.search, type=args.type, period=args.period)
    elif args.page == "quotes":
        page.apply_filter(
            search=args.search,
            sort_by=args.sort_by,
            sort_order=args.sort_order,
            page=max(args.page_number, 0),
        )
    return page


async def run(args: argparse.Namespace) -> int:
    settings = ViewSettings.from_env()
    store_kind = args.store or settings.store
    clock = _clock(args.now)
    if args.seed and store_kind != "memory":
        print("--seed only applies to the in-memory store.", file=sys.stderr)
        return 2

    store = build_store(store_kind, settings)
    async with store:
        repos = Repositories.for_store(store, clock=clock)
        if args.seed:
            seed_store(store, repos, read_fixture(args.seed))  # type: ignore[arg-type]
        page = build_page(args, repos, settings, clock)
        state = await page.load()
        if state is not ViewState.READY:
            print(f"{page.message}: {page.error}", file=sys.stderr)
            return 1
        print(json.dumps(to_jsonable(page.view), indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except (CrmViewError, ValueError, OSError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
