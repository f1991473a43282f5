"""Page views built on :class:`~crm_views.view_coordinator.ViewCoordinator`.

Each page is a configuration: the collections it loads in parallel, the
criteria it starts with, and a builder that turns cached collections plus
criteria into a derived view. Builders are pure and synchronous, so a filter
change is applied to the cache without touching the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .aggregates import GroupSummary, count, count_by, group_by, sum_of, summarize_groups
from .config import ViewSettings
from .crm_models import (
    DEAL_STAGE_ORDER,
    Activity,
    ActivityType,
    Contact,
    Deal,
    DealStage,
    Quote,
    Task,
)
from .date_windows import DateLabel, date_label, format_timestamp, is_past
from .display import (
    Badge,
    activity_type_badge,
    format_duration,
    priority_badge,
    quote_status_badge,
    stage_badge,
)
from .filters import (
    ALL,
    CategoryEquals,
    CompletionFilter,
    CompletionStatus,
    DateWindowFilter,
    TextSearch,
    apply_filters,
)
from .record_store import SortOrder
from .reference_resolver import ReferenceResolver
from .repositories import Page, Repositories
from .view_coordinator import (
    MutationResult,
    ViewCoordinator,
    ViewInputs,
    ViewState,
    append_record,
    remove_record,
    replace_record,
)

_DEFAULT_SETTINGS = ViewSettings()

CONTACT_SEARCH_FIELDS = ("name", "email", "company")
ACTIVITY_TYPE_ORDER = tuple(member.value for member in ActivityType)
QUOTE_SORT_FIELDS = ("name", "status", "quote_date", "expires_on")
RECENT_ACTIVITY_LIMIT = 5
UPCOMING_TASK_LIMIT = 8

Clock = Callable[[], datetime]


def _collection(inputs: ViewInputs, name: str) -> List[Any]:
    return list(inputs.collections.get(name) or [])


def _resolver(records: Sequence[Any], entity: str, settings: ViewSettings) -> ReferenceResolver:
    return ReferenceResolver(records, placeholder=settings.placeholder_for(entity))


# ----------------------------------------------------------------------
# Rows
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class DealRow:
    deal: Deal
    contact_name: str
    stage: Badge


@dataclass(frozen=True)
class TaskRow:
    task: Task
    contact_name: Optional[str]
    due: DateLabel
    priority: Badge
    overdue: bool


@dataclass(frozen=True)
class ActivityRow:
    activity: Activity
    contact_name: str
    deal_title: Optional[str]
    type: Badge
    when: str
    duration: Optional[str]


@dataclass(frozen=True)
class QuoteRow:
    quote: Quote
    status: Badge
    contact_name: Optional[str]
    deal_title: Optional[str]


def _deal_row(deal: Deal, contacts: ReferenceResolver) -> DealRow:
    return DealRow(deal=deal, contact_name=contacts.label(deal.contact_id), stage=stage_badge(deal.stage))


def _task_row(task: Task, contacts: ReferenceResolver, now: datetime) -> TaskRow:
    return TaskRow(
        task=task,
        contact_name=contacts.optional_label(task.contact_id),
        due=date_label(task.due_date, now),
        priority=priority_badge(task.priority),
        overdue=_is_overdue(task, now),
    )


def _activity_row(activity: Activity, contacts: ReferenceResolver, deals: ReferenceResolver) -> ActivityRow:
    return ActivityRow(
        activity=activity,
        contact_name=contacts.label(activity.contact_id),
        deal_title=deals.optional_label(activity.deal_id),
        type=activity_type_badge(activity.type),
        when=format_timestamp(activity.date),
        duration=format_duration(activity.duration) if activity.is_timed else None,
    )


def _is_overdue(task: Task, now: datetime) -> bool:
    return not task.completed and is_past(task.due_date, now)


def _by_due_date(tasks: Sequence[Task]) -> List[Task]:
    return sorted(tasks, key=lambda task: task.due_date)


def _most_recent_first(activities: Sequence[Activity]) -> List[Activity]:
    return sorted(activities, key=lambda activity: activity.date, reverse=True)


# ----------------------------------------------------------------------
# Contacts
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ContactsView:
    contacts: List[Contact]
    total: int


def build_contacts_view(inputs: ViewInputs) -> ContactsView:
    contacts = _collection(inputs, "contacts")
    visible = apply_filters(contacts, [TextSearch(inputs.criteria.get("search"), CONTACT_SEARCH_FIELDS)])
    return ContactsView(contacts=visible, total=len(contacts))


def contacts_page(
    repos: Repositories,
    settings: ViewSettings = _DEFAULT_SETTINGS,
    *,
    clock: Clock = datetime.now,
) -> ViewCoordinator[ContactsView]:
    return ViewCoordinator(
        {"contacts": lambda criteria: repos.contacts.list()},
        build_contacts_view,
        criteria={"search": ""},
        name="contacts",
        clock=clock,
    )


async def delete_contact(
    page: ViewCoordinator[ContactsView], repos: Repositories, contact_id: int
) -> MutationResult[Contact]:
    return await page.mutate(lambda: repos.contacts.delete(contact_id), on_success=remove_record("contacts"))


async def update_contact(
    page: ViewCoordinator[ContactsView], repos: Repositories, contact_id: int, fields: Mapping[str, Any]
) -> MutationResult[Contact]:
    return await page.mutate(lambda: repos.contacts.update(contact_id, fields), on_success=replace_record("contacts"))


@dataclass(frozen=True)
class ContactDetailView:
    contact: Contact
    deals: List[DealRow]
    activities: List[ActivityRow]
    open_deal_value: float


def build_contact_detail_view(inputs: ViewInputs, settings: ViewSettings = _DEFAULT_SETTINGS) -> ContactDetailView:
    contact: Contact = inputs.collections["contact"]
    deals = _collection(inputs, "deals")
    contacts = _resolver([contact], "Contact", settings)
    deal_titles = _resolver(deals, "Deal", settings)
    return ContactDetailView(
        contact=contact,
        deals=[_deal_row(deal, contacts) for deal in deals],
        activities=[
            _activity_row(activity, contacts, deal_titles)
            for activity in _most_recent_first(_collection(inputs, "activities"))
        ],
        open_deal_value=sum_of([deal for deal in deals if deal.is_open], "value"),
    )


def contact_detail_page(
    repos: Repositories,
    contact_id: int,
    settings: ViewSettings = _DEFAULT_SETTINGS,
    *,
    clock: Clock = datetime.now,
) -> ViewCoordinator[ContactDetailView]:
    """The contact plus its deals and activities, fetched concurrently."""
    return ViewCoordinator(
        {
            "contact": lambda criteria: repos.contacts.get(contact_id),
            "deals": lambda criteria: repos.deals.list_for_contact(contact_id),
            "activities": lambda criteria: repos.activities.list_for_contact(contact_id),
        },
        partial(build_contact_detail_view, settings=settings),
        name="contact details",
        clock=clock,
    )


# ----------------------------------------------------------------------
# Deals pipeline
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class StageColumn:
    stage: str
    badge: Badge
    deals: List[DealRow]
    count: int
    total_value: float


@dataclass(frozen=True)
class PipelineView:
    columns: List[StageColumn]
    deal_count: int
    total_value: float


def build_pipeline_view(inputs: ViewInputs, settings: ViewSettings = _DEFAULT_SETTINGS) -> PipelineView:
    deals = _collection(inputs, "deals")
    contacts = _resolver(_collection(inputs, "contacts"), "Contact", settings)
    # Deals whose stage is outside the known set are shown with new leads.
    groups = group_by(deals, lambda deal: deal.stage, DEAL_STAGE_ORDER, fallback_key=DealStage.LEAD.value)
    columns = [
        StageColumn(
            stage=stage,
            badge=stage_badge(stage),
            deals=[_deal_row(deal, contacts) for deal in members],
            count=len(members),
            total_value=sum_of(members, "value"),
        )
        for stage, members in groups.items()
    ]
    return PipelineView(columns=columns, deal_count=len(deals), total_value=sum_of(deals, "value"))


def deals_page(
    repos: Repositories,
    settings: ViewSettings = _DEFAULT_SETTINGS,
    *,
    clock: Clock = datetime.now,
) -> ViewCoordinator[PipelineView]:
    return ViewCoordinator(
        {
            "deals": lambda criteria: repos.deals.list(),
            "contacts": lambda criteria: repos.contacts.list(),
        },
        partial(build_pipeline_view, settings=settings),
        name="deals",
        clock=clock,
    )


async def move_deal(
    page: ViewCoordinator[PipelineView], repos: Repositories, deal_id: int, stage: str
) -> MutationResult[Deal]:
    return await page.mutate(lambda: repos.deals.update_stage(deal_id, stage), on_success=replace_record("deals"))


async def update_deal(
    page: ViewCoordinator[PipelineView], repos: Repositories, deal_id: int, fields: Mapping[str, Any]
) -> MutationResult[Deal]:
    return await page.mutate(lambda: repos.deals.update(deal_id, fields), on_success=replace_record("deals"))


async def delete_deal(page: ViewCoordinator[PipelineView], repos: Repositories, deal_id: int) -> MutationResult[Deal]:
    return await page.mutate(lambda: repos.deals.delete(deal_id), on_success=remove_record("deals"))


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class TasksView:
    rows: List[TaskRow]
    completed_count: int
    pending_count: int
    overdue_count: int


def build_tasks_view(inputs: ViewInputs, settings: ViewSettings = _DEFAULT_SETTINGS) -> TasksView:
    tasks = _by_due_date(_collection(inputs, "tasks"))
    contacts = _resolver(_collection(inputs, "contacts"), "Contact", settings)
    criteria = inputs.criteria
    visible = apply_filters(
        tasks,
        [
            TextSearch(
                criteria.get("search"),
                ("title", "description", lambda task: contacts.optional_label(task.contact_id)),
            ),
            CompletionFilter(criteria.get("status", CompletionStatus.ALL), inputs.now),
            CategoryEquals("priority", criteria.get("priority", ALL)),
        ],
    )
    return TasksView(
        rows=[_task_row(task, contacts, inputs.now) for task in visible],
        completed_count=count(tasks, lambda task: task.completed),
        pending_count=count(tasks, lambda task: not task.completed),
        overdue_count=count(tasks, lambda task: _is_overdue(task, inputs.now)),
    )


def tasks_page(
    repos: Repositories,
    settings: ViewSettings = _DEFAULT_SETTINGS,
    *,
    clock: Clock = datetime.now,
) -> ViewCoordinator[TasksView]:
    return ViewCoordinator(
        {
            "tasks": lambda criteria: repos.tasks.list(),
            "contacts": lambda criteria: repos.contacts.list(),
        },
        partial(build_tasks_view, settings=settings),
        criteria={"search": "", "status": CompletionStatus.ALL.value, "priority": ALL},
        name="tasks",
        clock=clock,
    )


async def toggle_task(page: ViewCoordinator[TasksView], repos: Repositories, task_id: int) -> MutationResult[Task]:
    return await page.mutate(lambda: repos.tasks.toggle_complete(task_id), on_success=replace_record("tasks"))


async def add_task(
    page: ViewCoordinator[TasksView], repos: Repositories, fields: Mapping[str, Any]
) -> MutationResult[Task]:
    return await page.mutate(lambda: repos.tasks.create(fields), on_success=append_record("tasks"))


async def update_task(
    page: ViewCoordinator[TasksView], repos: Repositories, task_id: int, fields: Mapping[str, Any]
) -> MutationResult[Task]:
    return await page.mutate(lambda: repos.tasks.update(task_id, fields), on_success=replace_record("tasks"))


async def delete_task(page: ViewCoordinator[TasksView], repos: Repositories, task_id: int) -> MutationResult[Task]:
    return await page.mutate(lambda: repos.tasks.delete(task_id), on_success=remove_record("tasks"))


# ----------------------------------------------------------------------
# Activities
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ActivitiesView:
    rows: List[ActivityRow]
    type_counts: Dict[str, int]
    total: int


def build_activities_view(inputs: ViewInputs, settings: ViewSettings = _DEFAULT_SETTINGS) -> ActivitiesView:
    activities = _most_recent_first(_collection(inputs, "activities"))
    contacts = _resolver(_collection(inputs, "contacts"), "Contact", settings)
    deals = _resolver(_collection(inputs, "deals"), "Deal", settings)
    criteria = inputs.criteria
    visible = apply_filters(
        activities,
        [
            TextSearch(
                criteria.get("search"),
                ("description", lambda activity: contacts.label(activity.contact_id)),
            ),
            CategoryEquals("type", criteria.get("type", ALL)),
            DateWindowFilter("date", criteria.get("period"), inputs.now),
        ],
    )
    return ActivitiesView(
        rows=[_activity_row(activity, contacts, deals) for activity in visible],
        type_counts=count_by(activities, lambda activity: activity.type, ACTIVITY_TYPE_ORDER),
        total=len(activities),
    )


def activities_page(
    repos: Repositories,
    settings: ViewSettings = _DEFAULT_SETTINGS,
    *,
    clock: Clock = datetime.now,
) -> ViewCoordinator[ActivitiesView]:
    return ViewCoordinator(
        {
            "activities": lambda criteria: repos.activities.list(),
            "contacts": lambda criteria: repos.contacts.list(),
            "deals": lambda criteria: repos.deals.list(),
        },
        partial(build_activities_view, settings=settings),
        criteria={"search": "", "type": ALL, "period": ALL},
        name="activities",
        clock=clock,
    )


async def log_activity(
    page: ViewCoordinator[ActivitiesView], repos: Repositories, fields: Mapping[str, Any]
) -> MutationResult[Activity]:
    return await page.mutate(lambda: repos.activities.create(fields), on_success=append_record("activities"))


async def delete_activity(
    page: ViewCoordinator[ActivitiesView], repos: Repositories, activity_id: int
) -> MutationResult[Activity]:
    return await page.mutate(lambda: repos.activities.delete(activity_id), on_success=remove_record("activities"))


# ----------------------------------------------------------------------
# Quotes (server-side search, sort and paging)
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class QuotesView:
    rows: List[QuoteRow]
    total: int
    page: int
    total_pages: int
    sort_by: str
    sort_order: str


def build_quotes_view(inputs: ViewInputs, settings: ViewSettings = _DEFAULT_SETTINGS) -> QuotesView:
    result: Page[Quote] = inputs.collections["quotes"]
    contacts = _resolver(_collection(inputs, "contacts"), "Contact", settings)
    deals = _resolver(_collection(inputs, "deals"), "Deal", settings)
    rows = [
        QuoteRow(
            quote=quote,
            status=quote_status_badge(quote.status),
            contact_name=contacts.optional_label(quote.contact_id),
            deal_title=deals.optional_label(quote.deal_id),
        )
        for quote in result.records
    ]
    return QuotesView(
        rows=rows,
        total=result.total,
        page=result.page,
        total_pages=result.total_pages,
        sort_by=inputs.criteria.get("sort_by", "name"),
        sort_order=SortOrder(inputs.criteria.get("sort_order", SortOrder.ASC)).value,
    )


def quotes_page(
    repos: Repositories,
    settings: ViewSettings = _DEFAULT_SETTINGS,
    *,
    clock: Clock = datetime.now,
) -> ViewCoordinator[QuotesView]:
    def load_quotes(criteria: Mapping[str, Any]):
        return repos.quotes.list_page(
            search=criteria.get("search"),
            sort_by=criteria.get("sort_by"),
            sort_order=criteria.get("sort_order", SortOrder.ASC),
            page=criteria.get("page", 0),
            limit=settings.page_size,
        )

    return ViewCoordinator(
        {
            "quotes": load_quotes,
            "contacts": lambda criteria: repos.contacts.list(),
            "deals": lambda criteria: repos.deals.list(),
        },
        partial(build_quotes_view, settings=settings),
        criteria={"search": "", "sort_by": "name", "sort_order": SortOrder.ASC.value, "page": 0},
        refetch_on=("search", "sort_by", "sort_order", "page"),
        name="quotes",
        clock=clock,
    )


async def search_quotes(page: ViewCoordinator[QuotesView], term: str) -> ViewState:
    """A new search always starts again from the first page."""
    return await page.update_criteria(search=term, page=0)


async def sort_quotes(page: ViewCoordinator[QuotesView], field: str) -> ViewState:
    """Sorting by the current field flips the direction; a new field sorts ascending."""
    if field not in QUOTE_SORT_FIELDS:
        raise ValueError(f"Quotes cannot be sorted by '{field}'.")
    order = SortOrder.ASC
    if page.criteria.get("sort_by") == field:
        current = SortOrder(page.criteria.get("sort_order", SortOrder.ASC))
        order = SortOrder.DESC if current is SortOrder.ASC else SortOrder.ASC
    return await page.update_criteria(sort_by=field, sort_order=order.value, page=0)


async def goto_quote_page(page: ViewCoordinator[QuotesView], number: int) -> ViewState:
    last = max((page.view.total_pages if page.view else 1) - 1, 0)
    return await page.update_criteria(page=min(max(number, 0), last))


# ----------------------------------------------------------------------
# Dashboard
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class DashboardView:
    total_deal_value: float
    won_value: float
    active_deals: int
    overdue_tasks: int
    contact_count: int
    stage_summary: List[GroupSummary]
    recent_activities: List[ActivityRow]
    upcoming_tasks: List[TaskRow]


def build_dashboard_view(inputs: ViewInputs, settings: ViewSettings = _DEFAULT_SETTINGS) -> DashboardView:
    deals = _collection(inputs, "deals")
    tasks = _collection(inputs, "tasks")
    contacts = _resolver(_collection(inputs, "contacts"), "Contact", settings)
    deal_titles = _resolver(deals, "Deal", settings)
    now = inputs.now

    won = [deal for deal in deals if deal.stage == DealStage.WON.value]
    pending = _by_due_date([task for task in tasks if not task.completed])
    recent = _most_recent_first(_collection(inputs, "activities"))[:RECENT_ACTIVITY_LIMIT]
    stages = group_by(deals, lambda deal: deal.stage, DEAL_STAGE_ORDER, fallback_key=DealStage.LEAD.value)

    return DashboardView(
        total_deal_value=sum_of(deals, "value"),
        won_value=sum_of(won, "value"),
        active_deals=count(deals, lambda deal: deal.is_open),
        overdue_tasks=count(pending, lambda task: _is_overdue(task, now)),
        contact_count=len(contacts),
        stage_summary=summarize_groups(stages, "value"),
        recent_activities=[_activity_row(activity, contacts, deal_titles) for activity in recent],
        upcoming_tasks=[_task_row(task, contacts, now) for task in pending[:UPCOMING_TASK_LIMIT]],
    )


def dashboard_page(
    repos: Repositories,
    settings: ViewSettings = _DEFAULT_SETTINGS,
    *,
    clock: Clock = datetime.now,
) -> ViewCoordinator[DashboardView]:
    return ViewCoordinator(
        {
            "deals": lambda criteria: repos.deals.list(),
            "contacts": lambda criteria: repos.contacts.list(),
            "activities": lambda criteria: repos.activities.list(),
            "tasks": lambda criteria: repos.tasks.list(),
        },
        partial(build_dashboard_view, settings=settings),
        name="dashboard",
        clock=clock,
    )


PAGES: Mapping[str, Callable[..., ViewCoordinator]] = {
    "dashboard": dashboard_page,
    "contacts": contacts_page,
    "deals": deals_page,
    "tasks": tasks_page,
    "activities": activities_page,
    "quotes": quotes_page,
}
