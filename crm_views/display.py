"""Badge and value formatting for page rows.

Every lookup has a default bucket so a stored value outside its enumerated
set renders instead of failing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .crm_models import ActivityType, DealStage, QuoteStatus, TaskPriority

DEFAULT_VARIANT = "default"


@dataclass(frozen=True)
class Badge:
    label: str
    variant: str


STAGE_VARIANTS: Mapping[str, str] = {
    DealStage.LEAD.value: "default",
    DealStage.QUALIFIED.value: "info",
    DealStage.PROPOSAL.value: "warning",
    DealStage.NEGOTIATION.value: "primary",
    DealStage.WON.value: "success",
    DealStage.LOST.value: "danger",
}

PRIORITY_VARIANTS: Mapping[str, str] = {
    TaskPriority.HIGH.value: "danger",
    TaskPriority.MEDIUM.value: "warning",
    TaskPriority.LOW.value: "success",
}

ACTIVITY_TYPE_LABELS: Mapping[str, str] = {
    ActivityType.CALL.value: "Call",
    ActivityType.EMAIL.value: "Email",
    ActivityType.MEETING.value: "Meeting",
    ActivityType.NOTE.value: "Note",
}

ACTIVITY_TYPE_VARIANTS: Mapping[str, str] = {
    ActivityType.CALL.value: "info",
    ActivityType.EMAIL.value: "success",
    ActivityType.MEETING.value: "primary",
    ActivityType.NOTE.value: "warning",
}

QUOTE_STATUS_VARIANTS: Mapping[str, str] = {
    QuoteStatus.DRAFT.value: "default",
    QuoteStatus.SENT.value: "info",
    QuoteStatus.ACCEPTED.value: "success",
    QuoteStatus.REJECTED.value: "danger",
}


def stage_badge(stage: Any) -> Badge:
    return Badge(str(stage or DealStage.LEAD.value), STAGE_VARIANTS.get(stage, DEFAULT_VARIANT))


def priority_badge(priority: Any) -> Badge:
    label = str(priority).capitalize() if priority else TaskPriority.MEDIUM.value.capitalize()
    return Badge(label, PRIORITY_VARIANTS.get(priority, DEFAULT_VARIANT))


def activity_type_badge(activity_type: Any) -> Badge:
    return Badge(
        ACTIVITY_TYPE_LABELS.get(activity_type, "Activity"),
        ACTIVITY_TYPE_VARIANTS.get(activity_type, DEFAULT_VARIANT),
    )


def quote_status_badge(status: Any) -> Badge:
    return Badge(str(status or QuoteStatus.DRAFT.value), QUOTE_STATUS_VARIANTS.get(status, DEFAULT_VARIANT))


def format_currency(value: Optional[float]) -> str:
    """Whole-dollar amount with thousands separators, e.g. ``$12,500``."""
    return f"${value or 0:,.0f}"


def format_duration(minutes: Optional[int]) -> Optional[str]:
    if not minutes:
        return None
    return f"{minutes} min"
