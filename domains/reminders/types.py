"""Type definitions for reminders."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ReminderType(str, Enum):
    """Delivery channel tag. Channel dispatch itself happens elsewhere."""
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"


class RecurrencePattern(str, Enum):
    """How a recurring reminder produces its successor."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ReminderEvent(str, Enum):
    """Events pushed to a user's subscribers."""
    CREATED = "reminder_created"
    UPDATED = "reminder_updated"
    DELETED = "reminder_deleted"
    SNOOZED = "reminder_snoozed"
    TRIGGERED = "reminder_triggered"


# Fields a caller may set on create/update
EDITABLE_FIELDS = (
    "title",
    "message",
    "scheduled_at",
    "type",
    "recurring",
    "recurring_pattern",
    "task_id",
)

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 500


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class Reminder:
    """A user-scheduled alert, optionally recurring and linked to a task."""
    id: str
    user_id: str
    title: str
    scheduled_at: datetime
    message: str = ""
    type: ReminderType = ReminderType.PUSH
    recurring: bool = False
    recurring_pattern: Optional[str] = None
    triggered: bool = False
    snoozed: bool = False
    snooze_count: int = 0
    task_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Serialize for JSON (events, API responses)."""
        data = asdict(self)
        data["type"] = self.type.value
        for key in ("scheduled_at", "created_at", "updated_at"):
            data[key] = data[key].isoformat()
        return data
