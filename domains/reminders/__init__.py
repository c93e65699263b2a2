"""Reminders: server-side scheduling and triggering plus the client-local mirror.

Server timers are APScheduler date jobs keyed by reminder id; reminders
persist in SQLite.
"""

from .types import Reminder, ReminderType, RecurrencePattern, ReminderEvent
from .errors import (
    ReminderError,
    ValidationError,
    NotFound,
    SchedulingFailure,
    PersistenceFailure,
)
from .recurrence import next_occurrence, parse_pattern
from .store import ReminderStore, TaskLookup
from .scheduler import ServerJobRegistry
from .events import ReminderEvents
from .notify import NotificationContent, NotificationSink, TriggerSpec, WebhookNotificationSink
from .dispatcher import ReminderDispatcher
from .client import ClientReminder, ClientNotificationScheduler, LocalMirror, start_upcoming_checks
from .handler import reload_reminders_on_startup, start_reminder_polling

__all__ = [
    "Reminder",
    "ReminderType",
    "RecurrencePattern",
    "ReminderEvent",
    "ReminderError",
    "ValidationError",
    "NotFound",
    "SchedulingFailure",
    "PersistenceFailure",
    "next_occurrence",
    "parse_pattern",
    "ReminderStore",
    "TaskLookup",
    "ServerJobRegistry",
    "ReminderEvents",
    "NotificationContent",
    "NotificationSink",
    "TriggerSpec",
    "WebhookNotificationSink",
    "ReminderDispatcher",
    "ClientReminder",
    "ClientNotificationScheduler",
    "LocalMirror",
    "start_upcoming_checks",
    "reload_reminders_on_startup",
    "start_reminder_polling",
]
