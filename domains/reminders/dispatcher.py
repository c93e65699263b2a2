"""Reminder lifecycle: create, update, delete, snooze, trigger.

User-initiated operations raise ReminderError subclasses to the caller.
Timer-initiated work (firing, recurring successors) never raises: failures
are logged as `reminder_trigger_failed ...` lines and counted in stats().
"""

import asyncio
import math
import weakref
from datetime import datetime, timedelta
from functools import partial
from typing import Optional

from dateutil.parser import isoparse

from config import DEFAULT_SNOOZE_MINUTES
from logger import logger
from .errors import NotFound, PersistenceFailure, ValidationError
from .events import ReminderEvents
from .notify import NotificationContent, NotificationSink
from .recurrence import next_occurrence, parse_pattern
from .scheduler import ServerJobRegistry
from .store import ReminderStore, TaskLookup
from .types import (
    EDITABLE_FIELDS,
    MESSAGE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    Reminder,
    ReminderEvent,
    ReminderType,
    ensure_utc,
)

# Upper bound on occurrences skipped when a recurring reminder fires late
MAX_CATCH_UP_STEPS = 10_000


def _parse_instant(value) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return ensure_utc(isoparse(value.strip()))
        except ValueError:
            pass
    raise ValidationError(f"Invalid scheduled_at: {value!r}")


def _validate(fields: dict, partial_update: bool) -> dict:
    """Normalize caller-supplied fields.

    Args:
        fields: Raw input (unknown keys are ignored)
        partial_update: True for update patches, where every field is optional

    Returns:
        Cleaned values for the keys that were supplied
    """
    values = {key: fields[key] for key in EDITABLE_FIELDS if key in fields}

    if "title" in values or not partial_update:
        title = values.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("title is required")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(f"title must be at most {TITLE_MAX_LENGTH} characters")
        values["title"] = title.strip()

    if "message" in values:
        message = values["message"] or ""
        if not isinstance(message, str):
            raise ValidationError("message must be a string")
        if len(message) > MESSAGE_MAX_LENGTH:
            raise ValidationError(f"message must be at most {MESSAGE_MAX_LENGTH} characters")
        values["message"] = message

    if "scheduled_at" in values or not partial_update:
        if values.get("scheduled_at") is None:
            raise ValidationError("scheduled_at is required")
        values["scheduled_at"] = _parse_instant(values["scheduled_at"])

    if "type" in values:
        raw_type = values["type"] or ReminderType.PUSH.value
        try:
            values["type"] = ReminderType(str(getattr(raw_type, "value", raw_type)).upper())
        except ValueError:
            raise ValidationError(f"type must be one of PUSH, EMAIL, SMS (got {raw_type!r})")

    if "recurring" in values:
        if not isinstance(values["recurring"], bool):
            raise ValidationError("recurring must be a boolean")

    if "recurring_pattern" in values:
        raw_pattern = values["recurring_pattern"]
        if raw_pattern in (None, "", "none"):
            values["recurring_pattern"] = None
        else:
            pattern = parse_pattern(raw_pattern)
            if pattern is None:
                raise ValidationError(
                    f"recurring_pattern must be daily, weekly or monthly (got {raw_pattern!r})"
                )
            values["recurring_pattern"] = pattern.value

    if "task_id" in values and values["task_id"] is not None:
        if not isinstance(values["task_id"], str) or not values["task_id"]:
            raise ValidationError("task_id must be a non-empty string")

    return values


def _check_recurrence(recurring: bool, pattern: Optional[str]) -> None:
    if recurring and parse_pattern(pattern) is None:
        raise ValidationError("recurring reminders need a recurring_pattern (daily, weekly or monthly)")


class ReminderDispatcher:
    """Owns reminder state transitions and keeps the job registry in step.

    Operations on one reminder id are serialized with a per-id lock. Calls that
    may fire a reminder immediately (`_schedule`) run after the lock is
    released, since firing takes the same lock.
    """

    def __init__(
        self,
        store: ReminderStore,
        tasks: TaskLookup,
        registry: ServerJobRegistry,
        events: Optional[ReminderEvents] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        self.store = store
        self.tasks = tasks
        self.registry = registry
        self.events = events or ReminderEvents()
        self.notifier = notifier
        self.clock = registry.clock
        # Entries drop out once no operation holds the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._stats = {
            "fired": 0,
            "trigger_failures": 0,
            "successors_created": 0,
        }

    def _lock(self, reminder_id: str) -> asyncio.Lock:
        lock = self._locks.get(reminder_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[reminder_id] = lock
        return lock

    def stats(self) -> dict:
        """Trigger counters plus the number of live timers."""
        return {**self._stats, "scheduled": len(self.registry)}

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    async def get(self, user_id: str, reminder_id: str) -> Reminder:
        return await self.store.find_by_id(reminder_id, user_id)

    async def list_reminders(
        self,
        user_id: str,
        *,
        triggered: Optional[bool] = None,
        reminder_type: Optional[str] = None,
        upcoming: bool = False,
        task_id: Optional[str] = None,
        sort_by: str = "scheduled_at",
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        """List a user's reminders.

        Returns:
            {"reminders": [Reminder, ...], "pagination": {page, limit, total, pages}}
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        reminders, total = await self.store.list_for_user(
            user_id,
            triggered=triggered,
            reminder_type=reminder_type,
            upcoming=upcoming,
            task_id=task_id,
            now=self.clock(),
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
        return {
            "reminders": reminders,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    # ------------------------------------------------------------
    # User-initiated operations
    # ------------------------------------------------------------

    async def create(self, user_id: str, fields: dict) -> Reminder:
        """Persist a new reminder and schedule it.

        Past instants are accepted and fire immediately.

        Raises:
            ValidationError: Bad input or task_id not owned by the user
            PersistenceFailure: Storage error
        """
        values = _validate(fields, partial_update=False)
        _check_recurrence(values.get("recurring", False), values.get("recurring_pattern"))
        await self._check_task(values.get("task_id"), user_id)

        reminder = await self.store.create({**values, "user_id": user_id})
        logger.info(f"Created reminder {reminder.id} for user {user_id} at {reminder.scheduled_at}")

        await self._emit(reminder.user_id, ReminderEvent.CREATED, reminder.to_dict())
        await self._schedule(reminder)
        return reminder

    async def update(self, user_id: str, reminder_id: str, patch: dict) -> Optional[Reminder]:
        """Apply a patch; reschedules when scheduled_at changes.

        Returns:
            The updated reminder, or None if it was deleted while the update was in flight

        Raises:
            NotFound: The reminder is not owned by user_id
            ValidationError: Bad input
            PersistenceFailure: Storage error (the previous timer is kept)
        """
        values = _validate(patch, partial_update=True)
        failure: Optional[PersistenceFailure] = None

        async with self._lock(reminder_id):
            existing = await self.store.find_by_id(reminder_id, user_id)
            _check_recurrence(
                values.get("recurring", existing.recurring),
                values.get("recurring_pattern", existing.recurring_pattern),
            )
            if values.get("task_id") and values["task_id"] != existing.task_id:
                await self._check_task(values["task_id"], user_id)

            rescheduled = (
                "scheduled_at" in values and values["scheduled_at"] != existing.scheduled_at
            )
            if rescheduled:
                self.registry.cancel(reminder_id)

            try:
                reminder = await self.store.update(reminder_id, values)
            except NotFound:
                logger.info(f"Reminder {reminder_id} deleted during update, ignoring")
                return None
            except PersistenceFailure as e:
                failure = e

        if failure is not None:
            if rescheduled:
                await self._restore_timer(existing, "update")
            raise failure

        await self._emit(user_id, ReminderEvent.UPDATED, reminder.to_dict())
        if rescheduled:
            await self._schedule(reminder)
        return reminder

    async def delete(self, user_id: str, reminder_id: str) -> None:
        """Cancel the timer, then delete the row.

        Raises:
            NotFound: The reminder is not owned by user_id
            PersistenceFailure: Storage error (the timer is put back)
        """
        failure: Optional[PersistenceFailure] = None

        async with self._lock(reminder_id):
            existing = await self.store.find_by_id(reminder_id, user_id)
            self.registry.cancel(reminder_id)
            try:
                await self.store.delete(reminder_id)
            except NotFound:
                logger.info(f"Reminder {reminder_id} already deleted")
            except PersistenceFailure as e:
                failure = e

        if failure is not None:
            await self._restore_timer(existing, "delete")
            raise failure

        logger.info(f"Deleted reminder {reminder_id} for user {user_id}")
        await self._emit(user_id, ReminderEvent.DELETED, {"id": reminder_id})

    async def snooze(
        self,
        user_id: str,
        reminder_id: str,
        minutes: Optional[float] = None,
    ) -> Optional[Reminder]:
        """Push the reminder `minutes` from now and clear its triggered flag.

        Raises:
            NotFound: The reminder is not owned by user_id
            ValidationError: minutes is not a positive number
            PersistenceFailure: Storage error (the previous timer is kept)
        """
        if minutes is None:
            minutes = DEFAULT_SNOOZE_MINUTES
        if isinstance(minutes, bool) or not isinstance(minutes, (int, float)) or minutes <= 0:
            raise ValidationError("minutes must be a positive number")
        failure: Optional[PersistenceFailure] = None

        async with self._lock(reminder_id):
            existing = await self.store.find_by_id(reminder_id, user_id)
            self.registry.cancel(reminder_id)
            try:
                reminder = await self.store.update(reminder_id, {
                    "scheduled_at": self.clock() + timedelta(minutes=minutes),
                    "triggered": False,
                    "snoozed": True,
                    "snooze_count": existing.snooze_count + 1,
                })
            except NotFound:
                logger.info(f"Reminder {reminder_id} deleted during snooze, ignoring")
                return None
            except PersistenceFailure as e:
                failure = e

        if failure is not None:
            await self._restore_timer(existing, "snooze")
            raise failure

        logger.info(f"Snoozed reminder {reminder_id} for {minutes} minutes")
        await self._emit(user_id, ReminderEvent.SNOOZED, reminder.to_dict())
        await self._schedule(reminder)
        return reminder

    async def mark_triggered(self, user_id: str, reminder_id: str) -> Optional[Reminder]:
        """Record delivery observed outside the timer path.

        Raises:
            NotFound: The reminder is not owned by user_id
            PersistenceFailure: Storage error (the timer is put back)
        """
        failure: Optional[PersistenceFailure] = None

        async with self._lock(reminder_id):
            existing = await self.store.find_by_id(reminder_id, user_id)
            self.registry.cancel(reminder_id)
            try:
                reminder = await self.store.update(reminder_id, {"triggered": True})
            except NotFound:
                return None
            except PersistenceFailure as e:
                failure = e

        if failure is not None:
            await self._restore_timer(existing, "mark_triggered")
            raise failure

        await self._emit(user_id, ReminderEvent.TRIGGERED, reminder.to_dict())
        return reminder

    async def reload_pending(self) -> int:
        """Re-create timers for non-triggered, future reminders after a restart.

        Returns:
            Count of reminders scheduled
        """
        pending = await self.store.get_pending()
        now = self.clock()
        loaded = 0
        skipped = 0

        for reminder in pending:
            if reminder.scheduled_at <= now:
                logger.warning(f"Skipping past reminder {reminder.id}: was due {reminder.scheduled_at}")
                skipped += 1
                continue
            if await self._schedule(reminder):
                loaded += 1

        logger.info(f"Reloaded {loaded} pending reminders (skipped {skipped} past)")
        return loaded

    # ------------------------------------------------------------
    # Timer path
    # ------------------------------------------------------------

    async def _schedule(self, reminder: Reminder) -> bool:
        if reminder.triggered:
            return False
        return await self.registry.schedule(
            reminder.id,
            reminder.scheduled_at,
            partial(self.on_fire, reminder.id, reminder.user_id),
        )

    async def _restore_timer(self, reminder: Reminder, action: str) -> None:
        """Put back the timer of a row a failed write left unchanged."""
        logger.warning(f"Failed to {action} reminder {reminder.id}, restoring its timer")
        await self._schedule(reminder)

    async def on_fire(self, reminder_id: str, user_id: str) -> None:
        """Timer callback. Marks the reminder triggered and spawns a successor if recurring."""
        try:
            async with self._lock(reminder_id):
                try:
                    reminder = await self.store.find_by_id(reminder_id, user_id)
                except NotFound:
                    logger.info(f"Reminder {reminder_id} fired after deletion, skipping")
                    return
                if reminder.triggered:
                    logger.info(f"Reminder {reminder_id} already triggered, skipping")
                    return
                reminder = await self.store.update(reminder_id, {"triggered": True})
        except Exception as e:
            self._trigger_failed(reminder_id, user_id, "mark_triggered", e)
            return

        self._stats["fired"] += 1
        logger.info(
            f"Reminder triggered: {reminder.id} '{reminder.title}' "
            f"for user {user_id} via {reminder.type.value}"
        )

        if self.notifier is not None:
            try:
                await self.notifier.present_now(NotificationContent(
                    title=reminder.title,
                    body=reminder.message,
                    data={
                        "type": "reminder",
                        "reminder_id": reminder.id,
                        "channel": reminder.type.value,
                    },
                ))
            except Exception as e:
                self._trigger_failed(reminder_id, user_id, "notify", e)

        await self._emit(user_id, ReminderEvent.TRIGGERED, reminder.to_dict())

        try:
            await self._spawn_successor(reminder)
        except Exception as e:
            self._trigger_failed(reminder_id, user_id, "successor", e)

    async def _spawn_successor(self, reminder: Reminder) -> Optional[Reminder]:
        if not reminder.recurring:
            return None

        next_at = next_occurrence(reminder.scheduled_at, reminder.recurring_pattern)
        if next_at is None:
            return None

        # A late fire skips missed occurrences rather than replaying each one
        now = self.clock()
        steps = 0
        while next_at <= now and steps < MAX_CATCH_UP_STEPS:
            next_at = next_occurrence(next_at, reminder.recurring_pattern)
            steps += 1
        if steps:
            logger.info(f"Reminder {reminder.id} fired late, skipped {steps} missed occurrence(s)")

        successor = await self.store.create({
            "user_id": reminder.user_id,
            "title": reminder.title,
            "message": reminder.message,
            "scheduled_at": next_at,
            "type": reminder.type,
            "recurring": reminder.recurring,
            "recurring_pattern": reminder.recurring_pattern,
            "task_id": reminder.task_id,
        })
        self._stats["successors_created"] += 1
        logger.info(f"Created successor {successor.id} of reminder {reminder.id} at {next_at}")

        await self._emit(successor.user_id, ReminderEvent.CREATED, successor.to_dict())
        await self._schedule(successor)
        return successor

    def _trigger_failed(self, reminder_id: str, user_id: str, stage: str, error: Exception) -> None:
        self._stats["trigger_failures"] += 1
        logger.error(
            f"reminder_trigger_failed id={reminder_id} user={user_id} "
            f"stage={stage} error={type(error).__name__}: {error}"
        )

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    async def _check_task(self, task_id: Optional[str], user_id: str) -> None:
        if not task_id:
            return
        task = await self.tasks.find_task_by_id(task_id, user_id)
        if not task:
            raise ValidationError("Task not found")

    async def _emit(self, user_id: str, event: ReminderEvent, payload: dict) -> None:
        await self.events.emit(user_id, event.value, payload)
