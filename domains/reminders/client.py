"""Client-side reminder scheduling.

Mirrors reminders into a local JSON file and schedules local notifications,
so alerts fire even when the server push channel is unavailable. This path is
independent of the server job registry: cancelling one never cancels the
other.
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dateutil.parser import isoparse

from logger import logger
from .errors import ValidationError
from .notify import NotificationContent, NotificationSink, TriggerSpec
from .scheduler import utcnow

# Repeat intervals for local notifications (monthly is a 30 day approximation)
REPEAT_SECONDS = {
    "daily": 86400,
    "weekly": 604800,
    "monthly": 2592000,
}

UPCOMING_WINDOW = timedelta(minutes=5)


def _parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value)).date()
    except ValueError:
        raise ValidationError(f"Invalid reminder date: {value!r}")


def _parse_time(value) -> tuple[int, int]:
    if isinstance(value, (datetime, time)):
        return value.hour, value.minute
    text = str(value)
    try:
        parsed = isoparse(text) if "T" in text else time.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"Invalid reminder time: {value!r}")
    return parsed.hour, parsed.minute


@dataclass
class ClientReminder:
    """A reminder as the client keeps it: calendar day plus wall-clock time."""
    id: str
    title: str
    date: str
    time: str
    description: str = ""
    repeat: str = "none"
    enabled: bool = True
    triggered: bool = False
    snooze_count: int = 0

    def firing_instant(self) -> datetime:
        """`date`'s calendar day at `time`'s hour and minute."""
        day = _parse_date(self.date)
        hour, minute = _parse_time(self.time)
        return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)

    @classmethod
    def from_dict(cls, data: dict) -> "ClientReminder":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    @classmethod
    def from_server(cls, payload: dict) -> "ClientReminder":
        """Convert a server reminder (API JSON) to the client shape."""
        scheduled_at = isoparse(payload["scheduled_at"]).astimezone(timezone.utc)
        repeat = payload.get("recurring_pattern") if payload.get("recurring") else None
        return cls(
            id=payload["id"],
            title=payload["title"],
            description=payload.get("message") or "",
            date=scheduled_at.date().isoformat(),
            time=scheduled_at.strftime("%H:%M"),
            repeat=repeat or "none",
            triggered=bool(payload.get("triggered", False)),
            snooze_count=payload.get("snooze_count", 0),
        )


class LocalMirror:
    """Durable local copy of scheduled reminders, keyed by reminder id.

    Writes replace the whole file atomically, so a crash mid-write leaves the
    previous version intact.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._entries: Optional[dict[str, dict]] = None

    def _load(self) -> dict[str, dict]:
        if self._entries is not None:
            return self._entries

        self._entries = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                self._entries = dict(data.get("reminders", {}))
            except (OSError, ValueError) as e:
                logger.error(f"Error loading stored reminders from {self.path}: {e}")
        return self._entries

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(
                {"reminders": self._load(), "updated_at": datetime.now(timezone.utc).isoformat()},
                indent=2,
            ),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.path)

    def reload(self) -> None:
        """Drop the in-memory copy; the next read comes from disk."""
        self._entries = None

    def get(self, reminder_id: str) -> Optional[dict]:
        return self._load().get(reminder_id)

    def entries(self) -> list[dict]:
        return list(self._load().values())

    def put(self, reminder_id: str, entry: dict) -> None:
        self._load()[reminder_id] = entry
        self._save()

    def remove(self, reminder_id: str) -> bool:
        if self._load().pop(reminder_id, None) is None:
            return False
        self._save()
        return True

    def remove_by_handle(self, handle: str) -> Optional[str]:
        """Remove the entry holding `handle`. Returns its reminder id."""
        for reminder_id, entry in self._load().items():
            if entry.get("handle") == handle:
                self.remove(reminder_id)
                return reminder_id
        return None


class ClientNotificationScheduler:
    """Schedules local notifications and keeps the mirror in sync."""

    def __init__(
        self,
        sink: NotificationSink,
        mirror: LocalMirror,
        clock: Callable[[], datetime] = utcnow,
        window: timedelta = UPCOMING_WINDOW,
    ):
        self.sink = sink
        self.mirror = mirror
        self.clock = clock
        self.window = window
        self._alerted: set[tuple[str, datetime]] = set()

    async def schedule_local(self, reminder: ClientReminder) -> str:
        """Schedule (or re-schedule) the local notification for a reminder.

        Any notification already held for this reminder id is cancelled first,
        so repeated calls leave exactly one.

        Returns:
            The sink's handle
        """
        if reminder.repeat != "none" and reminder.repeat not in REPEAT_SECONDS:
            raise ValidationError(f"repeat must be none, daily, weekly or monthly (got {reminder.repeat!r})")

        fire_at = reminder.firing_instant()

        existing = self.mirror.get(reminder.id)
        if existing and existing.get("handle"):
            await self.sink.cancel(existing["handle"])

        handle = await self.sink.schedule(
            NotificationContent(
                title=reminder.title,
                body=reminder.description,
                data={"type": "reminder", "reminder_id": reminder.id},
            ),
            TriggerSpec(at=fire_at, repeat_seconds=REPEAT_SECONDS.get(reminder.repeat)),
        )

        self.mirror.put(reminder.id, {
            **asdict(reminder),
            "handle": handle,
            "scheduled_for": fire_at.isoformat(),
        })
        logger.info(f"Local notification {handle} set for reminder {reminder.id} at {fire_at}")
        return handle

    async def cancel_local(self, handle: str) -> Optional[str]:
        """Cancel a local notification and drop it from the mirror.

        Returns:
            The reminder id the handle belonged to, if it was mirrored
        """
        await self.sink.cancel(handle)
        reminder_id = self.mirror.remove_by_handle(handle)
        logger.info(f"Cancelled local notification {handle} (reminder {reminder_id})")
        return reminder_id

    async def snooze_local(self, reminder_id: str, minutes: float = 15) -> Optional[str]:
        """Replace a reminder's local notification with a one-shot `minutes` from now."""
        entry = self.mirror.get(reminder_id)
        if entry is None:
            return None

        if entry.get("handle"):
            await self.sink.cancel(entry["handle"])

        fire_at = self.clock() + timedelta(minutes=minutes)
        handle = await self.sink.schedule(
            NotificationContent(
                title=entry["title"],
                body=entry.get("description", ""),
                data={"type": "reminder", "reminder_id": reminder_id},
            ),
            TriggerSpec(at=fire_at),
        )
        self.mirror.put(reminder_id, {
            **entry,
            "handle": handle,
            "scheduled_for": fire_at.isoformat(),
            "snooze_count": entry.get("snooze_count", 0) + 1,
        })
        return handle

    async def restore(self) -> int:
        """Re-schedule mirrored reminders after a restart.

        Goes through schedule_local, so each reminder id ends up with exactly
        one notification. Past one-shot reminders stay mirrored but are not
        re-armed.

        Returns:
            Count of notifications scheduled
        """
        now = self.clock()
        restored = 0

        for entry in self.mirror.entries():
            reminder = ClientReminder.from_dict(entry)
            if not reminder.enabled or reminder.triggered:
                continue
            try:
                if reminder.repeat == "none" and reminder.firing_instant() <= now:
                    continue
                await self.schedule_local(reminder)
                restored += 1
            except Exception as e:
                logger.error(f"Failed to restore local reminder {reminder.id}: {e}")

        logger.info(f"Restored {restored} local reminder notification(s)")
        return restored

    def due_soon(
        self,
        reminders: Iterable[ClientReminder],
        now: Optional[datetime] = None,
    ) -> list[tuple[ClientReminder, datetime]]:
        """Enabled, non-triggered reminders firing within the look-ahead window."""
        now = now or self.clock()
        horizon = now + self.window
        due = []

        for reminder in reminders:
            if not reminder.enabled or reminder.triggered:
                continue
            try:
                fire_at = reminder.firing_instant()
            except ValidationError as e:
                logger.warning(f"Skipping reminder {reminder.id}: {e}")
                continue
            if now <= fire_at <= horizon:
                due.append((reminder, fire_at))
        return due

    async def check_upcoming(
        self,
        reminders: Iterable[ClientReminder],
        now: Optional[datetime] = None,
    ) -> int:
        """Fallback alert for reminders about to fire.

        Each reminder occurrence alerts at most once per process.

        Returns:
            Number of alerts presented
        """
        now = now or self.clock()
        # Past occurrences can no longer be due soon
        self._alerted = {key for key in self._alerted if key[1] >= now}
        presented = 0

        for reminder, fire_at in self.due_soon(reminders, now):
            key = (reminder.id, fire_at)
            if key in self._alerted:
                continue

            minutes = round((fire_at - now).total_seconds() / 60)
            try:
                await self.sink.present_now(NotificationContent(
                    title="Reminder Coming Up",
                    body=f'"{reminder.title}" in {minutes} minutes',
                    data={"type": "reminder", "reminder_id": reminder.id},
                ))
            except Exception as e:
                logger.error(f"Failed to present upcoming alert for {reminder.id}: {e}")
                continue

            self._alerted.add(key)
            presented += 1
        return presented


def start_upcoming_checks(
    scheduler: AsyncIOScheduler,
    client_scheduler: ClientNotificationScheduler,
    provider: Callable[[], Iterable[ClientReminder]],
    seconds: int = 60,
) -> None:
    """Run check_upcoming every `seconds` over the reminders `provider` returns.

    Args:
        scheduler: APScheduler instance
        client_scheduler: The client scheduler
        provider: Returns the reminders currently shown to the user
        seconds: Poll interval
    """
    async def check():
        count = await client_scheduler.check_upcoming(list(provider()))
        if count > 0:
            logger.info(f"Presented {count} upcoming reminder alert(s)")

    scheduler.add_job(
        check,
        trigger=IntervalTrigger(seconds=seconds),
        id="upcoming_reminder_check",
        name="Check upcoming reminders",
        replace_existing=True,
    )
    logger.info(f"Started upcoming reminder checks (every {seconds}s)")
