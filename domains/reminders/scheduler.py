"""In-process job registry: one APScheduler date job per reminder id."""

import inspect
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from logger import logger
from .errors import SchedulingFailure
from .types import ensure_utc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Entry:
    job_id: str
    trigger_at: datetime
    callback: Callable[[], Any]


class ServerJobRegistry:
    """Maps reminder id -> scheduled job, with at most one live job per id.

    The APScheduler instance is injected so production wiring shares the
    process scheduler while tests get an isolated, unstarted one and drive
    time with `run_due`.
    """

    def __init__(
        self,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.clock = clock
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def has(self, reminder_id: str) -> bool:
        return reminder_id in self._entries

    def ids(self) -> list[str]:
        return list(self._entries)

    def trigger_time(self, reminder_id: str) -> Optional[datetime]:
        entry = self._entries.get(reminder_id)
        return entry.trigger_at if entry else None

    async def schedule(
        self,
        reminder_id: str,
        trigger_at: datetime,
        callback: Callable[[], Any],
    ) -> bool:
        """Replace any timer for reminder_id with one firing at trigger_at.

        A trigger instant at or before now runs the callback immediately
        (awaited if it returns an awaitable) and registers nothing.

        Returns:
            True if a timer was registered
        """
        self.cancel(reminder_id)

        try:
            if trigger_at is None:
                raise SchedulingFailure("missing trigger instant")
            trigger_at = ensure_utc(trigger_at)
        except (SchedulingFailure, AttributeError, TypeError, ValueError) as e:
            logger.error(f"Failed to schedule reminder {reminder_id}: {e}")
            return False

        if trigger_at <= self.clock():
            logger.info(f"Reminder {reminder_id} already due ({trigger_at}), firing now")
            await self._invoke(reminder_id, callback)
            return False

        try:
            job = self.scheduler.add_job(
                self._fire,
                trigger=DateTrigger(run_date=trigger_at),
                args=[reminder_id],
                id=reminder_id,
                name=f"reminder:{reminder_id}",
                replace_existing=True,
                misfire_grace_time=None,
            )
        except Exception as e:
            logger.error(f"Failed to schedule reminder {reminder_id}: {e}")
            return False

        self._entries[reminder_id] = _Entry(job.id, trigger_at, callback)
        logger.info(f"Scheduled reminder {reminder_id} at {trigger_at}")
        return True

    def cancel(self, reminder_id: str) -> bool:
        """Remove the timer for reminder_id. No-op when there is none.

        Returns:
            True if a timer was cancelled
        """
        entry = self._entries.pop(reminder_id, None)
        if entry is None:
            return False

        try:
            self.scheduler.remove_job(entry.job_id)
        except JobLookupError:
            # Job already ran or was dropped by the scheduler
            pass
        logger.info(f"Cancelled timer for reminder {reminder_id}")
        return True

    async def run_due(self, now: Optional[datetime] = None) -> int:
        """Fire every entry whose trigger instant has passed.

        Catches up jobs the scheduler missed while the loop was blocked or the
        host slept; tests also use it to advance simulated time.

        Returns:
            Number of entries fired
        """
        now = ensure_utc(now) if now else self.clock()
        due = [rid for rid, entry in self._entries.items() if entry.trigger_at <= now]

        fired = 0
        for reminder_id in due:
            entry = self._entries.get(reminder_id)
            if entry is None:
                continue
            try:
                self.scheduler.remove_job(entry.job_id)
            except JobLookupError:
                pass
            if await self._fire(reminder_id):
                fired += 1
        return fired

    async def _fire(self, reminder_id: str) -> bool:
        """Job body: drop the entry, then run its callback."""
        entry = self._entries.pop(reminder_id, None)
        if entry is None:
            logger.debug(f"Timer for reminder {reminder_id} fired after cancellation, ignoring")
            return False
        await self._invoke(reminder_id, entry.callback)
        return True

    async def _invoke(self, reminder_id: str, callback: Callable[[], Any]) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.exception(f"Reminder {reminder_id} callback failed: {e}")
