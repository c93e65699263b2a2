"""Notification sinks: the channel that actually surfaces an alert."""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger
from .errors import SchedulingFailure
from .types import ensure_utc


@dataclass
class NotificationContent:
    """What the user sees."""
    title: str
    body: str = ""
    data: dict = field(default_factory=dict)


@dataclass
class TriggerSpec:
    """One-shot at `at`, or every `repeat_seconds` starting at `at`."""
    at: datetime
    repeat_seconds: Optional[int] = None

    @property
    def repeats(self) -> bool:
        return bool(self.repeat_seconds)


class NotificationSink(ABC):
    """Base class for notification channels."""

    @abstractmethod
    async def schedule(self, content: NotificationContent, trigger: TriggerSpec) -> str:
        """Schedule a notification and return its handle."""
        pass

    @abstractmethod
    async def cancel(self, handle: str) -> None:
        """Cancel a scheduled notification. Unknown handles are ignored."""
        pass

    @abstractmethod
    async def present_now(self, content: NotificationContent) -> None:
        """Show a notification immediately."""
        pass


def format_message(content: NotificationContent) -> str:
    """Render content as a chat message."""
    if content.body:
        return f"**{content.title}**\n\n> {content.body}"
    return f"**{content.title}**"


class WebhookNotificationSink(NotificationSink):
    """Posts notifications to a chat webhook; scheduled ones wait on APScheduler.

    Without a webhook URL notifications are only logged, so the service runs
    without a push channel configured.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        scheduler: Optional[AsyncIOScheduler] = None,
        timeout: float = 10,
    ):
        self.webhook_url = webhook_url
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.timeout = timeout

    async def schedule(self, content: NotificationContent, trigger: TriggerSpec) -> str:
        handle = f"notif_{uuid.uuid4().hex[:12]}"
        run_at = ensure_utc(trigger.at)

        if trigger.repeats:
            job_trigger = IntervalTrigger(seconds=trigger.repeat_seconds, start_date=run_at)
        else:
            job_trigger = DateTrigger(run_date=run_at)

        try:
            self.scheduler.add_job(
                self.present_now,
                trigger=job_trigger,
                args=[content],
                id=handle,
                name=f"notification:{content.title[:30]}",
                replace_existing=True,
            )
        except Exception as e:
            raise SchedulingFailure(f"Cannot schedule notification '{content.title}': {e}") from e

        logger.info(f"Scheduled notification {handle} at {run_at} (repeat={trigger.repeat_seconds})")
        return handle

    async def cancel(self, handle: str) -> None:
        try:
            self.scheduler.remove_job(handle)
            logger.info(f"Cancelled notification {handle}")
        except JobLookupError:
            logger.debug(f"Notification {handle} not scheduled, nothing to cancel")

    async def present_now(self, content: NotificationContent) -> None:
        if not self.webhook_url:
            logger.info(f"Notification (no webhook configured): {content.title}")
            return

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.webhook_url,
                    json={"content": format_message(content)},
                    timeout=self.timeout
                )
                response.raise_for_status()
            logger.info(f"Delivered notification: {content.title}")
        except httpx.HTTPError as e:
            logger.error(f"Failed to deliver notification '{content.title}': {e}")
