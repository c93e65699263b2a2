"""Planner client runner.

Restores the local reminder mirror, pulls upcoming reminders from the
Planner API, schedules local notifications for them and polls for reminders
about to fire while running.

Run with: python -m planner_client.main --user-id <id>
"""

import argparse
import asyncio
from datetime import timedelta, timezone

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import (
    CLIENT_MIRROR_PATH,
    PLANNER_API_URL,
    PLANNER_USER_ID,
    REMINDER_WEBHOOK_URL,
    UPCOMING_CHECK_SECONDS,
    UPCOMING_WINDOW_MINUTES,
)
from domains.reminders import (
    ClientNotificationScheduler,
    ClientReminder,
    LocalMirror,
    WebhookNotificationSink,
    start_upcoming_checks,
)
from logger import logger
from planner_client.api import PlannerApiClient

SYNC_INTERVAL_SECONDS = 300


async def sync_from_server(api: PlannerApiClient, client_scheduler: ClientNotificationScheduler) -> int:
    """Schedule local notifications for the server's upcoming reminders.

    Entries already mirrored locally are left alone when the server is
    unreachable.

    Returns:
        Count of reminders scheduled
    """
    try:
        payloads = await api.list_reminders(upcoming=True, limit=200)
    except httpx.HTTPError as e:
        logger.warning(f"Planner API unreachable, keeping local mirror: {e}")
        return 0

    scheduled = 0
    for payload in payloads:
        try:
            await client_scheduler.schedule_local(ClientReminder.from_server(payload))
            scheduled += 1
        except Exception as e:
            logger.error(f"Failed to schedule local reminder {payload.get('id')}: {e}")

    logger.info(f"Synced {scheduled} reminder(s) from the Planner API")
    return scheduled


def _mirrored_reminders(mirror: LocalMirror) -> list[ClientReminder]:
    return [ClientReminder.from_dict(entry) for entry in mirror.entries()]


async def run(user_id: str, api_url: str, mirror_path: str, webhook_url: str | None) -> None:
    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    mirror = LocalMirror(mirror_path)
    client_scheduler = ClientNotificationScheduler(
        WebhookNotificationSink(webhook_url, scheduler),
        mirror,
        window=timedelta(minutes=UPCOMING_WINDOW_MINUTES),
    )
    api = PlannerApiClient(api_url, user_id)

    scheduler.start()
    await client_scheduler.restore()
    await sync_from_server(api, client_scheduler)

    start_upcoming_checks(
        scheduler,
        client_scheduler,
        lambda: _mirrored_reminders(mirror),
        UPCOMING_CHECK_SECONDS,
    )
    scheduler.add_job(
        sync_from_server,
        trigger=IntervalTrigger(seconds=SYNC_INTERVAL_SECONDS),
        args=[api, client_scheduler],
        id="planner_sync",
        name="Sync reminders from Planner API",
        replace_existing=True,
    )

    logger.info(f"Planner client running for user {user_id}")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)


def main():
    parser = argparse.ArgumentParser(description="Planner local reminder client")
    parser.add_argument("--user-id", default=PLANNER_USER_ID, help="Planner user id")
    parser.add_argument("--api-url", default=PLANNER_API_URL, help="Planner API base URL")
    parser.add_argument("--mirror", default=CLIENT_MIRROR_PATH, help="Local mirror JSON file")
    parser.add_argument("--webhook-url", default=REMINDER_WEBHOOK_URL, help="Where notifications are posted")
    args = parser.parse_args()

    if not args.user_id:
        parser.error("--user-id (or PLANNER_USER_ID) is required")

    try:
        asyncio.run(run(args.user_id, args.api_url, args.mirror, args.webhook_url))
    except KeyboardInterrupt:
        logger.info("Planner client stopped")


if __name__ == "__main__":
    main()
