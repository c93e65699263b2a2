"""Tests for the webhook notification sink."""

import os
import sys
from datetime import timedelta
from unittest.mock import Mock

import httpx
import pytest
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.reminders import NotificationContent, TriggerSpec, WebhookNotificationSink
from domains.reminders.notify import format_message
from fakes import START

WEBHOOK = "https://chat.example.com/webhooks/reminders"


class TestFormatMessage:

    def test_title_and_body(self):
        content = NotificationContent(title="Standup", body="Room 4")
        assert format_message(content) == "**Standup**\n\n> Room 4"

    def test_title_only(self):
        assert format_message(NotificationContent(title="Standup")) == "**Standup**"


class TestScheduling:

    @pytest.mark.asyncio
    async def test_one_shot_uses_date_trigger(self, scheduler):
        sink = WebhookNotificationSink(WEBHOOK, scheduler)

        handle = await sink.schedule(NotificationContent(title="Standup"), TriggerSpec(at=START))

        assert handle.startswith("notif_")
        job = scheduler.get_job(handle)
        assert isinstance(job.trigger, DateTrigger)
        assert job.trigger.run_date == START

    @pytest.mark.asyncio
    async def test_repeating_uses_interval_trigger(self, scheduler):
        sink = WebhookNotificationSink(WEBHOOK, scheduler)

        handle = await sink.schedule(
            NotificationContent(title="Standup"),
            TriggerSpec(at=START, repeat_seconds=86400),
        )

        job = scheduler.get_job(handle)
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval == timedelta(days=1)
        assert job.trigger.start_date == START

    @pytest.mark.asyncio
    async def test_cancel(self, scheduler):
        sink = WebhookNotificationSink(WEBHOOK, scheduler)
        handle = await sink.schedule(NotificationContent(title="Standup"), TriggerSpec(at=START))

        await sink.cancel(handle)
        await sink.cancel(handle)

        assert scheduler.get_job(handle) is None


class TestPresentNow:

    @pytest.mark.asyncio
    async def test_posts_to_webhook(self, mock_httpx_client):
        mock_httpx_client.post.return_value = Mock()
        sink = WebhookNotificationSink(WEBHOOK)

        await sink.present_now(NotificationContent(title="Standup", body="Room 4"))

        mock_httpx_client.post.assert_awaited_once()
        args, kwargs = mock_httpx_client.post.call_args
        assert args[0] == WEBHOOK
        assert kwargs["json"] == {"content": "**Standup**\n\n> Room 4"}

    @pytest.mark.asyncio
    async def test_without_webhook_only_logs(self, mock_httpx_client, caplog):
        sink = WebhookNotificationSink(None)

        await sink.present_now(NotificationContent(title="Standup"))

        mock_httpx_client.post.assert_not_called()
        assert "no webhook configured" in caplog.text

    @pytest.mark.asyncio
    async def test_delivery_error_is_logged(self, mock_httpx_client, caplog):
        mock_httpx_client.post.side_effect = httpx.ConnectError("connection refused")
        sink = WebhookNotificationSink(WEBHOOK)

        await sink.present_now(NotificationContent(title="Standup"))

        assert "Failed to deliver notification 'Standup'" in caplog.text
