"""Tests for the Planner API reminder endpoints.

Runs the real app (lifespan included) against a temp database.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import planner_api.main as api_main
from planner_api.main import app

HEADERS = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


def future(**kwargs) -> str:
    return (datetime.now(timezone.utc) + timedelta(**kwargs)).isoformat()


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(api_main, "PLANNER_DB", str(tmp_path / "api_test.db"))
    monkeypatch.setattr(api_main, "REMINDER_WEBHOOK_URL", None)
    with TestClient(app) as test_client:
        yield test_client


def create(client, **fields) -> dict:
    body = {"title": "Standup", "scheduled_at": future(hours=1)}
    body.update(fields)
    response = client.post("/reminders", json=body, headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()["reminder"]


class TestHealth:

    def test_health_reports_stats(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["reminders"]["scheduled"] == 0

    def test_sweep_job_registered(self, client):
        assert client.app.state.scheduler.get_job("reminder_sweep") is not None


class TestCrud:

    def test_create_and_get(self, client):
        reminder = create(client, message="Room 4", type="sms")

        response = client.get(f"/reminders/{reminder['id']}", headers=HEADERS)

        assert response.status_code == 200
        fetched = response.json()["reminder"]
        assert fetched["title"] == "Standup"
        assert fetched["message"] == "Room 4"
        assert fetched["type"] == "SMS"
        assert fetched["triggered"] is False
        assert client.app.state.dispatcher.registry.has(reminder["id"])

    def test_missing_user_header(self, client):
        response = client.post("/reminders", json={"title": "x", "scheduled_at": future(hours=1)})
        assert response.status_code == 401

    def test_invalid_body_is_400(self, client):
        response = client.post("/reminders", json={"scheduled_at": future(hours=1)}, headers=HEADERS)
        assert response.status_code == 400
        assert "title" in response.json()["detail"]

    def test_domain_validation_is_400(self, client):
        response = client.post(
            "/reminders",
            json={"title": "x", "scheduled_at": future(hours=1), "type": "FAX"},
            headers=HEADERS,
        )
        assert response.status_code == 400

    def test_unknown_task_is_400(self, client):
        response = client.post(
            "/reminders",
            json={"title": "x", "scheduled_at": future(hours=1), "task_id": "task-404"},
            headers=HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Task not found"

    def test_other_users_reminder_is_404(self, client):
        reminder = create(client)

        assert client.get(f"/reminders/{reminder['id']}", headers=OTHER_USER).status_code == 404
        assert client.delete(f"/reminders/{reminder['id']}", headers=OTHER_USER).status_code == 404

    def test_list_upcoming(self, client):
        create(client, title="Later", scheduled_at=future(hours=3))
        create(client, title="Sooner", scheduled_at=future(hours=1))
        create(client, title="Past", scheduled_at=future(hours=-1))

        response = client.get("/reminders", params={"upcoming": "true"}, headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert [r["title"] for r in data["reminders"]] == ["Sooner", "Later"]
        assert data["pagination"]["total"] == 2

    def test_past_reminder_fires_immediately(self, client):
        reminder = create(client, scheduled_at=future(minutes=-5))

        fetched = client.get(f"/reminders/{reminder['id']}", headers=HEADERS).json()["reminder"]
        assert fetched["triggered"] is True

    def test_update_reschedules(self, client):
        reminder = create(client)
        new_time = datetime.now(timezone.utc) + timedelta(hours=5)

        response = client.put(
            f"/reminders/{reminder['id']}",
            json={"scheduled_at": new_time.isoformat()},
            headers=HEADERS,
        )

        assert response.status_code == 200
        registry = client.app.state.dispatcher.registry
        assert registry.trigger_time(reminder["id"]) == new_time

    def test_delete(self, client):
        reminder = create(client)

        response = client.delete(f"/reminders/{reminder['id']}", headers=HEADERS)

        assert response.status_code == 200
        assert client.get(f"/reminders/{reminder['id']}", headers=HEADERS).status_code == 404
        assert not client.app.state.dispatcher.registry.has(reminder["id"])


class TestSnoozeAndTrigger:

    def test_snooze_default(self, client):
        reminder = create(client, scheduled_at=future(minutes=-5))

        response = client.post(f"/reminders/{reminder['id']}/snooze", headers=HEADERS)

        assert response.status_code == 200
        snoozed = response.json()["reminder"]
        assert snoozed["triggered"] is False
        assert response.json()["message"] == "Reminder snoozed for 15 minutes"
        assert snoozed["snooze_count"] == 1
        scheduled_at = datetime.fromisoformat(snoozed["scheduled_at"])
        assert timedelta(minutes=14) < scheduled_at - datetime.now(timezone.utc) <= timedelta(minutes=15)

    def test_snooze_minutes(self, client):
        reminder = create(client)

        response = client.post(f"/reminders/{reminder['id']}/snooze", json={"minutes": 30}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["message"] == "Reminder snoozed for 30 minutes"

    def test_snooze_invalid_minutes(self, client):
        reminder = create(client)
        response = client.post(f"/reminders/{reminder['id']}/snooze", json={"minutes": 0}, headers=HEADERS)
        assert response.status_code == 400

    def test_mark_triggered(self, client):
        reminder = create(client)

        response = client.post(f"/reminders/{reminder['id']}/trigger", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["reminder"]["triggered"] is True
        assert not client.app.state.dispatcher.registry.has(reminder["id"])

    def test_trigger_unknown(self, client):
        assert client.post("/reminders/rem_missing/trigger", headers=HEADERS).status_code == 404


class TestEventStream:

    def test_receives_own_events(self, client):
        with client.websocket_connect("/reminders/ws", headers=HEADERS) as websocket:
            reminder = create(client)
            message = websocket.receive_json()

        assert message["event"] == "reminder_created"
        assert message["data"]["id"] == reminder["id"]

    def test_requires_user(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/reminders/ws"):
                pass
