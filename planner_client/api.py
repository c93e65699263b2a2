"""HTTP client for the Planner API reminder endpoints."""

from typing import Optional

import httpx

from domains.reminders import NotFound, ValidationError
from logger import logger


class PlannerApiClient:
    """Thin async wrapper over /reminders.

    Each call opens its own httpx.AsyncClient; `transport` lets tests plug in
    an httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "X-User-Id": self.user_id,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            response = await client.request(method, path, **kwargs)

        if response.status_code == 404:
            raise NotFound(response.json().get("detail", "Reminder not found"))
        if response.status_code == 400:
            raise ValidationError(response.json().get("detail", "Invalid request"))
        response.raise_for_status()
        return response.json()

    async def list_reminders(self, **params) -> list[dict]:
        """GET /reminders with the given filters (e.g. upcoming=True)."""
        query = {
            key: str(value).lower() if isinstance(value, bool) else value
            for key, value in params.items()
            if value is not None
        }
        data = await self._request("GET", "/reminders", params=query)
        logger.debug(f"Fetched {len(data['reminders'])} reminders for user {self.user_id}")
        return data["reminders"]

    async def get_reminder(self, reminder_id: str) -> dict:
        data = await self._request("GET", f"/reminders/{reminder_id}")
        return data["reminder"]

    async def create_reminder(self, fields: dict) -> dict:
        data = await self._request("POST", "/reminders", json=fields)
        return data["reminder"]

    async def update_reminder(self, reminder_id: str, fields: dict) -> dict:
        data = await self._request("PUT", f"/reminders/{reminder_id}", json=fields)
        return data["reminder"]

    async def delete_reminder(self, reminder_id: str) -> None:
        await self._request("DELETE", f"/reminders/{reminder_id}")

    async def snooze(self, reminder_id: str, minutes: Optional[float] = None) -> dict:
        body = {"minutes": minutes} if minutes is not None else {}
        data = await self._request("POST", f"/reminders/{reminder_id}/snooze", json=body)
        return data["reminder"]

    async def mark_triggered(self, reminder_id: str) -> dict:
        data = await self._request("POST", f"/reminders/{reminder_id}/trigger")
        return data["reminder"]
