"""Per-user event channel for reminder changes."""

from typing import Awaitable, Callable

from logger import logger

EventHandler = Callable[[str, dict], Awaitable[None]]


class ReminderEvents:
    """Fan-out of reminder events to a user's subscribers (e.g. open websockets)."""

    def __init__(self):
        self._subscribers: dict[str, list[EventHandler]] = {}

    def subscribe(self, user_id: str, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for a user's events.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.setdefault(user_id, []).append(handler)

        def unsubscribe():
            handlers = self._subscribers.get(user_id, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._subscribers.pop(user_id, None)

        return unsubscribe

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, []))

    async def emit(self, user_id: str, event: str, payload: dict) -> None:
        """Deliver to every subscriber. A failing subscriber does not stop the others."""
        for handler in list(self._subscribers.get(user_id, [])):
            try:
                await handler(event, payload)
            except Exception as e:
                logger.warning(f"Subscriber for user {user_id} failed on {event}: {e}")
