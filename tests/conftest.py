"""Pytest configuration and fixtures."""

import os
import sys
from datetime import timezone
from unittest.mock import AsyncMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

# Add project root and this directory to path
TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(TESTS_DIR))
sys.path.insert(0, TESTS_DIR)

from domains.reminders import (  # noqa: E402
    ReminderDispatcher,
    ReminderEvents,
    ReminderStore,
    ServerJobRegistry,
    TaskLookup,
)
from fakes import FakeClock, RecordingSink  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    """Unstarted scheduler - jobs stay pending, time is driven by run_due."""
    return AsyncIOScheduler(timezone=timezone.utc)


@pytest.fixture
def store(tmp_path):
    """Fresh database per test."""
    reminder_store = ReminderStore(str(tmp_path / "planner_test.db"))
    yield reminder_store
    reminder_store.close()


@pytest.fixture
def registry(scheduler, clock):
    return ServerJobRegistry(scheduler, clock=clock)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(store, registry, sink):
    return ReminderDispatcher(
        store=store,
        tasks=TaskLookup(store),
        registry=registry,
        events=ReminderEvents(),
        notifier=sink,
    )


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx client."""
    with patch('httpx.AsyncClient') as mock:
        client = AsyncMock()
        mock.return_value.__aenter__.return_value = client
        yield client
