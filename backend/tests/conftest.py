"""
Main pytest configuration for all backend tests.

Fixtures for settings, controllable clocks and in-memory collaborators.
"""

import os

# Set test environment variables before importing application modules
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["RUN_WORKERS_IN_PROCESS"] = "false"
os.environ["LOG_LEVEL"] = "DEBUG"

import pytest
import structlog

from webhook_relay.core.config import Settings, get_settings
from webhook_relay.domain.entities import Account, Destination, Event
from webhook_relay.infrastructure.repositories.memory import (
    InMemoryAccountResolver,
    InMemoryDeliveryLog,
    InMemoryDestinationDirectory,
)

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
    cache_logger_on_first_use=False,
)

ACCOUNT_ID = "5f0c7a52-3c1e-4d8e-9a43-1b9e2d6c7f10"
ACCOUNT_TOKEN = "secret-token-abc"
D1_URL = "http://d1.example.test/hook"
D2_URL = "http://d2.example.test/hook"


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; tests build their own."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        RATE_LIMIT_BACKEND="memory",
        QUEUE_BACKEND="memory",
        RUN_WORKERS_IN_PROCESS=False,
        WORKER_POLL_INTERVAL=0.01,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def account() -> Account:
    return Account(
        account_id=ACCOUNT_ID,
        account_name="Acme",
        app_secret_token=ACCOUNT_TOKEN,
        website="https://acme.example.test",
    )


@pytest.fixture
def accounts(account) -> InMemoryAccountResolver:
    return InMemoryAccountResolver([account])


@pytest.fixture
def destinations() -> InMemoryDestinationDirectory:
    return InMemoryDestinationDirectory(
        [
            Destination(
                id=1,
                account_id=ACCOUNT_ID,
                url=D1_URL,
                headers={"Authorization": "Bearer d1"},
            ),
            Destination(id=2, account_id=ACCOUNT_ID, url=D2_URL),
        ]
    )


@pytest.fixture
def delivery_log() -> InMemoryDeliveryLog:
    return InMemoryDeliveryLog()


@pytest.fixture
def event() -> Event:
    return Event(event_id="evt-1", account_id=ACCOUNT_ID, payload={"order": 42})


@pytest.fixture
def ingest_headers():
    return {
        "cl-x-token": ACCOUNT_TOKEN,
        "cl-x-event-id": "evt-1",
        "content-type": "application/json",
    }
