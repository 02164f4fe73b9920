"""Shared fixtures — a controllable clock and an in-memory publisher."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

import pytest

from otp_service.services.notifier import OTPNotifier
from otp_service.services.otp_manager import OTPManager


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingPublisher:
    """Stand-in for the message broker; keeps every message in memory."""

    def __init__(self, fail: bool = False) -> None:
        self.messages: list[tuple[str, bytes]] = []
        self.fail = fail
        self.closed = False
        self._lock = threading.Lock()

    def publish(self, key: str, payload: bytes) -> None:
        if self.fail:
            raise ConnectionError("broker unreachable")
        with self._lock:
            self.messages.append((key, payload))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def notifier(publisher):
    n = OTPNotifier(publisher, max_queue_size=500)
    yield n
    n.close(timeout=5)


@pytest.fixture
def manager(notifier, clock):
    """Two-minute validity, wired to the recording publisher."""
    return OTPManager(validity_minutes=2, notifier=notifier, clock=clock)
