"""Tests for the OTPNotifier and the notification transports."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import httpx
import pytest
from kafka.errors import KafkaTimeoutError

from otp_service.config import Settings
from otp_service.models.otp import OTPEvent, OTPKind
from otp_service.services import publishers
from otp_service.services.notifier import (
    NotifierClosedError,
    NotifierQueueFullError,
    OTPNotifier,
)

from conftest import RecordingPublisher


def _event(identifier: str = "a@x.com") -> OTPEvent:
    return OTPEvent(
        identifier=identifier,
        token="123456",
        kind=OTPKind.NUMERIC,
        expires_at=datetime(2024, 1, 1, 12, 5, tzinfo=UTC),
    )


# ──────────────────────────────────────────────────────────
# Event payload
# ──────────────────────────────────────────────────────────
def test_event_message_format():
    payload = json.loads(_event().to_message())
    assert payload == {
        "identifier": "a@x.com",
        "token": "123456",
        "kind": "numeric",
        "expires_at": "2024-01-01T12:05:00Z",
    }


# ──────────────────────────────────────────────────────────
# Notifier
# ──────────────────────────────────────────────────────────
def test_notify_delivers_keyed_message(notifier, publisher):
    assert notifier.notify(_event()) is True
    notifier.flush()

    assert len(publisher.messages) == 1
    key, payload = publisher.messages[0]
    assert key == "a@x.com"
    assert json.loads(payload)["token"] == "123456"
    assert notifier.sent_count == 1


def test_close_drains_pending_events():
    publisher = RecordingPublisher()
    notifier = OTPNotifier(publisher)
    for i in range(25):
        notifier.notify(_event(f"user{i}@x.com"))

    notifier.close(timeout=5)

    assert len(publisher.messages) == 25
    assert publisher.closed


def test_close_is_idempotent(publisher):
    notifier = OTPNotifier(publisher)
    notifier.close(timeout=5)
    notifier.close(timeout=5)
    assert notifier.closed


def test_notify_after_close_is_reported(publisher):
    errors = []
    notifier = OTPNotifier(publisher, on_error=lambda event, exc: errors.append(exc))
    notifier.close(timeout=5)

    assert notifier.notify(_event()) is False
    assert isinstance(errors[0], NotifierClosedError)
    assert publisher.messages == []


def test_close_honours_timeout_with_hung_publisher():
    release = threading.Event()
    started = threading.Event()

    class HungPublisher(RecordingPublisher):
        def publish(self, key, payload):
            started.set()
            release.wait(10)

    publisher = HungPublisher()
    notifier = OTPNotifier(publisher, max_queue_size=1)
    try:
        notifier.notify(_event("first@x.com"))
        assert started.wait(5)
        notifier.notify(_event("second@x.com"))  # queue is now full

        closer = threading.Thread(target=notifier.close, args=(0.5,))
        closer.start()
        closer.join(3)

        assert not closer.is_alive()
        assert notifier.closed
        # The worker is still inside publish, so the transport stays open.
        assert not publisher.closed
    finally:
        release.set()


def test_full_queue_drops_without_blocking():
    release = threading.Event()
    started = threading.Event()
    errors = []

    class BlockingPublisher(RecordingPublisher):
        def publish(self, key, payload):
            started.set()
            release.wait(5)
            super().publish(key, payload)

    publisher = BlockingPublisher()
    notifier = OTPNotifier(
        publisher, max_queue_size=1, on_error=lambda event, exc: errors.append(exc)
    )
    try:
        assert notifier.notify(_event("first@x.com"))
        assert started.wait(5)  # worker is now busy with the first event
        assert notifier.notify(_event("second@x.com"))  # fills the queue
        assert notifier.notify(_event("third@x.com")) is False
        assert isinstance(errors[0], NotifierQueueFullError)
    finally:
        release.set()
        notifier.close(timeout=5)

    assert [key for key, _ in publisher.messages] == ["first@x.com", "second@x.com"]


def test_publish_failure_is_logged_and_not_retried(caplog):
    publisher = RecordingPublisher(fail=True)
    notifier = OTPNotifier(publisher)

    with caplog.at_level(logging.ERROR):
        notifier.notify(_event())
        notifier.flush()

    assert notifier.failed_count == 1
    assert notifier.sent_count == 0
    assert "Failed to publish OTP event" in caplog.text
    notifier.close(timeout=5)


def test_failing_error_callback_is_contained():
    def bad_callback(event, exc):
        raise RuntimeError("callback bug")

    notifier = OTPNotifier(RecordingPublisher(fail=True), on_error=bad_callback)
    notifier.notify(_event())
    notifier.notify(_event("b@x.com"))
    notifier.flush()

    # The worker survived the first callback failure.
    assert notifier.failed_count == 2
    notifier.close(timeout=5)


# ──────────────────────────────────────────────────────────
# Transports
# ──────────────────────────────────────────────────────────
def test_build_publisher_defaults_to_log():
    settings = Settings(kafka_bootstrap_servers="", notification_webhook_url="")
    assert isinstance(publishers.build_publisher(settings), publishers.LogPublisher)


def test_build_publisher_prefers_kafka():
    settings = Settings(
        kafka_bootstrap_servers="broker1:9092, broker2:9092",
        kafka_topic="otp",
        notification_webhook_url="http://hooks.local/otp",
    )
    with patch.object(publishers, "KafkaProducer") as producer_cls:
        publisher = publishers.build_publisher(settings)
        assert isinstance(publisher, publishers.KafkaPublisher)
        producer_cls.assert_not_called()

        publisher.publish("a@x.com", b"{}")

    kwargs = producer_cls.call_args.kwargs
    assert kwargs["bootstrap_servers"] == ["broker1:9092", "broker2:9092"]


def test_build_publisher_webhook():
    settings = Settings(
        kafka_bootstrap_servers="", notification_webhook_url="http://hooks.local/otp"
    )
    publisher = publishers.build_publisher(settings)
    try:
        assert isinstance(publisher, publishers.WebhookPublisher)
    finally:
        publisher.close()


def test_kafka_publisher_sends_keyed_message():
    with patch.object(publishers, "KafkaProducer") as producer_cls:
        producer = producer_cls.return_value
        publisher = publishers.KafkaPublisher("localhost:9092", "otp-events", timeout_seconds=3)
        publisher.publish("a@x.com", b"{}")
        publisher.close()

    producer.send.assert_called_once_with("otp-events", key=b"a@x.com", value=b"{}")
    producer.send.return_value.get.assert_called_once_with(timeout=3)
    producer.close.assert_called_once_with(timeout=3)


def test_webhook_publisher_posts_json():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    publisher = publishers.WebhookPublisher(
        "http://hooks.local/otp",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    publisher.publish("a@x.com", _event().to_message())
    publisher.close()

    assert seen[0].headers["content-type"] == "application/json"
    assert seen[0].headers["x-otp-identifier"] == "a@x.com"
    assert json.loads(seen[0].content)["identifier"] == "a@x.com"


def test_webhook_publisher_raises_on_error_status():
    publisher = publishers.WebhookPublisher(
        "http://hooks.local/otp",
        client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    with pytest.raises(httpx.HTTPStatusError):
        publisher.publish("a@x.com", b"{}")
    publisher.close()


def test_log_publisher_never_logs_token(caplog):
    with caplog.at_level(logging.WARNING):
        publishers.LogPublisher().publish("a@x.com", _event().to_message())
    assert "a@x.com" in caplog.text
    assert "123456" not in caplog.text


def test_kafka_publisher_closes_on_notifier_close():
    producer = MagicMock()
    with patch.object(publishers, "KafkaProducer", return_value=producer):
        notifier = OTPNotifier(publishers.KafkaPublisher("localhost:9092", "otp-events"))
        notifier.notify(_event())
        notifier.close(timeout=5)

    producer.send.assert_called_once()
    producer.close.assert_called_once()


def test_kafka_publisher_does_not_connect_until_first_event():
    with patch.object(publishers, "KafkaProducer") as producer_cls:
        publisher = publishers.KafkaPublisher("127.0.0.1:1", "otp-events")
        publisher.close()
    producer_cls.assert_not_called()


def test_unreachable_kafka_is_reported_per_event():
    errors = []
    with patch.object(
        publishers,
        "KafkaProducer",
        side_effect=KafkaTimeoutError("Unable to bootstrap from ['127.0.0.1:1']"),
    ) as producer_cls:
        notifier = OTPNotifier(
            publishers.KafkaPublisher("127.0.0.1:1", "otp-events"),
            on_error=lambda event, exc: errors.append(exc),
        )
        notifier.notify(_event("a@x.com"))
        notifier.notify(_event("b@x.com"))
        notifier.close(timeout=5)

    # A new connection is attempted for each event; none is retried.
    assert producer_cls.call_count == 2
    assert notifier.failed_count == 2
    assert all(isinstance(exc, KafkaTimeoutError) for exc in errors)
