"""Notification transports — where issuance events end up.

Every publisher is called from the notifier's worker thread only, so a
slow broker or endpoint never holds up an OTP request.  Publishers raise on
failure; reporting is the notifier's job.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import httpx
from kafka import KafkaProducer

if TYPE_CHECKING:
    from otp_service.config import Settings

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    def publish(self, key: str, payload: bytes) -> None: ...

    def close(self) -> None: ...


class KafkaPublisher:
    """Writes events to a Kafka topic, keyed by identifier.

    The producer is created on the first ``publish`` call rather than at
    construction, so an unreachable broker surfaces as a failed publish on
    the notifier's worker instead of blocking application startup.  A
    failed connection attempt is repeated on the next event.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._servers = [s.strip() for s in bootstrap_servers.split(",") if s.strip()]
        self._topic = topic
        self._timeout = timeout_seconds
        self._producer: KafkaProducer | None = None

    def _get_producer(self) -> KafkaProducer:
        if self._producer is None:
            self._producer = KafkaProducer(
                bootstrap_servers=self._servers,
                request_timeout_ms=int(self._timeout * 1000),
            )
            logger.info("Connected Kafka producer to %s", ",".join(self._servers))
        return self._producer

    def publish(self, key: str, payload: bytes) -> None:
        producer = self._get_producer()
        future = producer.send(self._topic, key=key.encode("utf-8"), value=payload)
        # Block the worker (not the caller) until the broker acknowledges.
        metadata = future.get(timeout=self._timeout)
        logger.debug(
            "Event for %s written to %s[%s]@%s",
            key,
            metadata.topic,
            metadata.partition,
            metadata.offset,
        )

    def close(self) -> None:
        if self._producer is None:
            return
        self._producer.close(timeout=self._timeout)
        self._producer = None
        logger.info("Kafka producer closed")


class WebhookPublisher:
    """POSTs each event as JSON to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def publish(self, key: str, payload: bytes) -> None:
        resp = self._client.post(
            self._url,
            content=payload,
            headers={"Content-Type": "application/json", "X-OTP-Identifier": key},
        )
        resp.raise_for_status()
        logger.debug("Event for %s delivered to webhook (%s)", key, resp.status_code)

    def close(self) -> None:
        self._client.close()


class LogPublisher:
    """Fallback transport that only records that an event was produced."""

    def publish(self, key: str, payload: bytes) -> None:
        logger.warning("No notification transport configured — event for %s logged only", key)

    def close(self) -> None:
        pass


def build_publisher(settings: Settings) -> Publisher:
    """Pick a transport from the connection parameters in *settings*."""
    if settings.kafka_bootstrap_servers:
        logger.info(
            "Publishing OTP events to Kafka topic %s via %s",
            settings.kafka_topic,
            settings.kafka_bootstrap_servers,
        )
        return KafkaPublisher(
            settings.kafka_bootstrap_servers,
            settings.kafka_topic,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    if settings.notification_webhook_url:
        logger.info("Publishing OTP events to webhook %s", settings.notification_webhook_url)
        return WebhookPublisher(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    return LogPublisher()
