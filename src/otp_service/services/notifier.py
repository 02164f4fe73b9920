"""Notifier — fire-and-forget delivery of issuance events.

Events are pushed onto a bounded queue without blocking and drained by a
single background worker thread that hands them to a ``Publisher``.
Failures are logged and reported through ``on_error``; nothing is retried.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable

from otp_service.models.otp import OTPEvent
from otp_service.services.publishers import Publisher

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[OTPEvent, Exception], None]

_STOP = object()


class NotifierClosedError(RuntimeError):
    pass


class NotifierQueueFullError(RuntimeError):
    pass


class OTPNotifier:
    """Background publisher for ``OTPEvent`` objects.

    Parameters
    ----------
    publisher:
        Transport the worker sends serialized events through.
    max_queue_size:
        Capacity of the pending-event queue.  Once full, new events are
        dropped (and reported) rather than blocking the caller.
    on_error:
        Optional callback invoked with the event and the exception whenever
        an event is dropped or a publish fails.
    """

    def __init__(
        self,
        publisher: Publisher,
        max_queue_size: int = 1000,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._publisher = publisher
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._on_error = on_error
        self._state_lock = threading.Lock()
        self._closed = False
        self._sent = 0
        self._failed = 0
        self._worker = threading.Thread(
            target=self._run, name="otp-notifier", daemon=True
        )
        self._worker.start()

    # ── Producer side ────────────────────────────────────

    def notify(self, event: OTPEvent) -> bool:
        """Queue *event* for delivery.  Never blocks, never raises.

        Returns ``True`` if the event was accepted.
        """
        with self._state_lock:
            if self._closed:
                error: Exception = NotifierClosedError("notifier is closed")
            else:
                try:
                    self._queue.put_nowait(event)
                    return True
                except queue.Full:
                    error = NotifierQueueFullError("notification queue is full")
        self._report(event, error)
        return False

    # ── Worker side ──────────────────────────────────────

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    self._close_publisher()
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, event: OTPEvent) -> None:
        try:
            self._publisher.publish(event.identifier, event.to_message())
        except Exception as exc:
            logger.exception("Failed to publish OTP event for %s", event.identifier)
            self._report(event, exc, log=False)
            return
        with self._state_lock:
            self._sent += 1
        logger.info("OTP event published for %s", event.identifier)

    def _close_publisher(self) -> None:
        # Runs on the worker thread, so it never overlaps a publish.
        try:
            self._publisher.close()
        except Exception:
            logger.exception("Error while closing notification publisher")

    def _report(self, event: OTPEvent, exc: Exception, log: bool = True) -> None:
        with self._state_lock:
            self._failed += 1
        if log:
            logger.error("Dropping OTP event for %s: %s", event.identifier, exc)
        if self._on_error is None:
            return
        try:
            self._on_error(event, exc)
        except Exception:
            logger.exception("Notification error callback raised")

    # ── Lifecycle ────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def failed_count(self) -> int:
        return self._failed

    def flush(self) -> None:
        """Block until every queued event has been handled."""
        self._queue.join()

    def close(self, timeout: float | None = None) -> None:
        """Drain pending events, stop the worker and close the publisher.

        Returns within *timeout* seconds even if the publisher hangs; the
        worker then closes the publisher itself once it reaches the stop
        marker.  Safe to call more than once; only the first call has an
        effect.
        """
        with self._state_lock:
            if self._closed:
                return
            self._closed = True

        deadline = None if timeout is None else time.monotonic() + timeout
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning(
                "Notification queue still full after %ss; worker left running", timeout
            )
        else:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            self._worker.join(remaining)
            if self._worker.is_alive():
                logger.warning("Notifier worker did not finish within %ss", timeout)
        logger.info(
            "Notifier closed (%d sent, %d failed)", self._sent, self._failed
        )
