"""OTP manager — thread-safe in-memory OTP store with expiry.

Each entry maps ``identifier → OTPRecord``.  A single lock guards the whole
store and is held only around the dictionary operations themselves; token
generation happens before it is taken and the issuance event is queued
after it is released.
"""

from __future__ import annotations

import hmac
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from otp_service.models.otp import (
    OTPEvent,
    OTPKind,
    OTPRecord,
    ValidationReason,
    ValidationResult,
)
from otp_service.services.notifier import OTPNotifier
from otp_service.services.publishers import build_publisher
from otp_service.services.tokens import generate_token, parse_kind

if TYPE_CHECKING:
    from otp_service.config import Settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class OTPManager:
    """Issues, validates and expires one-time passcodes.

    Parameters
    ----------
    validity_minutes:
        How long an OTP stays valid after it is issued.
    notifier:
        Receives an ``OTPEvent`` for every issued OTP.  ``None`` disables
        notifications entirely.
    clock:
        Returns the current (timezone-aware) time.  Defaults to UTC now.
    """

    def __init__(
        self,
        validity_minutes: float,
        notifier: OTPNotifier | None = None,
        clock: Clock | None = None,
    ) -> None:
        if validity_minutes <= 0:
            raise ValueError("validity_minutes must be positive")
        self._validity = timedelta(minutes=validity_minutes)
        self._notifier = notifier
        self._clock = clock or utc_now
        self._store: dict[str, OTPRecord] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> OTPManager:
        """Build a manager and its notification transport from *settings*."""
        notifier = OTPNotifier(
            build_publisher(settings),
            max_queue_size=settings.notification_queue_size,
        )
        return cls(settings.otp_validity_minutes, notifier=notifier)

    @property
    def validity(self) -> timedelta:
        return self._validity

    # ── Issuance ─────────────────────────────────────────

    def generate(self, identifier: str, kind: OTPKind | str, length: int) -> OTPRecord:
        """Issue a new OTP for *identifier*, replacing any previous one.

        Raises ``UnsupportedKindError``, ``InvalidLengthError`` or
        ``RandomSourceError``; in each case the store is left untouched.
        """
        otp_kind = parse_kind(kind)
        token = generate_token(otp_kind, length)

        with self._lock:
            record = OTPRecord(
                identifier=identifier,
                token=token,
                kind=otp_kind,
                expires_at=self._clock() + self._validity,
            )
            replaced = identifier in self._store
            self._store[identifier] = record

        if replaced:
            logger.info("Replaced existing OTP for %s", identifier)
        logger.info(
            "Issued %s OTP for %s (expires %s)",
            otp_kind.value,
            identifier,
            record.expires_at.isoformat(),
        )
        self._notify(record)
        return record

    def _notify(self, record: OTPRecord) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(OTPEvent.from_record(record))
        except Exception:
            logger.exception("Could not queue OTP event for %s", record.identifier)

    # ── Validation ───────────────────────────────────────

    def validate(self, identifier: str, token: str) -> ValidationResult:
        """Check *token* against the live OTP for *identifier*.

        A match consumes the OTP.  An expired OTP is removed on the spot.
        A mismatch leaves the OTP in place so the caller may try again.
        """
        with self._lock:
            record = self._store.get(identifier)
            if record is None:
                reason = ValidationReason.NOT_FOUND
            elif record.is_expired(self._clock()):
                del self._store[identifier]
                reason = ValidationReason.EXPIRED
            elif not hmac.compare_digest(record.token.encode(), token.encode()):
                reason = ValidationReason.MISMATCH
            else:
                del self._store[identifier]
                reason = ValidationReason.VALID

        logger.info("OTP validation for %s: %s", identifier, reason.value)
        return ValidationResult(valid=reason is ValidationReason.VALID, reason=reason)

    # ── Expiry ───────────────────────────────────────────

    def sweep(self, identifier: str | None = None) -> int:
        """Remove expired OTPs and return how many were removed.

        With an *identifier* only that entry is examined; otherwise the
        whole store is scanned.
        """
        with self._lock:
            now = self._clock()
            if identifier:
                candidates = [identifier] if identifier in self._store else []
            else:
                candidates = list(self._store)
            expired = [key for key in candidates if self._store[key].is_expired(now)]
            for key in expired:
                del self._store[key]

        if expired:
            logger.info("Swept %d expired OTP(s)", len(expired))
        return len(expired)

    def invalidate(self, identifier: str) -> bool:
        """Drop the OTP for *identifier* regardless of expiry."""
        with self._lock:
            removed = self._store.pop(identifier, None) is not None
        if removed:
            logger.info("OTP invalidated for %s", identifier)
        return removed

    # ── Introspection ────────────────────────────────────

    def __contains__(self, identifier: object) -> bool:
        """``True`` if a not-yet-expired OTP exists.  Does not consume it."""
        if not isinstance(identifier, str):
            return False
        with self._lock:
            record = self._store.get(identifier)
            return record is not None and not record.is_expired(self._clock())

    @property
    def active_count(self) -> int:
        """Number of stored OTPs, including expired ones not yet swept."""
        with self._lock:
            return len(self._store)

    # ── Lifecycle ────────────────────────────────────────

    def close(self, timeout: float | None = None) -> None:
        """Flush and release the notification transport."""
        if self._notifier is not None:
            self._notifier.close(timeout)

    def __enter__(self) -> OTPManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
