"""OTP value objects — stored records, validation outcomes and events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class OTPKind(StrEnum):
    """Alphabet a token is drawn from."""

    NUMERIC = "numeric"
    ALPHANUMERIC = "alphanumeric"


class ValidationReason(StrEnum):
    VALID = "valid"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class OTPRecord:
    """A single issued passcode.

    Records are never mutated once stored; issuing again for the same
    identifier replaces the record wholesale.
    """

    identifier: str
    token: str
    kind: OTPKind
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"<OTPRecord identifier={self.identifier!r} kind={self.kind.value} "
            f"expires_at={self.expires_at.isoformat()}>"
        )


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation attempt (never an error)."""

    valid: bool
    reason: ValidationReason

    def __bool__(self) -> bool:
        return self.valid


class OTPEvent(BaseModel):
    """Notification payload published once per successful issuance.

    The JSON field names are consumed by downstream delivery services,
    so treat them as a wire format.
    """

    model_config = ConfigDict(frozen=True)

    identifier: str
    token: str
    kind: OTPKind
    expires_at: datetime

    @classmethod
    def from_record(cls, record: OTPRecord) -> OTPEvent:
        return cls(
            identifier=record.identifier,
            token=record.token,
            kind=record.kind,
            expires_at=record.expires_at,
        )

    def to_message(self) -> bytes:
        return self.model_dump_json().encode("utf-8")
