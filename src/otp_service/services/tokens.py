"""Token generator — fixed-length secrets from the OS entropy source."""

from __future__ import annotations

import secrets

from otp_service.errors import InvalidLengthError, RandomSourceError, UnsupportedKindError
from otp_service.models.otp import OTPKind


def _check_length(length: int) -> None:
    if isinstance(length, bool) or not isinstance(length, int):
        raise InvalidLengthError(length)
    if length <= 0:
        raise InvalidLengthError(length)


def generate_numeric(length: int) -> str:
    """Return exactly *length* decimal digits, each drawn independently."""
    _check_length(length)
    try:
        digits = [str(secrets.randbelow(10)) for _ in range(length)]
    except (OSError, NotImplementedError) as exc:
        raise RandomSourceError("Could not read from the secure random source") from exc
    return "".join(digits)


def generate_alphanumeric(length: int) -> str:
    """Return exactly *length* lowercase hexadecimal characters.

    Each random byte encodes to two hex characters, so ``ceil(length / 2)``
    bytes are read and the encoding is cut down to *length*.  The buffer
    is sized from *length*, so the short-buffer check below only fires if
    the entropy source hands back fewer bytes than requested.
    """
    _check_length(length)
    try:
        raw = secrets.token_bytes((length + 1) // 2)
    except (OSError, NotImplementedError) as exc:
        raise RandomSourceError("Could not read from the secure random source") from exc

    encoded = raw.hex()
    if len(encoded) < length:
        raise InvalidLengthError(
            length, f"random buffer only supplies {len(encoded)} characters"
        )
    return encoded[:length]


_GENERATORS = {
    OTPKind.NUMERIC: generate_numeric,
    OTPKind.ALPHANUMERIC: generate_alphanumeric,
}


def parse_kind(kind: OTPKind | str) -> OTPKind:
    """Coerce *kind* to an ``OTPKind`` or raise ``UnsupportedKindError``."""
    try:
        return OTPKind(kind)
    except ValueError:
        raise UnsupportedKindError(kind) from None


def generate_token(kind: OTPKind | str, length: int) -> str:
    """Dispatch to the generator matching *kind*."""
    return _GENERATORS[parse_kind(kind)](length)
