"""Errors raised on the OTP generation path."""

from __future__ import annotations


class OTPError(Exception):
    pass


class InvalidLengthError(OTPError, ValueError):
    def __init__(self, length: object, reason: str = "must be a positive integer"):
        super().__init__(f"Invalid token length {length!r}: {reason}")
        self.length = length


class UnsupportedKindError(OTPError, ValueError):
    def __init__(self, kind: object):
        super().__init__(f"Unsupported OTP kind {kind!r}")
        self.kind = kind


class RandomSourceError(OTPError):
    """The secure entropy source could not be read."""
