"""OTP API router.

Endpoints
---------
POST /otp/generate   → issue an OTP (delivered via the notification channel)
POST /otp/validate   → check and consume an OTP
POST /otp/sweep      → purge expired OTPs
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from otp_service.config import settings
from otp_service.errors import InvalidLengthError, RandomSourceError, UnsupportedKindError
from otp_service.models.otp import ValidationReason
from otp_service.services.otp_manager import OTPManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])


def get_otp_manager(request: Request) -> OTPManager:
    """Return the manager created during application startup."""
    return request.app.state.otp_manager


# ── Response / request models ────────────────────────────

class GenerateRequest(BaseModel):
    identifier: str
    kind: str = settings.otp_default_kind
    length: int = settings.otp_default_length


class GenerateResponse(BaseModel):
    identifier: str
    kind: str
    expires_at: datetime


class ValidateRequest(BaseModel):
    identifier: str
    token: str


class ValidateResponse(BaseModel):
    valid: bool
    reason: ValidationReason


class SweepRequest(BaseModel):
    identifier: str | None = None


class SweepResponse(BaseModel):
    removed: int


# ── Endpoints ────────────────────────────────────────────

@router.post("/generate", response_model=GenerateResponse)
def generate_otp(body: GenerateRequest, manager: OTPManager = Depends(get_otp_manager)):
    """Issue an OTP for *identifier*.

    The token itself is never returned here; it travels only on the
    notification channel to whoever delivers it to the user.
    """
    try:
        record = manager.generate(body.identifier, body.kind, body.length)
    except (InvalidLengthError, UnsupportedKindError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except RandomSourceError as exc:
        logger.error("OTP generation failed for %s: %s", body.identifier, exc)
        raise HTTPException(status_code=503, detail="Random source unavailable") from exc

    return GenerateResponse(
        identifier=record.identifier,
        kind=record.kind.value,
        expires_at=record.expires_at,
    )


@router.post("/validate", response_model=ValidateResponse)
def validate_otp(body: ValidateRequest, manager: OTPManager = Depends(get_otp_manager)):
    """Validate an OTP for the given identifier."""
    result = manager.validate(body.identifier, body.token)
    return ValidateResponse(valid=result.valid, reason=result.reason)


@router.post("/sweep", response_model=SweepResponse)
def sweep_otps(
    body: SweepRequest | None = None,
    manager: OTPManager = Depends(get_otp_manager),
):
    """Remove expired OTPs (one identifier, or the whole store)."""
    identifier = body.identifier if body else None
    return SweepResponse(removed=manager.sweep(identifier))
