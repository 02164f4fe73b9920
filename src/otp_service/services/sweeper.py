"""Periodic sweeper — purges expired OTPs on a fixed interval."""

from __future__ import annotations

import asyncio
import logging

from otp_service.services.otp_manager import OTPManager

logger = logging.getLogger(__name__)


async def run_periodic_sweep(manager: OTPManager, interval_seconds: float) -> None:
    """Call ``manager.sweep()`` every *interval_seconds* until cancelled.

    The sweep itself runs in a worker thread so the event loop never waits
    on the store lock.  A failing pass is logged and the loop carries on.
    """
    logger.info("Sweeper started (every %ss)", interval_seconds)
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                removed = await asyncio.to_thread(manager.sweep)
            except Exception:
                logger.exception("Sweep pass failed")
                continue
            logger.debug("Sweep pass removed %d OTP(s)", removed)
    finally:
        logger.info("Sweeper stopped")
