"""FastAPI application entry point."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from otp_service.api.router import router as otp_router
from otp_service.config import settings
from otp_service.services.otp_manager import OTPManager
from otp_service.services.sweeper import run_periodic_sweep

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    manager = OTPManager.from_settings(settings)
    app.state.otp_manager = manager

    sweeper = None
    if settings.sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            run_periodic_sweep(manager, settings.sweep_interval_seconds)
        )

    yield

    logger.info("Shutting down %s …", settings.app_name)
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await asyncio.to_thread(manager.close, settings.notification_timeout_seconds)


app = FastAPI(
    title=settings.app_name,
    description="Issues, validates and expires one-time passcodes",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(otp_router)


@app.get("/health")
async def health_check(request: Request):
    """Liveness check with the current store size."""
    manager: OTPManager | None = getattr(request.app.state, "otp_manager", None)
    return {
        "status": "healthy",
        "app": settings.app_name,
        "active_otps": manager.active_count if manager is not None else 0,
    }


def run() -> None:
    """Serve the app with uvicorn (``otp-service`` console script)."""
    import uvicorn

    uvicorn.run(
        "otp_service.main:app",
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )
