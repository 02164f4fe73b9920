"""OTP Service — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── OTP ───────────────────────────────────────────────
    otp_validity_minutes: int = 5
    otp_default_kind: str = "numeric"
    otp_default_length: int = 6

    # ── Notification transport ────────────────────────────
    # Passed through to the publisher untouched; leave both empty to log only.
    kafka_bootstrap_servers: str = ""
    kafka_topic: str = "otp-events"
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 10.0
    notification_queue_size: int = 1000

    # ── Sweeper ───────────────────────────────────────────
    sweep_interval_seconds: float = 60.0

    # ── App ───────────────────────────────────────────────
    app_name: str = "OTP Service"
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
