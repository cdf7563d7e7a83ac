"""Credential and configuration validators run at process start-up."""

from croniter import croniter

from weatherb.exceptions import ConfigError


def _require_chain(settings) -> None:
    if not settings.CONTRACT_ADDRESS:
        raise ConfigError("CONTRACT_ADDRESS is required")
    if not settings.RPC_URL.startswith(("http://", "https://")):
        raise ConfigError("RPC_URL must be an http(s) URL")


def _require_lease_headroom(settings, concurrency: int) -> None:
    # Chain writes are serialized per signer, so the last of ``concurrency``
    # jobs may wait for every earlier confirmation before its own.
    worst_case = (
        concurrency * settings.TX_CONFIRM_TIMEOUT_SECONDS
        + settings.PROOF_SERVICE_TIMEOUT_SECONDS
        + settings.WEATHER_HTTP_TIMEOUT_SECONDS
    )
    if settings.JOB_LEASE_SECONDS <= worst_case:
        raise ConfigError(
            f"JOB_LEASE_SECONDS ({settings.JOB_LEASE_SECONDS:g}) must exceed "
            f"{worst_case:g}s, the longest a job can hold the signer"
        )


def validate_scheduler_config(settings=None) -> None:
    """Raise ConfigError if the scheduler cannot run with the current settings."""
    if settings is None:
        from config.settings import settings
    _require_chain(settings)
    if not settings.SCHEDULER_PRIVATE_KEY:
        raise ConfigError("SCHEDULER_PRIVATE_KEY is required")
    if not croniter.is_valid(settings.SCHEDULE_TIME_CRON):
        raise ConfigError(f"SCHEDULE_TIME_CRON is not a valid cron expression: {settings.SCHEDULE_TIME_CRON}")
    _require_lease_headroom(settings, 1)


def validate_settler_config(settings=None) -> None:
    """Raise ConfigError if the settler cannot run with the current settings."""
    if settings is None:
        from config.settings import settings
    _require_chain(settings)
    if not settings.SETTLER_PRIVATE_KEY:
        raise ConfigError("SETTLER_PRIVATE_KEY is required")
    _require_lease_headroom(settings, settings.SETTLEMENT_WORKER_CONCURRENCY)


def validate_telegram(settings=None) -> None:
    """Raise ConfigError if Telegram credentials are missing."""
    if settings is None:
        from config.settings import settings
    if not settings.TELEGRAM_BOT_TOKEN:
        raise ConfigError("TELEGRAM_BOT_TOKEN is required")
    if not settings.TELEGRAM_CHAT_ID:
        raise ConfigError("TELEGRAM_CHAT_ID is required")
