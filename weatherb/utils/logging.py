"""Centralized structlog configuration for the scheduler and settler processes."""

import structlog

_configured = False


def configure_logging() -> None:
    """Configure structlog with the project-standard processor chain.

    ``merge_contextvars`` adds whatever the queue worker bound for the job
    being processed (queue, job_id, dedupe_key), so processor log lines can
    be traced back to their job. ``add_log_level`` puts the level in the
    event dict for log shippers that read it as a field.

    Safe to call multiple times; only the first call takes effect.
    """
    global _configured
    if _configured:
        return
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ]
    )
    _configured = True
