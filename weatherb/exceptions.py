"""Custom exceptions for the weatherb market lifecycle engine."""

from __future__ import annotations


class WeatherbError(Exception):
    """Base exception for all weatherb errors."""


class ConfigError(WeatherbError):
    """Missing or invalid configuration."""


class PayloadValidationError(WeatherbError):
    """Job payload does not match the queue's payload schema."""


class ProviderError(WeatherbError):
    """Error reading from the weather provider or proof service."""


class HealthProbeError(ProviderError):
    """The provider health probe itself failed (no status was obtained)."""


class ChainError(WeatherbError):
    """Error talking to the ledger or executing a contract call."""


class ChainRevertError(ChainError):
    """A contract call reverted.

    ``permanent`` is True when the revert reflects on-chain state (wrong
    market status, unauthorized signer) that retrying cannot change.
    """

    def __init__(self, message: str, *, reason: str = "", permanent: bool = True) -> None:
        super().__init__(message)
        self.reason = reason
        self.permanent = permanent


class TransientChainError(ChainError):
    """RPC timeout, nonce contention or unconfirmed transaction."""


class JobError(WeatherbError):
    """Base class for errors raised by queue processors."""


class PermanentJobError(JobError):
    """The job can never succeed; dead-letter it without retrying."""


class JobDeferred(JobError):
    """The job must not run right now; reschedule it without consuming an attempt."""

    def __init__(self, reason: str, *, delay_seconds: float = 60.0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.delay_seconds = delay_seconds
