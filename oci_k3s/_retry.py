"""Capacity-aware retry loop around a single provisioning attempt.

Only :class:`RetryableProvisioningFailure` is retried. Every other error
propagates after the attempt that raised it, without sleeping or running
cleanup, so misconfiguration is reported within one attempt. The error
carries the attempt log in its ``records`` attribute.

Examples
--------
>>> result = run_with_retry(lambda: "ocid1.instance", RetryPolicy(max_attempts=3, interval=0))
>>> (result.value, len(result.attempts))
('ocid1.instance', 1)
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, TypeVar

from oci_k3s._errors import (
    ProvisioningError,
    RetryableProvisioningFailure,
    RetryBudgetExhausted,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3000
DEFAULT_RETRY_INTERVAL = 120


class AttemptOutcome(enum.Enum):
    """Result of one attempt."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable-failure"
    FATAL_FAILURE = "fatal-failure"


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One entry of the attempt log."""

    attempt: int
    timestamp: datetime
    outcome: AttemptOutcome
    diagnostic: str = ""


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and pacing.

    Parameters
    ----------
    max_attempts
        Upper bound on attempts, including the first one.
    interval
        Seconds to sleep after the first retryable failure.
    backoff
        Multiplier applied to the interval after every retryable failure.
        ``1.0`` keeps the interval fixed.
    max_interval
        Optional ceiling for the backed-off interval.

    Examples
    --------
    >>> policy = RetryPolicy(max_attempts=5, interval=10, backoff=2.0, max_interval=30)
    >>> [policy.delay_for(n) for n in (1, 2, 3, 4)]
    [10.0, 20.0, 30, 30]
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    interval: float = DEFAULT_RETRY_INTERVAL
    backoff: float = 1.0
    max_interval: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.interval < 0:
            msg = f"interval must not be negative, got {self.interval}"
            raise ValueError(msg)
        if self.backoff < 1:
            msg = f"backoff must be at least 1.0, got {self.backoff}"
            raise ValueError(msg)

    def delay_for(self, attempt: int) -> float:
        """Return the sleep that follows retryable failure number *attempt*."""

        delay = self.interval * self.backoff ** (attempt - 1)
        if self.max_interval is not None:
            return min(delay, self.max_interval)
        return delay


@dataclass(frozen=True, slots=True)
class RetryResult(Generic[T]):
    """Successful value plus the full attempt log."""

    value: T
    attempts: tuple[AttemptRecord, ...]


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _run_cleanup(cleanup: Callable[[], None], attempt: int) -> None:
    logger.info("Running cleanup after attempt %d", attempt)
    try:
        cleanup()
    except ProvisioningError as exc:
        logger.warning("Cleanup after attempt %d failed: %s", attempt, exc)


def run_with_retry(
    action: Callable[[], T],
    policy: RetryPolicy,
    *,
    cleanup: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult[T]:
    """Run *action* until it succeeds, fails fatally, or the budget runs out.

    Parameters
    ----------
    action
        One idempotent provisioning attempt. It should re-probe external
        state itself so that a retry never duplicates a resource.
    policy
        Attempt budget and pacing.
    cleanup
        Compensating action run before the next attempt to discard resources
        a retryable failure left behind. It does not run after the last
        attempt, so a caller can inspect what the final attempt produced. Its own failures are logged and
        do not stop the loop.
    sleep
        Injected for tests.

    Returns
    -------
    RetryResult
        The action's value and every attempt record in order.

    Raises
    ------
    RetryBudgetExhausted
        When ``policy.max_attempts`` retryable failures occurred.
    ProvisioningError
        Any non-retryable failure, with ``records`` set to the attempt log.
    """

    records: list[AttemptRecord] = []
    last_diagnostic = ""
    for attempt in range(1, policy.max_attempts + 1):
        logger.info("Attempt %d/%d", attempt, policy.max_attempts)
        try:
            value = action()
        except RetryableProvisioningFailure as exc:
            last_diagnostic = exc.diagnostic
            records.append(
                AttemptRecord(attempt, _now(), AttemptOutcome.RETRYABLE_FAILURE, exc.diagnostic)
            )
            logger.warning("Attempt %d hit a retryable failure: %s", attempt, exc)
        except Exception as exc:
            diagnostic = exc.diagnostic if isinstance(exc, ProvisioningError) else str(exc)
            records.append(AttemptRecord(attempt, _now(), AttemptOutcome.FATAL_FAILURE, diagnostic))
            logger.error("Attempt %d failed with a non-retryable error: %s", attempt, exc)
            if isinstance(exc, ProvisioningError):
                exc.records = tuple(records)
            raise
        else:
            records.append(AttemptRecord(attempt, _now(), AttemptOutcome.SUCCESS))
            logger.info("Attempt %d succeeded", attempt)
            return RetryResult(value=value, attempts=tuple(records))

        if attempt < policy.max_attempts:
            if cleanup is not None:
                _run_cleanup(cleanup, attempt)
            delay = policy.delay_for(attempt)
            logger.info("Retrying in %s seconds", delay)
            sleep(delay)

    raise RetryBudgetExhausted(policy.max_attempts, records, diagnostic=last_diagnostic)


__all__ = [
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RETRY_INTERVAL",
    "AttemptOutcome",
    "AttemptRecord",
    "RetryPolicy",
    "RetryResult",
    "run_with_retry",
]
