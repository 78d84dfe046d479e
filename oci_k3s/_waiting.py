"""Bounded polling used for every "wait for state X" step."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from oci_k3s._errors import ProbeUnavailable, SettlementTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class WaitBudget:
    """Attempt count and poll interval for a single wait loop.

    Examples
    --------
    >>> WaitBudget(attempts=60, interval=5).total_seconds
    300
    """

    attempts: int
    interval: float

    @property
    def total_seconds(self) -> float:
        return self.attempts * self.interval


class AbortedWait(Exception):
    """Raised by :func:`wait_for` when the abort condition fires."""


def wait_for(
    probe: Callable[[], T],
    accept: Callable[[T], bool],
    budget: WaitBudget,
    *,
    description: str,
    abort: Callable[[T], str | None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Poll *probe* until *accept* returns true for its result.

    ``ProbeUnavailable`` from the probe counts as a failed attempt rather
    than an error. *abort* may return a message to stop waiting early.

    Raises
    ------
    AbortedWait
        When *abort* reports a terminal condition.
    SettlementTimeout
        When the budget is exhausted. The last observed value or probe
        error is attached as the diagnostic.
    """

    last_diagnostic = "no observation"
    for attempt in range(1, budget.attempts + 1):
        try:
            value = probe()
        except ProbeUnavailable as exc:
            last_diagnostic = exc.diagnostic
            logger.info(
                "Probe unavailable while waiting for %s (attempt %d/%d): %s",
                description,
                attempt,
                budget.attempts,
                exc.diagnostic,
            )
        else:
            if accept(value):
                return value
            if abort is not None and (reason := abort(value)) is not None:
                raise AbortedWait(reason)
            last_diagnostic = repr(value)
            logger.info(
                "Waiting for %s (attempt %d/%d)",
                description,
                attempt,
                budget.attempts,
            )
        if attempt < budget.attempts:
            sleep(budget.interval)

    msg = f"Timed out waiting for {description} after {budget.attempts} attempts"
    raise SettlementTimeout(msg, diagnostic=last_diagnostic)


def read_with_retry(
    probe: Callable[[], T],
    budget: WaitBudget,
    *,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Return the first answer *probe* gives, retrying while it is unavailable.

    The last attempt lets ``ProbeUnavailable`` propagate, so a caller never
    mistakes an unreachable API for a negative answer.

    Examples
    --------
    >>> read_with_retry(lambda: "RUNNING", WaitBudget(3, 0), description="state")
    'RUNNING'
    """

    for attempt in range(1, budget.attempts):
        try:
            return probe()
        except ProbeUnavailable as exc:
            logger.info(
                "Could not read %s (attempt %d/%d): %s",
                description,
                attempt,
                budget.attempts,
                exc.diagnostic,
            )
        sleep(budget.interval)
    return probe()


__all__ = ["AbortedWait", "WaitBudget", "read_with_retry", "wait_for"]
