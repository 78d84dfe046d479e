"""Exception hierarchy for the OCI k3s provisioning helpers.

Every failure carries a short ``kind`` label and the last diagnostic text
observed from the external system so the pipeline can report which stage
failed, how, and why.

Exceptions
----------
ProvisioningError
CommandError
ProbeUnavailable
RetryableProvisioningFailure
FatalConfigurationFailure
SettlementTimeout
RetryBudgetExhausted
StageFailed

Examples
--------
>>> err = SettlementTimeout("instance did not reach STOPPED", diagnostic="STOPPING")
>>> err.kind
'settlement-timeout'
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from oci_k3s._retry import AttemptRecord


class ProvisioningError(Exception):
    """Base error for provisioning helpers.

    Parameters
    ----------
    message
        Human-readable description of the failure.
    diagnostic
        Raw text reported by the external system. Defaults to ``message``.

    Attributes
    ----------
    records
        Attempt log of the retry loop that gave up, empty when the error was
        raised outside one.
    """

    kind = "provisioning-error"

    def __init__(self, message: str, *, diagnostic: str | None = None) -> None:
        super().__init__(message)
        self.diagnostic = diagnostic if diagnostic is not None else message
        self.records: tuple[AttemptRecord, ...] = ()


class CommandError(ProvisioningError):
    """Raised when an external command exits unsuccessfully.

    Examples
    --------
    >>> err = CommandError("oci", "ServiceError: 500", return_code=1)
    >>> err.return_code
    1
    """

    kind = "command-failed"

    def __init__(
        self,
        command: str,
        diagnostic: str,
        *,
        return_code: int | None = None,
    ) -> None:
        super().__init__(f"Command {command!r} failed: {diagnostic}", diagnostic=diagnostic)
        self.command = command
        self.return_code = return_code


class ProbeUnavailable(ProvisioningError):
    """Raised when a probe cannot tell what state a resource is in."""

    kind = "probe-unavailable"


class RetryableProvisioningFailure(ProvisioningError):
    """Raised for capacity or quota failures that are worth retrying."""

    kind = "retryable-provisioning-failure"


class FatalConfigurationFailure(ProvisioningError):
    """Raised for bad input, auth failures, and other non-retryable errors."""

    kind = "fatal-configuration-failure"


class SettlementTimeout(ProvisioningError):
    """Raised when a wait loop exhausts its attempt budget."""

    kind = "settlement-timeout"


class RetryBudgetExhausted(ProvisioningError):
    """Raised when every retry attempt ended in a retryable failure.

    Examples
    --------
    >>> err = RetryBudgetExhausted(3, [], diagnostic="Out of host capacity.")
    >>> str(err)
    'gave up after 3 attempts'
    """

    kind = "retry-budget-exhausted"

    def __init__(
        self,
        attempts: int,
        records: Sequence[AttemptRecord],
        *,
        diagnostic: str,
    ) -> None:
        super().__init__(f"gave up after {attempts} attempts", diagnostic=diagnostic)
        self.attempts = attempts
        self.records = tuple(records)


class StageFailed(ProvisioningError):
    """Raised by the pipeline when a stage fails.

    Examples
    --------
    >>> cause = SettlementTimeout("shape did not update", diagnostic="1 OCPU")
    >>> err = StageFailed("resize", cause)
    >>> (err.stage, err.kind, err.diagnostic)
    ('resize', 'settlement-timeout', '1 OCPU')
    """

    def __init__(self, stage: str, cause: ProvisioningError) -> None:
        super().__init__(
            f"stage {stage!r} failed ({cause.kind}): {cause}",
            diagnostic=cause.diagnostic,
        )
        self.stage = stage
        self.cause = cause
        self.kind = cause.kind
        self.records = cause.records


__all__ = [
    "CommandError",
    "FatalConfigurationFailure",
    "ProbeUnavailable",
    "ProvisioningError",
    "RetryBudgetExhausted",
    "RetryableProvisioningFailure",
    "SettlementTimeout",
    "StageFailed",
]
