"""Failure classification for provisioning diagnostics.

OCI reports capacity problems as prose inside otherwise generic service
errors, so classification is a lookup table matched against the diagnostic
text. Structured service codes are checked first; anything that matches
neither is fatal.
"""

from __future__ import annotations

import enum
import re


class FailureKind(enum.Enum):
    """How a provisioning failure should be handled."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


RETRYABLE_SERVICE_CODES = frozenset({"LimitExceeded", "QuotaExceeded", "TooManyRequests"})

_SERVICE_CODE_PATTERN = re.compile(
    r"(?:\"code\"\s*:\s*\"|\b\d{3}-|Service error:\s*)(?P<code>[A-Za-z]+)"
)

RETRYABLE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("capacity", re.compile(r"out of (?:host )?capacity", re.IGNORECASE)),
    ("capacity", re.compile(r"(?:no available|insufficient) capacity", re.IGNORECASE)),
    ("service-limit", re.compile(r"service limit", re.IGNORECASE)),
    ("shape-unavailable", re.compile(r"shape \S+ (?:is )?not available", re.IGNORECASE)),
    ("quota", re.compile(r"(?:limit|quota) exceeded", re.IGNORECASE)),
)


def _service_codes(diagnostic: str) -> set[str]:
    """Return service error codes embedded in *diagnostic*.

    Examples
    --------
    >>> sorted(_service_codes('{"code": "TooManyRequests", "status": 429}'))
    ['TooManyRequests']
    >>> sorted(_service_codes("Error: 400-LimitExceeded, too many instances"))
    ['LimitExceeded']
    """

    return {match.group("code") for match in _SERVICE_CODE_PATTERN.finditer(diagnostic)}


def matched_rule(diagnostic: str) -> str | None:
    """Return the name of the retryable rule matching *diagnostic*, if any.

    Examples
    --------
    >>> matched_rule("500-InternalError, Out of host capacity.")
    'capacity'
    >>> matched_rule("invalid parameter: shape") is None
    True
    """

    codes = _service_codes(diagnostic) & RETRYABLE_SERVICE_CODES
    if codes:
        return f"service-code:{sorted(codes)[0]}"
    for name, pattern in RETRYABLE_PATTERNS:
        if pattern.search(diagnostic):
            return name
    return None


def classify(diagnostic: str) -> FailureKind:
    """Classify a provisioning diagnostic.

    Examples
    --------
    >>> classify("Error: out of capacity for shape VM.Standard.A1.Flex")
    <FailureKind.RETRYABLE: 'retryable'>
    >>> classify("invalid parameter: compartment_id")
    <FailureKind.FATAL: 'fatal'>
    >>> classify("")
    <FailureKind.FATAL: 'fatal'>
    """

    if matched_rule(diagnostic) is not None:
        return FailureKind.RETRYABLE
    return FailureKind.FATAL


__all__ = [
    "RETRYABLE_PATTERNS",
    "RETRYABLE_SERVICE_CODES",
    "FailureKind",
    "classify",
    "matched_rule",
]
