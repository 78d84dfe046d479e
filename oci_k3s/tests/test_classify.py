"""Unit tests for failure classification."""

from __future__ import annotations

import pytest

from oci_k3s._classify import FailureKind, classify, matched_rule


@pytest.mark.parametrize(
    "diagnostic",
    [
        "Error: out of capacity for shape VM.Standard.A1.Flex in domain AD-1",
        "500-InternalError, Out of host capacity.",
        "There is no available capacity in this availability domain",
        "Insufficient capacity to launch the instance",
        "You have reached the service limit for this shape",
        "Shape VM.Standard.A1.Flex not available in AD-2",
        "Error: limit exceeded for standard-a1-core-count",
        "QUOTA EXCEEDED in compartment",
        '{"code": "TooManyRequests", "message": "Too many requests", "status": 429}',
        "Error: 400-LimitExceeded, The following service limits were exceeded",
    ],
)
def test_capacity_and_quota_errors_are_retryable(diagnostic: str) -> None:
    assert classify(diagnostic) is FailureKind.RETRYABLE, diagnostic


@pytest.mark.parametrize(
    "diagnostic",
    [
        "invalid parameter: compartment_id",
        '{"code": "NotAuthenticated", "status": 401}',
        "Error: Invalid provider configuration",
        "",
        "something entirely unexpected happened",
    ],
)
def test_unknown_and_configuration_errors_are_fatal(diagnostic: str) -> None:
    assert classify(diagnostic) is FailureKind.FATAL, diagnostic


def test_service_code_takes_precedence_over_text() -> None:
    diagnostic = '{"code": "QuotaExceeded", "message": "Out of host capacity."}'
    assert matched_rule(diagnostic) == "service-code:QuotaExceeded"


def test_matched_rule_names_the_textual_pattern() -> None:
    assert matched_rule("Error: Out of host capacity.") == "capacity"
    assert matched_rule("quota exceeded") == "quota"
    assert matched_rule("invalid parameter") is None
