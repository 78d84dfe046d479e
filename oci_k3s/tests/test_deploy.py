"""Tests for the deploy action and its capacity retry."""

from __future__ import annotations

from pathlib import Path

import pytest

from oci_k3s._deploy import DeployConfig, deploy_instance, deploy_with_retry
from oci_k3s._errors import (
    FatalConfigurationFailure,
    RetryableProvisioningFailure,
    RetryBudgetExhausted,
)
from oci_k3s._lifecycle import StartPolicy
from oci_k3s._models import LifecyclePhase, ResourceDescriptor
from oci_k3s._probes import observe
from oci_k3s._retry import AttemptOutcome, RetryPolicy
from oci_k3s._waiting import WaitBudget

CAPACITY_ERROR = "Error: 500-InternalError, Out of host capacity.\nShape VM.Standard.A1.Flex"


def _make_config(tmp_path: Path, **overrides: object) -> DeployConfig:
    defaults: dict[str, object] = {
        "descriptor": ResourceDescriptor(compartment_id="ocid1.compartment.oc1..test"),
        "terraform_dir": tmp_path,
        "settle": WaitBudget(attempts=5, interval=0),
        "probe": WaitBudget(attempts=3, interval=0),
        "start": StartPolicy(attempts=2, retry_interval=0, settle=WaitBudget(attempts=5, interval=0)),
    }
    defaults.update(overrides)
    return DeployConfig(**defaults)


def test_absent_instance_is_created_and_waited_for(
    tmp_path: Path,
    fake_terraform,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    phases: list[LifecyclePhase] = []

    def recording_observe(descriptor: ResourceDescriptor):
        observed = observe(descriptor)
        phases.append(observed.phase)
        return observed

    monkeypatch.setattr("oci_k3s._deploy.observe", recording_observe)

    result = deploy_instance(_make_config(tmp_path))

    assert result.created is True
    assert result.lifecycle_state == "RUNNING"
    assert result.public_ip == "203.0.113.10"
    assert phases == [LifecyclePhase.ABSENT, LifecyclePhase.PROVISIONING, LifecyclePhase.RUNNING]
    assert fake_terraform.inits == 1
    assert fake_terraform.applies == 1


def test_second_deploy_reuses_existing_instance(tmp_path: Path, fake_terraform, fake_oci) -> None:
    config = _make_config(tmp_path)
    first = deploy_instance(config)
    mutations_after_first = list(fake_oci.mutations)

    second = deploy_instance(config)

    assert second.instance_id == first.instance_id
    assert second.created is False
    assert second.lifecycle_state == "RUNNING"
    assert fake_terraform.applies == 1, "no second create request"
    assert fake_oci.mutations == mutations_after_first
    assert len(fake_oci.instances) == 1


def test_init_is_skipped_when_already_initialised(tmp_path: Path, fake_terraform) -> None:
    fake_terraform.initialised = True
    deploy_instance(_make_config(tmp_path))
    assert fake_terraform.inits == 0


def test_stopped_instance_is_started_not_recreated(tmp_path: Path, fake_terraform, fake_oci) -> None:
    instance = fake_oci.add_instance(state="STOPPED")

    result = deploy_instance(_make_config(tmp_path))

    assert result.instance_id == instance.instance_id
    assert result.created is False
    assert result.lifecycle_state == "RUNNING"
    assert fake_oci.mutations == [("action", instance.instance_id, "START")]
    assert fake_terraform.applies == 0


def test_provisioning_instance_is_waited_for(tmp_path: Path, fake_terraform, fake_oci) -> None:
    fake_oci.add_instance(state="PROVISIONING", pending_states=["PROVISIONING", "RUNNING"])

    result = deploy_instance(_make_config(tmp_path))

    assert result.lifecycle_state == "RUNNING"
    assert fake_oci.mutations == []
    assert fake_terraform.applies == 0


def test_capacity_error_is_retryable(tmp_path: Path, fake_terraform) -> None:
    fake_terraform.failures = [CAPACITY_ERROR]

    with pytest.raises(RetryableProvisioningFailure) as excinfo:
        deploy_instance(_make_config(tmp_path))
    assert "Out of host capacity" in excinfo.value.diagnostic


def test_configuration_error_is_fatal(tmp_path: Path, fake_terraform) -> None:
    fake_terraform.failures = ["Error: invalid parameter: availability_domain"]

    with pytest.raises(FatalConfigurationFailure):
        deploy_instance(_make_config(tmp_path))


def test_retry_destroys_partial_resources_between_attempts(tmp_path: Path, fake_terraform, fake_oci) -> None:
    fake_terraform.failures = [CAPACITY_ERROR, CAPACITY_ERROR]
    sleeps: list[float] = []

    result, attempts = deploy_with_retry(
        _make_config(tmp_path),
        RetryPolicy(max_attempts=5, interval=120),
        sleep=sleeps.append,
    )

    assert result.created is True
    assert [record.outcome for record in attempts] == [
        AttemptOutcome.RETRYABLE_FAILURE,
        AttemptOutcome.RETRYABLE_FAILURE,
        AttemptOutcome.SUCCESS,
    ]
    assert fake_terraform.applies == 3
    assert fake_terraform.destroys == 2
    assert sleeps == [120, 120]
    assert len(fake_oci.instances) == 1


def test_retry_stops_immediately_on_fatal_error(tmp_path: Path, fake_terraform) -> None:
    fake_terraform.failures = ['{"code": "NotAuthenticated", "status": 401}']
    sleeps: list[float] = []

    with pytest.raises(FatalConfigurationFailure):
        deploy_with_retry(_make_config(tmp_path), RetryPolicy(max_attempts=5, interval=120), sleep=sleeps.append)

    assert fake_terraform.applies == 1
    assert fake_terraform.destroys == 0
    assert sleeps == []


def test_retry_gives_up_after_budget(tmp_path: Path, fake_terraform) -> None:
    fake_terraform.failures = [CAPACITY_ERROR] * 3

    with pytest.raises(RetryBudgetExhausted) as excinfo:
        deploy_with_retry(_make_config(tmp_path), RetryPolicy(max_attempts=3, interval=0), sleep=lambda _: None)

    assert excinfo.value.attempts == 3
    assert "Out of host capacity" in excinfo.value.diagnostic
    assert fake_terraform.destroys == 2, "the last attempt's resources are left for inspection"
