"""Deploy the compute instance through Terraform, idempotently.

Every call starts with an existence probe, so repeated calls (or retries
after a capacity failure) never create a second instance.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from oci_k3s._classify import FailureKind, classify, matched_rule
from oci_k3s._errors import (
    FatalConfigurationFailure,
    ProvisioningError,
    RetryableProvisioningFailure,
)
from oci_k3s._lifecycle import StartPolicy, ensure_running, wait_for_phase
from oci_k3s._models import DesiredState, LifecyclePhase, ObservedState, ResourceDescriptor
from oci_k3s._probes import observe, probe_public_ip
from oci_k3s._retry import AttemptRecord, RetryPolicy, run_with_retry
from oci_k3s._terraform import (
    needs_init,
    terraform_apply,
    terraform_destroy,
    terraform_init,
)
from oci_k3s._waiting import AbortedWait, WaitBudget, wait_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeployConfig:
    """Inputs for one deployment attempt.

    Attributes
    ----------
    descriptor
        Compartment and display name that identify the instance.
    terraform_dir
        Directory holding the Terraform configuration.
    settle
        Budget for the instance to reach ``RUNNING`` after creation.
    probe
        Budget for transient probe failures and public IP assignment.
    start
        Start retry used when the instance exists but is stopped.
    """

    descriptor: ResourceDescriptor
    terraform_dir: Path
    settle: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=60, interval=10))
    probe: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=6, interval=10))
    start: StartPolicy = field(default_factory=StartPolicy)


@dataclass(frozen=True, slots=True)
class DeployResult:
    """Identity and address of the running instance."""

    instance_id: str
    public_ip: str
    lifecycle_state: str
    created: bool

    def to_outputs(self) -> dict[str, str]:
        """Return the ``KEY=value`` outputs of the deploy stage.

        Examples
        --------
        >>> DeployResult("ocid1.instance", "203.0.113.10", "RUNNING", False).to_outputs()["PUBLIC_IP"]
        '203.0.113.10'
        """

        return {
            "INSTANCE_ID": self.instance_id,
            "PUBLIC_IP": self.public_ip,
            "INSTANCE_STATE": self.lifecycle_state,
            "INSTANCE_CREATED": "true" if self.created else "false",
        }


def _failure_from(diagnostic: str, message: str) -> ProvisioningError:
    """Map an apply diagnostic onto the retryable or fatal failure type."""

    if classify(diagnostic) is FailureKind.RETRYABLE:
        logger.warning("%s (retryable: %s)", message, matched_rule(diagnostic))
        return RetryableProvisioningFailure(message, diagnostic=diagnostic)
    return FatalConfigurationFailure(message, diagnostic=diagnostic)


def _lookup(config: DeployConfig) -> ObservedState:
    return wait_for(
        lambda: observe(config.descriptor),
        lambda _observed: True,
        config.probe,
        description=f"lookup of instance {config.descriptor.display_name!r}",
    )


def _vanished(observed: ObservedState) -> str | None:
    if observed.phase is LifecyclePhase.ABSENT:
        return "instance disappeared before reaching RUNNING"
    return None


def _create(config: DeployConfig) -> ObservedState:
    """Run Terraform and wait for the new instance to come up."""

    if needs_init(config.terraform_dir):
        logger.info("Initializing Terraform in %s", config.terraform_dir)
        init = terraform_init(config.terraform_dir)
        if not init.success:
            raise _failure_from(init.diagnostic, "terraform init failed")

    logger.info("Applying Terraform configuration in %s", config.terraform_dir)
    apply = terraform_apply(config.terraform_dir)
    if not apply.success:
        raise _failure_from(apply.diagnostic, "terraform apply failed")

    try:
        return wait_for(
            lambda: observe(config.descriptor),
            lambda observed: observed.phase is LifecyclePhase.RUNNING,
            config.settle,
            description=f"instance {config.descriptor.display_name!r} to reach RUNNING",
            abort=_vanished,
        )
    except AbortedWait as exc:
        diagnostic = "\n".join(part for part in (str(exc), apply.diagnostic) if part)
        raise _failure_from(diagnostic, str(exc)) from exc


def _converge(config: DeployConfig, observed: ObservedState) -> tuple[ObservedState, bool]:
    """Drive an observed instance to ``RUNNING``; return it and whether it was created."""

    phase = observed.phase
    if phase is LifecyclePhase.ABSENT:
        logger.info("No existing instance found, deploying a new one")
        return _create(config), True

    instance_id = str(observed.instance_id)
    logger.info(
        "Instance already exists: %s (state: %s)",
        instance_id,
        observed.lifecycle_state,
    )
    if DesiredState().matches(observed):
        return observed, False
    if phase is LifecyclePhase.STOPPED:
        logger.warning("Instance is not running, attempting to start")
        return ensure_running(instance_id, config.start), False
    if phase is LifecyclePhase.PROVISIONING:
        return wait_for_phase(instance_id, LifecyclePhase.RUNNING, config.settle), False
    msg = f"Instance {instance_id} is in unexpected state {observed.lifecycle_state}"
    raise FatalConfigurationFailure(msg, diagnostic=str(observed.lifecycle_state))


def deploy_instance(config: DeployConfig) -> DeployResult:
    """Make sure the instance exists and is ``RUNNING``.

    This is one attempt. Capacity failures surface as
    :class:`RetryableProvisioningFailure`; wrap the call in
    :func:`deploy_with_retry` to keep trying.

    Raises
    ------
    RetryableProvisioningFailure
        When Terraform reports a capacity or quota problem.
    FatalConfigurationFailure
        For every other Terraform or OCI failure.
    SettlementTimeout
        When the instance does not settle within its wait budget.
    """

    observed, created = _converge(config, _lookup(config))
    instance_id = str(observed.instance_id)
    public_ip = wait_for(
        lambda: probe_public_ip(instance_id),
        lambda address: bool(address),
        config.probe,
        description=f"public IP of {instance_id}",
    )
    result = DeployResult(
        instance_id=instance_id,
        public_ip=str(public_ip),
        lifecycle_state=str(observed.lifecycle_state),
        created=created,
    )
    if observed.shape is not None:
        logger.info("Instance shape: %s", observed.shape.describe())
    logger.info("Instance is ready: %s at %s", result.instance_id, result.public_ip)
    return result


def _discard_partial_resources(terraform_dir: Path) -> None:
    logger.warning("Cleaning up any partial resources")
    result = terraform_destroy(terraform_dir)
    if not result.success:
        msg = "terraform destroy failed"
        raise ProvisioningError(msg, diagnostic=result.diagnostic)


def deploy_with_retry(
    config: DeployConfig,
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[DeployResult, tuple[AttemptRecord, ...]]:
    """Deploy, retrying capacity failures with ``terraform destroy`` between attempts."""

    outcome = run_with_retry(
        lambda: deploy_instance(config),
        policy,
        cleanup=lambda: _discard_partial_resources(config.terraform_dir),
        sleep=sleep,
    )
    return outcome.value, outcome.attempts


__all__ = [
    "DeployConfig",
    "DeployResult",
    "deploy_instance",
    "deploy_with_retry",
]
