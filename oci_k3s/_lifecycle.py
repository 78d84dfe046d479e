"""Start and stop sub-actions with their own settlement waits."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from oci_k3s._errors import (
    CommandError,
    FatalConfigurationFailure,
    SettlementTimeout,
)
from oci_k3s._models import LifecyclePhase, ObservedState
from oci_k3s._oci import instance_action
from oci_k3s._probes import observe_instance
from oci_k3s._waiting import AbortedWait, WaitBudget, read_with_retry, wait_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StartPolicy:
    """Bounded retry for starting an instance.

    Start requests fail transiently often enough that they get their own
    retry, separate from the capacity retry around deployment.
    """

    attempts: int = 5
    retry_interval: float = 15
    settle: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=60, interval=5))
    probe: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=6, interval=10))


def _phase_is(phase: LifecyclePhase) -> Callable[[ObservedState], bool]:
    return lambda observed: observed.phase is phase


def _vanished(observed: ObservedState) -> str | None:
    if observed.phase is LifecyclePhase.ABSENT:
        return "instance disappeared while waiting"
    return None


def wait_for_phase(
    instance_id: str,
    phase: LifecyclePhase,
    budget: WaitBudget,
) -> ObservedState:
    """Poll *instance_id* until it reports *phase*."""

    return wait_for(
        lambda: observe_instance(instance_id),
        _phase_is(phase),
        budget,
        description=f"instance to reach {phase.value}",
    )


def stop_instance(instance_id: str, budget: WaitBudget) -> ObservedState:
    """Stop *instance_id* and wait for ``STOPPED``.

    Raises
    ------
    FatalConfigurationFailure
        When OCI rejects the stop request.
    SettlementTimeout
        When the instance does not reach ``STOPPED`` within *budget*.
    """

    logger.info("Stopping instance %s", instance_id)
    try:
        instance_action(instance_id, "STOP")
    except CommandError as exc:
        msg = f"Failed to stop instance {instance_id}"
        raise FatalConfigurationFailure(msg, diagnostic=exc.diagnostic) from exc
    observed = wait_for_phase(instance_id, LifecyclePhase.STOPPED, budget)
    logger.info("Instance %s is STOPPED", instance_id)
    return observed


def ensure_running(
    instance_id: str,
    policy: StartPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ObservedState:
    """Start *instance_id* unless it is already ``RUNNING``.

    Each start attempt issues one ``START`` action and waits for ``RUNNING``.
    A rejected action or a timed-out wait is retried up to
    ``policy.attempts`` times.

    Raises
    ------
    FatalConfigurationFailure
        When the instance is missing, disappears while starting, or is in a
        phase that cannot be started.
    ProbeUnavailable
        When the instance state cannot be read within ``policy.probe``.
    SettlementTimeout
        When every start attempt failed.
    """

    observed = read_with_retry(
        lambda: observe_instance(instance_id),
        policy.probe,
        description=f"state of instance {instance_id}",
        sleep=sleep,
    )
    if observed.phase is LifecyclePhase.RUNNING:
        logger.info("Instance %s is already RUNNING", instance_id)
        return observed
    if observed.phase is LifecyclePhase.PROVISIONING:
        logger.info(
            "Instance %s is %s, waiting for it to settle",
            instance_id,
            observed.lifecycle_state,
        )
        observed = wait_for(
            lambda: observe_instance(instance_id),
            lambda current: current.phase is not LifecyclePhase.PROVISIONING,
            policy.settle,
            description="instance to leave its transitional state",
        )
        if observed.phase is LifecyclePhase.RUNNING:
            return observed
    if observed.phase is not LifecyclePhase.STOPPED:
        msg = f"Instance {instance_id} is in state {observed.lifecycle_state} (cannot start)"
        raise FatalConfigurationFailure(msg, diagnostic=str(observed.lifecycle_state))

    last_diagnostic = str(observed.lifecycle_state)
    for attempt in range(1, policy.attempts + 1):
        logger.info("Starting instance %s (attempt %d/%d)", instance_id, attempt, policy.attempts)
        try:
            instance_action(instance_id, "START")
            observed = wait_for(
                lambda: observe_instance(instance_id),
                _phase_is(LifecyclePhase.RUNNING),
                policy.settle,
                description="instance to reach RUNNING",
                abort=_vanished,
            )
        except AbortedWait as exc:
            msg = f"Instance {instance_id} disappeared while starting"
            raise FatalConfigurationFailure(msg, diagnostic=str(exc)) from exc
        except (CommandError, SettlementTimeout) as exc:
            last_diagnostic = exc.diagnostic
            logger.warning("Start attempt %d failed: %s", attempt, exc)
        else:
            logger.info("Instance %s started successfully", instance_id)
            return observed
        if attempt < policy.attempts:
            sleep(policy.retry_interval)

    msg = f"Failed to start instance {instance_id} after {policy.attempts} attempts"
    raise SettlementTimeout(msg, diagnostic=last_diagnostic)


__all__ = ["StartPolicy", "ensure_running", "stop_instance", "wait_for_phase"]
