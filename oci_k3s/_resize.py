"""Resize the instance to the target flexible shape."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from oci_k3s._errors import CommandError, FatalConfigurationFailure
from oci_k3s._lifecycle import StartPolicy, ensure_running, stop_instance
from oci_k3s._models import LifecyclePhase, ShapeConfig, format_number
from oci_k3s._oci import update_shape
from oci_k3s._probes import observe_instance, probe_shape
from oci_k3s._waiting import WaitBudget, read_with_retry, wait_for

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SHAPE = ShapeConfig(ocpus=4, memory_gbs=24)


@dataclass(frozen=True, slots=True)
class ResizeBudgets:
    """Wait budgets for the stop, shape and start steps.

    ``probe`` bounds the retries of the initial state read.
    """

    stop: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=60, interval=5))
    shape: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=30, interval=5))
    start: StartPolicy = field(default_factory=StartPolicy)
    probe: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=6, interval=10))


@dataclass(frozen=True, slots=True)
class ResizeResult:
    """Outcome of :func:`resize_instance`."""

    resized: bool
    shape: ShapeConfig

    def to_outputs(self) -> dict[str, str]:
        """Return the ``KEY=value`` outputs of the resize stage.

        Examples
        --------
        >>> ResizeResult(False, ShapeConfig(4, 24)).to_outputs()
        {'RESIZE_NEEDED': 'false', 'CURRENT_OCPUS': '4', 'CURRENT_MEMORY': '24'}
        """

        ocpus = format_number(self.shape.ocpus)
        memory = format_number(self.shape.memory_gbs)
        if not self.resized:
            return {
                "RESIZE_NEEDED": "false",
                "CURRENT_OCPUS": ocpus,
                "CURRENT_MEMORY": memory,
            }
        return {
            "RESIZE_NEEDED": "true",
            "RESIZE_COMPLETED": "true",
            "NEW_OCPUS": ocpus,
            "NEW_MEMORY": memory,
        }


def resize_instance(
    instance_id: str,
    target: ShapeConfig = DEFAULT_TARGET_SHAPE,
    budgets: ResizeBudgets | None = None,
) -> ResizeResult:
    """Converge *instance_id* onto *target*.

    When the shape already matches nothing is stopped, updated or started.
    Otherwise the instance is stopped (unless it already is), updated, and
    started again once the new shape is visible.

    Raises
    ------
    FatalConfigurationFailure
        When the instance does not exist or OCI rejects a request.
    SettlementTimeout
        When a stop, shape, or start wait exhausts its budget.
    ProbeUnavailable
        When the instance state cannot be read within ``budgets.probe``.
    """

    budgets = budgets or ResizeBudgets()
    observed = read_with_retry(
        lambda: observe_instance(instance_id),
        budgets.probe,
        description=f"state of instance {instance_id}",
    )
    if observed.phase is LifecyclePhase.ABSENT:
        msg = f"Instance {instance_id} does not exist"
        raise FatalConfigurationFailure(msg)

    current = observed.shape
    if current == target:
        logger.info("Instance already has the target shape: %s", target.describe())
        return ResizeResult(resized=False, shape=target)

    described = current.describe() if current is not None else "unknown"
    logger.info("Resizing instance %s from %s to %s", instance_id, described, target.describe())

    if observed.phase is LifecyclePhase.STOPPED:
        logger.info("Instance %s is already STOPPED", instance_id)
    else:
        stop_instance(instance_id, budgets.stop)

    logger.info("Updating instance shape")
    try:
        update_shape(instance_id, target)
    except CommandError as exc:
        msg = f"Failed to update shape of {instance_id}"
        raise FatalConfigurationFailure(msg, diagnostic=exc.diagnostic) from exc

    # The update is acknowledged before the new shape is visible.
    wait_for(
        lambda: probe_shape(instance_id),
        lambda shape: shape == target,
        budgets.shape,
        description=f"shape {target.describe()}",
    )
    logger.info("Shape updated to %s", target.describe())

    ensure_running(instance_id, budgets.start)
    logger.info("Instance %s resized successfully", instance_id)
    return ResizeResult(resized=True, shape=target)


__all__ = ["DEFAULT_TARGET_SHAPE", "ResizeBudgets", "ResizeResult", "resize_instance"]
