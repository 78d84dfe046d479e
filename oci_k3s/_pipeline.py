"""Run the deploy, resize, k3s and ssh-alias stages in order.

Every stage re-probes the state it depends on instead of trusting what an
earlier stage (or an earlier process) reported. Values produced by stages
are collected in a :class:`PipelineResult` whose fields are write-once.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from oci_k3s._alias import DEFAULT_ALIAS_NAME, SshAlias, upsert_alias
from oci_k3s._cluster import ClusterConfig, configure_cluster
from oci_k3s._deploy import DeployConfig, deploy_with_retry
from oci_k3s._errors import FatalConfigurationFailure, ProvisioningError, StageFailed
from oci_k3s._lifecycle import ensure_running
from oci_k3s._models import LifecyclePhase, ObservedState, ShapeConfig, format_number
from oci_k3s._probes import observe, observe_instance, probe_public_ip
from oci_k3s._resize import DEFAULT_TARGET_SHAPE, ResizeBudgets, resize_instance
from oci_k3s._retry import RetryPolicy
from oci_k3s._ssh import DEFAULT_SSH_USER, RemoteHost
from oci_k3s._ssh_keys import ensure_ssh_keypair
from oci_k3s._waiting import read_with_retry

logger = logging.getLogger(__name__)


class Stage(enum.Enum):
    """Pipeline stages in execution order."""

    DEPLOY = "deploy"
    RESIZE = "resize"
    K3S = "k3s"
    SSH_ALIAS = "ssh-alias"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)

STAGE_PRESETS: dict[str, frozenset[Stage]] = {
    "all": frozenset(Stage),
    "deploy": frozenset({Stage.DEPLOY}),
    "resize": frozenset({Stage.RESIZE}),
    "k3s": frozenset({Stage.K3S}),
    "ssh-alias": frozenset({Stage.SSH_ALIAS}),
    "deploy-resize": frozenset({Stage.DEPLOY, Stage.RESIZE}),
    "deploy-resize-k3s": frozenset({Stage.DEPLOY, Stage.RESIZE, Stage.K3S}),
}


def parse_stage_selection(value: str) -> frozenset[Stage]:
    """Parse a preset name or a comma-separated list of stages.

    Raises
    ------
    FatalConfigurationFailure
        When a name is neither a preset nor a stage.

    Examples
    --------
    >>> sorted(stage.value for stage in parse_stage_selection("deploy-resize"))
    ['deploy', 'resize']
    >>> sorted(stage.value for stage in parse_stage_selection("k3s, ssh-alias"))
    ['k3s', 'ssh-alias']
    """

    selection = value.strip().lower()
    if selection in STAGE_PRESETS:
        return STAGE_PRESETS[selection]
    stages: set[Stage] = set()
    for name in (part.strip() for part in selection.split(",")):
        if not name:
            continue
        try:
            stages.add(Stage(name))
        except ValueError:
            valid = ", ".join(sorted(STAGE_PRESETS))
            msg = f"Unknown stage {name!r}; expected a comma-separated list or one of: {valid}"
            raise FatalConfigurationFailure(msg) from None
    if not stages:
        msg = "No stages selected"
        raise FatalConfigurationFailure(msg)
    return frozenset(stages)


@dataclass(slots=True)
class PipelineResult:
    """Values threaded from one stage to the next.

    Each field may be recorded once. Recording the same value again is
    allowed; recording a different one is an error.

    Examples
    --------
    >>> result = PipelineResult()
    >>> result.record("public_ip", "203.0.113.10")
    >>> result.require("public_ip")
    '203.0.113.10'
    """

    instance_id: str | None = None
    public_ip: str | None = None
    instance_state: str | None = None
    instance_created: bool | None = None
    resize_performed: bool | None = None
    ocpus: float | None = None
    memory_gbs: float | None = None
    admin_password: str | None = None
    kubeconfig_path: Path | None = None
    ssh_alias: str | None = None
    stage_outputs: dict[Stage, dict[str, str]] = field(default_factory=dict)

    def record(self, name: str, value: object) -> None:
        """Set field *name* once.

        Raises
        ------
        FatalConfigurationFailure
            When the field already holds a different value.
        """

        if name == "stage_outputs" or name not in self.__dataclass_fields__:
            msg = f"Unknown pipeline field: {name}"
            raise AttributeError(msg)
        current = getattr(self, name)
        if current is not None and current != value:
            msg = f"{name} already recorded as {current!r}, refusing to overwrite with {value!r}"
            raise FatalConfigurationFailure(msg)
        setattr(self, name, value)

    def require(self, name: str) -> object:
        """Return field *name* or fail when no stage has recorded it."""

        value = getattr(self, name)
        if value is None:
            msg = f"{name} is not available from an earlier stage"
            raise FatalConfigurationFailure(msg)
        return value

    def add_outputs(self, stage: Stage, outputs: dict[str, str]) -> None:
        self.stage_outputs[stage] = dict(outputs)

    def to_outputs(self) -> dict[str, str]:
        """Return the union of the outputs of every stage that ran."""

        merged: dict[str, str] = {}
        for stage in STAGE_ORDER:
            merged.update(self.stage_outputs.get(stage, {}))
        return merged


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Everything the pipeline needs, resolved up front."""

    deploy: DeployConfig
    cluster: ClusterConfig
    ssh_key: Path
    ssh_config: Path
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    target_shape: ShapeConfig = DEFAULT_TARGET_SHAPE
    resize: ResizeBudgets = field(default_factory=ResizeBudgets)
    ssh_user: str = DEFAULT_SSH_USER
    alias_name: str = DEFAULT_ALIAS_NAME


def _locate_instance(config: PipelineConfig, result: PipelineResult) -> ObservedState:
    """Re-probe the instance, by id when known and by name otherwise."""

    instance_id = result.instance_id
    if instance_id is not None:
        observed = read_with_retry(
            lambda: observe_instance(instance_id),
            config.deploy.probe,
            description=f"state of instance {instance_id}",
        )
    else:
        observed = read_with_retry(
            lambda: observe(config.deploy.descriptor),
            config.deploy.probe,
            description=f"instance {config.deploy.descriptor.display_name!r}",
        )
    if not observed.exists:
        msg = f"Instance {config.deploy.descriptor.display_name!r} does not exist; run the deploy stage first"
        raise FatalConfigurationFailure(msg)
    result.record("instance_id", observed.instance_id)
    return observed


def _running_host(config: PipelineConfig, result: PipelineResult) -> RemoteHost:
    """Make sure the instance runs and has an address, then describe it for ssh."""

    observed = _locate_instance(config, result)
    instance_id = str(observed.instance_id)
    if observed.phase is not LifecyclePhase.RUNNING:
        logger.warning("Instance %s is %s, starting it", instance_id, observed.lifecycle_state)
        ensure_running(instance_id, config.deploy.start)
    public_ip = read_with_retry(
        lambda: probe_public_ip(instance_id),
        config.deploy.probe,
        description=f"public IP of instance {instance_id}",
    )
    if not public_ip:
        msg = f"Instance {instance_id} has no public IP"
        raise FatalConfigurationFailure(msg)
    result.record("public_ip", public_ip)
    return RemoteHost(address=public_ip, identity=config.ssh_key, user=config.ssh_user)


def _run_deploy(config: PipelineConfig, result: PipelineResult, sleep: Callable[[float], None]) -> None:
    deployed, attempts = deploy_with_retry(config.deploy, config.retry, sleep=sleep)
    logger.info("Deploy finished after %d attempt(s)", len(attempts))
    result.record("instance_id", deployed.instance_id)
    result.record("public_ip", deployed.public_ip)
    result.record("instance_state", deployed.lifecycle_state)
    result.record("instance_created", deployed.created)
    result.add_outputs(Stage.DEPLOY, deployed.to_outputs())


def _run_resize(config: PipelineConfig, result: PipelineResult, sleep: Callable[[float], None]) -> None:
    observed = _locate_instance(config, result)
    resized = resize_instance(str(observed.instance_id), config.target_shape, config.resize)
    result.record("resize_performed", resized.resized)
    result.record("ocpus", resized.shape.ocpus)
    result.record("memory_gbs", resized.shape.memory_gbs)
    result.add_outputs(Stage.RESIZE, resized.to_outputs())


def _run_k3s(config: PipelineConfig, result: PipelineResult, sleep: Callable[[float], None]) -> None:
    host = _running_host(config, result)
    configured = configure_cluster(host, config.cluster)
    result.record("admin_password", configured.admin_password)
    result.record("kubeconfig_path", configured.kubeconfig_path)
    result.add_outputs(Stage.K3S, configured.to_outputs())


def _run_ssh_alias(config: PipelineConfig, result: PipelineResult, sleep: Callable[[float], None]) -> None:
    host = _running_host(config, result)
    alias = SshAlias(
        name=config.alias_name,
        address=host.address,
        identity=config.ssh_key,
        user=config.ssh_user,
    )
    upsert_alias(config.ssh_config, alias)
    result.record("ssh_alias", alias.name)
    result.add_outputs(Stage.SSH_ALIAS, alias.to_outputs())


_STAGE_RUNNERS: dict[Stage, Callable[[PipelineConfig, PipelineResult, Callable[[float], None]], None]] = {
    Stage.DEPLOY: _run_deploy,
    Stage.RESIZE: _run_resize,
    Stage.K3S: _run_k3s,
    Stage.SSH_ALIAS: _run_ssh_alias,
}


def run_pipeline(
    config: PipelineConfig,
    stages: frozenset[Stage],
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> PipelineResult:
    """Run the selected *stages* in pipeline order.

    The local ssh key pair is ensured before the first stage. Every stage,
    run or skipped, is logged with its position in the pipeline.

    Raises
    ------
    StageFailed
        On the first stage failure, naming the stage, the failure kind, and
        the last diagnostic.
    """

    try:
        ensure_ssh_keypair(config.ssh_key)
    except ProvisioningError as exc:
        raise StageFailed("ssh-key", exc) from exc

    result = PipelineResult()
    total = len(STAGE_ORDER)
    for index, stage in enumerate(STAGE_ORDER, start=1):
        label = f"[stage {index}/{total}] {stage.value}"
        if stage not in stages:
            logger.info("%s: skipped", label)
            continue
        logger.info("%s: running", label)
        try:
            _STAGE_RUNNERS[stage](config, result, sleep)
        except ProvisioningError as exc:
            logger.error("%s: failed (%s): %s", label, exc.kind, exc.diagnostic)
            raise StageFailed(stage.value, exc) from exc
        logger.info("%s: completed", label)

    if result.ocpus is not None and result.memory_gbs is not None:
        logger.info(
            "Instance shape: %s OCPU, %s GB RAM",
            format_number(result.ocpus),
            format_number(result.memory_gbs),
        )
    return result


__all__ = [
    "STAGE_ORDER",
    "STAGE_PRESETS",
    "PipelineConfig",
    "PipelineResult",
    "Stage",
    "parse_stage_selection",
    "run_pipeline",
]
