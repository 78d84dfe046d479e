"""Resolve command inputs and build the stage configurations from them.

Each value comes from the CLI flag, then the environment, then a default.
"""

from __future__ import annotations

from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

from oci_k3s._alias import DEFAULT_ALIAS_NAME
from oci_k3s._cluster import ClusterConfig
from oci_k3s._deploy import DeployConfig
from oci_k3s._input_resolution import (
    InputResolution,
    parse_float,
    parse_int,
    resolve_input,
)
from oci_k3s._logging import DEFAULT_LOG_FILE
from oci_k3s._models import DEFAULT_INSTANCE_NAME, ResourceDescriptor, ShapeConfig
from oci_k3s._oci import resolve_compartment_id
from oci_k3s._pipeline import PipelineConfig
from oci_k3s._retry import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_INTERVAL, RetryPolicy
from oci_k3s._ssh import DEFAULT_SSH_USER, RemoteHost
from oci_k3s._ssh_keys import DEFAULT_SSH_KEY


@dataclass(frozen=True, slots=True)
class RawStageInputs:
    """Raw inputs from CLI flags; ``None`` means "not given"."""

    compartment_id: str | None = None
    instance_name: str | None = None
    instance_id: str | None = None
    public_ip: str | None = None
    terraform_dir: Path | None = None
    target_ocpus: str | float | None = None
    target_memory_gb: str | float | None = None
    ssh_key: Path | None = None
    ssh_user: str | None = None
    ssh_config: Path | None = None
    alias_name: str | None = None
    setup_script: Path | None = None
    payload_dir: Path | None = None
    kubeconfig_out: Path | None = None
    max_attempts: str | int | None = None
    retry_interval: str | int | None = None
    steps: str | None = None
    log_file: Path | None = None


@dataclass(frozen=True, slots=True)
class StageInputs:
    """Resolved inputs shared by every command."""

    # Instance identity
    compartment_id: str | None
    instance_name: str
    instance_id: str | None
    public_ip: str | None
    terraform_dir: Path

    # Target shape
    target_ocpus: float
    target_memory_gb: float

    # Access
    ssh_key: Path
    ssh_user: str
    ssh_config: Path
    alias_name: str

    # Cluster payload
    setup_script: Path
    payload_dir: Path
    kubeconfig_out: Path | None

    # Retry and orchestration
    max_attempts: int
    retry_interval: float
    steps: str
    log_file: Path


def _text(value: object) -> str | None:
    return None if value is None else str(value)


def _path(value: object) -> Path | None:
    return value if isinstance(value, Path) or value is None else Path(str(value))


def resolve_stage_inputs(
    raw: RawStageInputs,
    env: cabc.Mapping[str, str] | None = None,
    *,
    required: cabc.Collection[str] = (),
) -> StageInputs:
    """Resolve *raw* against *env* (``os.environ`` by default).

    Parameters
    ----------
    raw
        Values given on the command line.
    env
        Environment mapping used for fallbacks.
    required
        Environment keys that must resolve to a value.

    Examples
    --------
    >>> resolve_stage_inputs(RawStageInputs(), {}).instance_name
    'k3s-host'
    """

    def _resolved(
        value: str | Path | None,
        env_key: str,
        default: str | Path | None = None,
        *,
        as_path: bool = False,
    ) -> str | Path | None:
        resolution = InputResolution(
            env_key=env_key,
            default=default,
            required=env_key in required,
            as_path=as_path,
        )
        return resolve_input(value, resolution, env)

    max_attempts = _resolved(_text(raw.max_attempts), "MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))
    retry_interval = _resolved(
        _text(raw.retry_interval), "RETRY_INTERVAL", str(DEFAULT_RETRY_INTERVAL)
    )
    target_ocpus = _resolved(_text(raw.target_ocpus), "TARGET_OCPUS", "4")
    target_memory = _resolved(_text(raw.target_memory_gb), "TARGET_MEMORY_GB", "24")
    interval = parse_int(retry_interval, name="RETRY_INTERVAL", minimum=0)

    return StageInputs(
        compartment_id=_text(_resolved(raw.compartment_id, "COMPARTMENT_ID")),
        instance_name=str(_resolved(raw.instance_name, "INSTANCE_NAME", DEFAULT_INSTANCE_NAME)),
        instance_id=_text(_resolved(raw.instance_id, "INSTANCE_ID")),
        public_ip=_text(_resolved(raw.public_ip, "PUBLIC_IP")),
        terraform_dir=_path(
            _resolved(raw.terraform_dir, "TERRAFORM_DIR", Path("terraform"), as_path=True)
        ),
        target_ocpus=parse_float(target_ocpus, name="TARGET_OCPUS"),
        target_memory_gb=parse_float(target_memory, name="TARGET_MEMORY_GB"),
        ssh_key=_path(_resolved(raw.ssh_key, "SSH_KEY", DEFAULT_SSH_KEY, as_path=True)),
        ssh_user=str(_resolved(raw.ssh_user, "SSH_USER", DEFAULT_SSH_USER)),
        ssh_config=_path(
            _resolved(raw.ssh_config, "SSH_CONFIG", Path("~/.ssh/config"), as_path=True)
        ),
        alias_name=str(_resolved(raw.alias_name, "ALIAS_NAME", DEFAULT_ALIAS_NAME)),
        setup_script=_path(
            _resolved(
                raw.setup_script,
                "SETUP_SCRIPT",
                Path("post-deployment-setup.sh"),
                as_path=True,
            )
        ),
        payload_dir=_path(_resolved(raw.payload_dir, "PAYLOAD_DIR", Path("k3s"), as_path=True)),
        kubeconfig_out=_path(_resolved(raw.kubeconfig_out, "KUBECONFIG_OUT", as_path=True)),
        max_attempts=parse_int(max_attempts, name="MAX_ATTEMPTS", minimum=1),
        retry_interval=float(interval),
        steps=str(_resolved(raw.steps, "STEPS", "all")),
        log_file=_path(_resolved(raw.log_file, "LOG_FILE", DEFAULT_LOG_FILE, as_path=True)),
    )


def build_descriptor(inputs: StageInputs) -> ResourceDescriptor:
    """Return the instance identity, discovering the compartment when unset."""

    compartment = inputs.compartment_id or resolve_compartment_id(inputs.terraform_dir)
    return ResourceDescriptor(compartment_id=compartment, display_name=inputs.instance_name)


def build_deploy_config(inputs: StageInputs) -> DeployConfig:
    return DeployConfig(descriptor=build_descriptor(inputs), terraform_dir=inputs.terraform_dir)


def build_retry_policy(inputs: StageInputs) -> RetryPolicy:
    return RetryPolicy(max_attempts=inputs.max_attempts, interval=inputs.retry_interval)


def build_target_shape(inputs: StageInputs) -> ShapeConfig:
    return ShapeConfig(ocpus=inputs.target_ocpus, memory_gbs=inputs.target_memory_gb)


def build_cluster_config(inputs: StageInputs) -> ClusterConfig:
    return ClusterConfig(
        setup_script=inputs.setup_script,
        payload_dir=inputs.payload_dir,
        kubeconfig_out=inputs.kubeconfig_out,
    )


def build_remote_host(inputs: StageInputs, address: str) -> RemoteHost:
    return RemoteHost(address=address, identity=inputs.ssh_key, user=inputs.ssh_user)


def build_pipeline_config(inputs: StageInputs) -> PipelineConfig:
    """Assemble the full pipeline configuration."""

    return PipelineConfig(
        deploy=build_deploy_config(inputs),
        cluster=build_cluster_config(inputs),
        ssh_key=inputs.ssh_key,
        ssh_config=inputs.ssh_config,
        retry=build_retry_policy(inputs),
        target_shape=build_target_shape(inputs),
        ssh_user=inputs.ssh_user,
        alias_name=inputs.alias_name,
    )


__all__ = [
    "RawStageInputs",
    "StageInputs",
    "build_cluster_config",
    "build_deploy_config",
    "build_descriptor",
    "build_pipeline_config",
    "build_remote_host",
    "build_retry_policy",
    "build_target_shape",
    "resolve_stage_inputs",
]
