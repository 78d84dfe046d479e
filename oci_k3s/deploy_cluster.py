"""Run the full OCI k3s deployment, or a subset of its stages.

Stages run in the order deploy, resize, k3s, ssh-alias. ``--steps`` (or
``STEPS``) takes a preset (``all``, ``deploy``, ``resize``, ``k3s``,
``ssh-alias``, ``deploy-resize``, ``deploy-resize-k3s``) or a
comma-separated list of stage names. Re-running resumes from whatever state
the instance is in.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from oci_k3s._errors import ProvisioningError
from oci_k3s._logging import configure_logging
from oci_k3s._outputs import emit_outputs, report_error
from oci_k3s._pipeline import PipelineResult, parse_stage_selection, run_pipeline
from oci_k3s._stage_inputs import (
    RawStageInputs,
    StageInputs,
    build_pipeline_config,
    resolve_stage_inputs,
)

app = App(help="Deploy a k3s cluster on an OCI free-tier A1 instance.")
logger = logging.getLogger(__name__)


def _domain_name(env_file: Path) -> str | None:
    """Return ``DOMAIN_NAME`` from the payload ``.env`` file, if set."""
    if not env_file.is_file():
        return None
    for line in env_file.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "DOMAIN_NAME":
            return value.strip().strip('"').strip("'") or None
    return None


def log_summary(inputs: StageInputs, result: PipelineResult) -> None:
    """Log where to find the deployed cluster."""
    logger.info("=== Deployment complete ===")
    if result.instance_id:
        logger.info("Instance ID: %s", result.instance_id)
    if result.public_ip:
        logger.info("Public IP: %s", result.public_ip)
    if result.admin_password:
        domain = _domain_name(inputs.payload_dir / ".env") or "your-domain.com"
        logger.info("ArgoCD URL: https://argocd.%s", domain)
        logger.info("ArgoCD username: admin (password in ARGOCD_PASSWORD)")
    if result.kubeconfig_path:
        logger.info("Kubeconfig: %s", result.kubeconfig_path)
    if result.ssh_alias:
        logger.info("SSH connection: ssh %s", result.ssh_alias)


@app.default
def main(
    *,
    steps: Annotated[str | None, Parameter()] = None,
    compartment_id: Annotated[str | None, Parameter()] = None,
    instance_name: Annotated[str | None, Parameter()] = None,
    terraform_dir: Annotated[Path | None, Parameter()] = None,
    max_attempts: Annotated[int | None, Parameter()] = None,
    retry_interval: Annotated[int | None, Parameter()] = None,
    target_ocpus: Annotated[float | None, Parameter()] = None,
    target_memory_gb: Annotated[float | None, Parameter()] = None,
    ssh_key: Annotated[Path | None, Parameter()] = None,
    ssh_user: Annotated[str | None, Parameter()] = None,
    ssh_config: Annotated[Path | None, Parameter()] = None,
    alias_name: Annotated[str | None, Parameter()] = None,
    setup_script: Annotated[Path | None, Parameter()] = None,
    payload_dir: Annotated[Path | None, Parameter()] = None,
    kubeconfig_out: Annotated[Path | None, Parameter()] = None,
    log_file: Annotated[Path | None, Parameter()] = None,
) -> int:
    """Run the selected stages and print the combined ``KEY=value`` outputs."""
    inputs = resolve_stage_inputs(
        RawStageInputs(
            steps=steps,
            compartment_id=compartment_id,
            instance_name=instance_name,
            terraform_dir=terraform_dir,
            max_attempts=max_attempts,
            retry_interval=retry_interval,
            target_ocpus=target_ocpus,
            target_memory_gb=target_memory_gb,
            ssh_key=ssh_key,
            ssh_user=ssh_user,
            ssh_config=ssh_config,
            alias_name=alias_name,
            setup_script=setup_script,
            payload_dir=payload_dir,
            kubeconfig_out=kubeconfig_out,
            log_file=log_file,
        )
    )
    configure_logging(inputs.log_file)
    logger.info("=== OCI k3s deployment (steps: %s) ===", inputs.steps)

    try:
        stages = parse_stage_selection(inputs.steps)
        config = build_pipeline_config(inputs)
        result = run_pipeline(config, stages)
    except ProvisioningError as exc:
        report_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; no compensating cleanup was performed")
        return 130

    log_summary(inputs, result)
    emit_outputs(result.to_outputs())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
