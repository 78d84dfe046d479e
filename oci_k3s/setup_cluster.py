"""Install k3s and the GitOps stack on the k3s host.

The host address comes from ``--public-ip``/``PUBLIC_IP``. Without one the
instance is looked up by display name.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from oci_k3s._cluster import configure_cluster
from oci_k3s._errors import FatalConfigurationFailure, ProvisioningError
from oci_k3s._logging import configure_logging
from oci_k3s._models import LifecyclePhase
from oci_k3s._outputs import emit_outputs, report_error
from oci_k3s._probes import observe, probe_public_ip
from oci_k3s._stage_inputs import (
    RawStageInputs,
    StageInputs,
    build_cluster_config,
    build_descriptor,
    build_remote_host,
    resolve_stage_inputs,
)

app = App(help="Install or repair k3s, ingress, cert-manager and ArgoCD on the host.")
logger = logging.getLogger(__name__)


def _host_address(inputs: StageInputs) -> str:
    if inputs.public_ip:
        return inputs.public_ip
    observed = observe(build_descriptor(inputs))
    if observed.instance_id is None:
        msg = f"Instance {inputs.instance_name!r} not found; deploy it first"
        raise FatalConfigurationFailure(msg)
    if observed.phase is not LifecyclePhase.RUNNING:
        msg = f"Instance {observed.instance_id} is {observed.lifecycle_state}, not RUNNING; start it first"
        raise FatalConfigurationFailure(msg, diagnostic=str(observed.lifecycle_state))
    address = probe_public_ip(observed.instance_id)
    if not address:
        msg = f"Instance {observed.instance_id} has no public IP"
        raise FatalConfigurationFailure(msg)
    return address


@app.default
def main(
    *,
    public_ip: Annotated[str | None, Parameter()] = None,
    ssh_key: Annotated[Path | None, Parameter()] = None,
    ssh_user: Annotated[str | None, Parameter()] = None,
    setup_script: Annotated[Path | None, Parameter()] = None,
    payload_dir: Annotated[Path | None, Parameter()] = None,
    kubeconfig_out: Annotated[Path | None, Parameter()] = None,
    compartment_id: Annotated[str | None, Parameter()] = None,
    instance_name: Annotated[str | None, Parameter()] = None,
    terraform_dir: Annotated[Path | None, Parameter()] = None,
    log_file: Annotated[Path | None, Parameter()] = None,
) -> int:
    """Converge the host onto a healthy k3s cluster and print its credentials."""
    inputs = resolve_stage_inputs(
        RawStageInputs(
            public_ip=public_ip,
            ssh_key=ssh_key,
            ssh_user=ssh_user,
            setup_script=setup_script,
            payload_dir=payload_dir,
            kubeconfig_out=kubeconfig_out,
            compartment_id=compartment_id,
            instance_name=instance_name,
            terraform_dir=terraform_dir,
            log_file=log_file,
        )
    )
    configure_logging(inputs.log_file)
    logger.info("=== k3s setup ===")

    try:
        host = build_remote_host(inputs, _host_address(inputs))
        logger.info("Target VM: %s (key %s)", host.target, host.identity)
        result = configure_cluster(host, build_cluster_config(inputs))
    except ProvisioningError as exc:
        report_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; the remote setup may be incomplete")
        return 130

    emit_outputs(result.to_outputs())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
