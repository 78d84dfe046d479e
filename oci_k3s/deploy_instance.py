"""Deploy the k3s host instance on OCI.

This command:
- looks the instance up by display name and reuses it when it exists;
- starts a stopped instance;
- otherwise runs ``terraform apply`` and retries capacity errors, with
  ``terraform destroy`` between attempts; and
- prints ``INSTANCE_ID``, ``PUBLIC_IP``, ``INSTANCE_STATE`` and
  ``INSTANCE_CREATED`` on stdout.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from oci_k3s._deploy import deploy_with_retry
from oci_k3s._errors import ProvisioningError
from oci_k3s._logging import configure_logging
from oci_k3s._outputs import emit_outputs, report_error
from oci_k3s._stage_inputs import (
    RawStageInputs,
    build_deploy_config,
    build_retry_policy,
    resolve_stage_inputs,
)

app = App(help="Deploy the k3s host instance, retrying on capacity errors.")
logger = logging.getLogger(__name__)


@app.default
def main(
    *,
    compartment_id: Annotated[str | None, Parameter()] = None,
    instance_name: Annotated[str | None, Parameter()] = None,
    terraform_dir: Annotated[Path | None, Parameter()] = None,
    max_attempts: Annotated[int | None, Parameter()] = None,
    retry_interval: Annotated[int | None, Parameter()] = None,
    log_file: Annotated[Path | None, Parameter()] = None,
) -> int:
    """Deploy the instance or confirm that it is already running.

    Inputs fall back to ``COMPARTMENT_ID``, ``INSTANCE_NAME``,
    ``TERRAFORM_DIR``, ``MAX_ATTEMPTS``, ``RETRY_INTERVAL`` and ``LOG_FILE``.
    """
    inputs = resolve_stage_inputs(
        RawStageInputs(
            compartment_id=compartment_id,
            instance_name=instance_name,
            terraform_dir=terraform_dir,
            max_attempts=max_attempts,
            retry_interval=retry_interval,
            log_file=log_file,
        )
    )
    configure_logging(inputs.log_file)
    logger.info("=== VM deployment ===")

    try:
        config = build_deploy_config(inputs)
        logger.info("Using compartment: %s", config.descriptor.compartment_id)
        result, attempts = deploy_with_retry(config, build_retry_policy(inputs))
    except ProvisioningError as exc:
        report_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; partially created resources were not cleaned up")
        return 130

    logger.info("Deployment finished after %d attempt(s)", len(attempts))
    emit_outputs(result.to_outputs())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
