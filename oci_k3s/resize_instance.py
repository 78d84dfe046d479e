"""Resize the k3s host to the target flexible shape."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from oci_k3s._errors import FatalConfigurationFailure, ProvisioningError
from oci_k3s._logging import configure_logging
from oci_k3s._outputs import emit_outputs, report_error
from oci_k3s._probes import observe
from oci_k3s._resize import resize_instance
from oci_k3s._stage_inputs import (
    RawStageInputs,
    StageInputs,
    build_descriptor,
    build_target_shape,
    resolve_stage_inputs,
)

app = App(help="Resize the k3s host instance (stop, update shape, start).")
logger = logging.getLogger(__name__)


def _instance_id(inputs: StageInputs) -> str:
    """Return the configured instance id, or look the instance up by name."""
    if inputs.instance_id:
        return inputs.instance_id
    observed = observe(build_descriptor(inputs))
    if observed.instance_id is None:
        msg = f"Instance {inputs.instance_name!r} not found; deploy it first"
        raise FatalConfigurationFailure(msg)
    return observed.instance_id


@app.default
def main(
    *,
    instance_id: Annotated[str | None, Parameter()] = None,
    compartment_id: Annotated[str | None, Parameter()] = None,
    instance_name: Annotated[str | None, Parameter()] = None,
    terraform_dir: Annotated[Path | None, Parameter()] = None,
    target_ocpus: Annotated[float | None, Parameter()] = None,
    target_memory_gb: Annotated[float | None, Parameter()] = None,
    log_file: Annotated[Path | None, Parameter()] = None,
) -> int:
    """Resize the instance when its shape differs from the target."""
    inputs = resolve_stage_inputs(
        RawStageInputs(
            instance_id=instance_id,
            compartment_id=compartment_id,
            instance_name=instance_name,
            terraform_dir=terraform_dir,
            target_ocpus=target_ocpus,
            target_memory_gb=target_memory_gb,
            log_file=log_file,
        )
    )
    configure_logging(inputs.log_file)
    logger.info("=== VM resize ===")

    try:
        result = resize_instance(_instance_id(inputs), build_target_shape(inputs))
    except ProvisioningError as exc:
        report_error(exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted; the instance may be left STOPPED")
        return 130

    emit_outputs(result.to_outputs())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
