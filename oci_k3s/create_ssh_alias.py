"""Add or update the ``Host`` entry for the k3s host in the ssh config."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from oci_k3s._alias import SshAlias, upsert_alias
from oci_k3s._logging import configure_logging
from oci_k3s._outputs import emit_outputs, report_error
from oci_k3s._stage_inputs import RawStageInputs, resolve_stage_inputs

app = App(help="Register the k3s host as an ssh alias.")
logger = logging.getLogger(__name__)


@app.default
def main(
    *,
    public_ip: Annotated[str | None, Parameter()] = None,
    ssh_key: Annotated[Path | None, Parameter()] = None,
    alias_name: Annotated[str | None, Parameter()] = None,
    ssh_user: Annotated[str | None, Parameter()] = None,
    ssh_config: Annotated[Path | None, Parameter()] = None,
    log_file: Annotated[Path | None, Parameter()] = None,
) -> int:
    """Upsert the alias. ``PUBLIC_IP`` is required."""
    inputs = resolve_stage_inputs(
        RawStageInputs(
            public_ip=public_ip,
            ssh_key=ssh_key,
            alias_name=alias_name,
            ssh_user=ssh_user,
            ssh_config=ssh_config,
            log_file=log_file,
        ),
        required={"PUBLIC_IP"},
    )
    configure_logging(inputs.log_file)
    logger.info("=== SSH alias ===")

    try:
        alias = SshAlias(
            name=inputs.alias_name,
            address=str(inputs.public_ip),
            identity=inputs.ssh_key,
            user=inputs.ssh_user,
        )
        upsert_alias(inputs.ssh_config, alias)
    except (OSError, ValueError) as exc:
        report_error(exc)
        return 1

    emit_outputs(alias.to_outputs())
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
