"""Thin wrappers around the ``oci`` CLI for compute instances."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from oci_k3s._commands import CommandContext, run_command
from oci_k3s._errors import CommandError, FatalConfigurationFailure, ProvisioningError
from oci_k3s._models import ShapeConfig, format_number

OCI_TIMEOUT_SECONDS = 120

_NOT_FOUND_MARKERS = ("NotAuthorizedOrNotFound", '"status": 404')
_TFVARS_COMPARTMENT_KEYS = ("compartment_id", "compartment_ocid", "tenancy_ocid")


def _oci(*args: str) -> str:
    return run_command("oci", *args, context=CommandContext(timeout=OCI_TIMEOUT_SECONDS))


def _parse_data(stdout: str, operation: str) -> Any:
    """Return the ``data`` member of an OCI CLI JSON response.

    The CLI prints nothing at all when a list call matches no resources.

    Examples
    --------
    >>> _parse_data('{"data": [{"id": "ocid1"}]}', "list")
    [{'id': 'ocid1'}]
    >>> _parse_data('', "list") is None
    True
    """

    if not stdout.strip():
        return None
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as exc:
        msg = f"oci {operation} returned invalid JSON: {exc}"
        raise ProvisioningError(msg) from exc
    if not isinstance(payload, dict):
        msg = f"oci {operation} JSON root must be an object"
        raise ProvisioningError(msg)
    return payload.get("data")


def is_not_found(error: CommandError) -> bool:
    """Return whether *error* reports a missing resource.

    Examples
    --------
    >>> is_not_found(CommandError("oci", '{"code": "NotAuthorizedOrNotFound", "status": 404}'))
    True
    """

    return any(marker in error.diagnostic for marker in _NOT_FOUND_MARKERS)


def list_instances(compartment_id: str, display_name: str) -> list[dict[str, Any]]:
    """Return instance documents whose display name equals *display_name*."""

    stdout = _oci(
        "compute",
        "instance",
        "list",
        "--compartment-id",
        compartment_id,
        "--display-name",
        display_name,
        "--all",
        "--output",
        "json",
    )
    data = _parse_data(stdout, "compute instance list")
    if data is None:
        return []
    if not isinstance(data, list):
        msg = "oci compute instance list returned a non-list payload"
        raise ProvisioningError(msg)
    return [item for item in data if isinstance(item, dict)]


def get_instance(instance_id: str) -> dict[str, Any] | None:
    """Return the instance document for *instance_id*, or ``None`` when missing."""

    try:
        stdout = _oci("compute", "instance", "get", "--instance-id", instance_id, "--output", "json")
    except CommandError as exc:
        if is_not_found(exc):
            return None
        raise
    data = _parse_data(stdout, "compute instance get")
    return data if isinstance(data, dict) else None


def get_public_ip(instance_id: str) -> str | None:
    """Return the public IP of the instance's first VNIC, if assigned."""

    stdout = _oci(
        "compute",
        "instance",
        "list-vnics",
        "--instance-id",
        instance_id,
        "--output",
        "json",
    )
    data = _parse_data(stdout, "compute instance list-vnics")
    if not isinstance(data, list) or not data:
        return None
    public_ip = data[0].get("public-ip") if isinstance(data[0], dict) else None
    return str(public_ip) if public_ip else None


def instance_action(instance_id: str, action: str) -> None:
    """Request a lifecycle action (``START`` or ``STOP``) without waiting."""

    _oci("compute", "instance", "action", "--instance-id", instance_id, "--action", action)


def update_shape(instance_id: str, shape: ShapeConfig) -> None:
    """Request a flexible shape change.

    OCI acknowledges the request before the new shape is visible, so callers
    must poll the shape afterwards.
    """

    shape_config = (
        f'{{"ocpus": {format_number(shape.ocpus)}, '
        f'"memoryInGBs": {format_number(shape.memory_gbs)}}}'
    )
    _oci(
        "compute",
        "instance",
        "update",
        "--instance-id",
        instance_id,
        "--shape-config",
        shape_config,
        "--force",
    )


def _compartment_from_tfvars(tfvars: Path) -> str | None:
    """Read the compartment OCID from a ``terraform.tfvars`` file.

    Keys are tried in order: ``compartment_id``, ``compartment_ocid``, and
    finally ``tenancy_ocid`` (the root compartment).
    """

    if not tfvars.is_file():
        return None
    content = tfvars.read_text(encoding="utf-8")
    for key in _TFVARS_COMPARTMENT_KEYS:
        match = re.search(rf'^\s*{key}\s*=\s*"([^"]+)"', content, re.MULTILINE)
        if match:
            return match.group(1)
    return None


def resolve_compartment_id(terraform_dir: Path) -> str:
    """Find the compartment that holds the instance.

    Raises
    ------
    FatalConfigurationFailure
        When neither ``terraform.tfvars`` nor the CLI yields a compartment.
    """

    if compartment := _compartment_from_tfvars(terraform_dir / "terraform.tfvars"):
        return compartment
    try:
        stdout = _oci("iam", "compartment", "list", "--output", "json")
    except CommandError as exc:
        msg = "Failed to get compartment ID"
        raise FatalConfigurationFailure(msg, diagnostic=exc.diagnostic) from exc
    data = _parse_data(stdout, "iam compartment list")
    if isinstance(data, list) and data and isinstance(data[0], dict):
        compartment = data[0].get("compartment-id")
        if compartment:
            return str(compartment)
    msg = "Failed to get compartment ID"
    raise FatalConfigurationFailure(msg)


__all__ = [
    "get_instance",
    "get_public_ip",
    "instance_action",
    "is_not_found",
    "list_instances",
    "resolve_compartment_id",
    "update_shape",
]
