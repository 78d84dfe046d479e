"""Read-only state probes for the instance and the remote cluster.

Probes never change external state. They distinguish "the resource does not
exist" (an ``ABSENT`` observation or a negative answer) from "the state
cannot be determined" (:class:`ProbeUnavailable`).
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from oci_k3s._errors import CommandError, ProbeUnavailable, ProvisioningError
from oci_k3s._models import (
    ObservedState,
    ResourceDescriptor,
    ShapeConfig,
)
from oci_k3s._oci import get_instance, get_public_ip, list_instances
from oci_k3s._ssh import RemoteHost, is_unreachable, run_remote

ADMIN_SECRET_NAMESPACE = "argocd"
ADMIN_SECRET_NAME = "argocd-initial-admin-secret"


def _unavailable(what: str, exc: ProvisioningError) -> ProbeUnavailable:
    return ProbeUnavailable(f"Cannot determine {what}: {exc}", diagnostic=exc.diagnostic)


def observe(descriptor: ResourceDescriptor) -> ObservedState:
    """Look the instance up by display name.

    Terminated instances keep their display name for a while, so they are
    ignored. When several live instances share the name the first one OCI
    returns wins.

    Raises
    ------
    ProbeUnavailable
        When the OCI CLI cannot be queried.
    """

    try:
        instances = list_instances(descriptor.compartment_id, descriptor.display_name)
    except ProvisioningError as exc:
        raise _unavailable(f"whether {descriptor.display_name!r} exists", exc) from exc
    for payload in instances:
        observed = ObservedState.from_oci(payload)
        if observed.exists:
            return observed
    return ObservedState.absent()


def observe_instance(instance_id: str) -> ObservedState:
    """Return the current state of *instance_id*, ``ABSENT`` if it is gone."""

    try:
        payload = get_instance(instance_id)
    except ProvisioningError as exc:
        raise _unavailable(f"state of {instance_id}", exc) from exc
    if payload is None:
        return ObservedState.absent()
    return ObservedState.from_oci(payload)


def probe_shape(instance_id: str) -> ShapeConfig | None:
    """Return the current shape of *instance_id*."""

    return observe_instance(instance_id).shape


def probe_public_ip(instance_id: str) -> str | None:
    """Return the public IP of *instance_id*, or ``None`` when unassigned."""

    try:
        return get_public_ip(instance_id)
    except ProvisioningError as exc:
        raise _unavailable(f"public IP of {instance_id}", exc) from exc


def _remote_check(host: RemoteHost, command: str, what: str) -> str | None:
    """Run a read-only remote command.

    Returns stdout on success and ``None`` when the remote command itself
    fails. Connection failures raise :class:`ProbeUnavailable`.
    """

    try:
        return run_remote(host, command)
    except CommandError as exc:
        if is_unreachable(exc):
            raise _unavailable(what, exc) from exc
        return None


def probe_ssh_reachable(host: RemoteHost) -> bool:
    """Return whether an authenticated ssh round trip succeeds."""

    try:
        run_remote(host, "true", timeout=host.connect_timeout + 20)
    except CommandError:
        return False
    return True


def probe_k3s_installed(host: RemoteHost) -> bool:
    """Return whether the ``k3s`` binary is on the remote PATH."""

    return _remote_check(host, "command -v k3s >/dev/null 2>&1", "whether k3s is installed") is not None


def nodes_ready(payload: Any) -> bool:
    """Return whether every node in a ``kubectl get nodes -o json`` document is Ready.

    Examples
    --------
    >>> nodes_ready({"items": [{"status": {"conditions": [{"type": "Ready", "status": "True"}]}}]})
    True
    >>> nodes_ready({"items": []})
    False
    """

    if not isinstance(payload, dict):
        return False
    items = payload.get("items")
    if not isinstance(items, list) or not items:
        return False
    for node in items:
        conditions = node.get("status", {}).get("conditions", []) if isinstance(node, dict) else []
        ready = any(
            condition.get("type") == "Ready" and condition.get("status") == "True"
            for condition in conditions
            if isinstance(condition, dict)
        )
        if not ready:
            return False
    return True


def probe_cluster_health(host: RemoteHost) -> bool:
    """Return whether every k3s node reports Ready."""

    stdout = _remote_check(
        host,
        "sudo k3s kubectl get nodes -o json",
        "k3s cluster health",
    )
    if stdout is None:
        return False
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError:
        return False
    return nodes_ready(payload)


def decode_secret_value(encoded: str) -> str | None:
    """Decode a base64 Kubernetes secret value, ``None`` when unusable.

    Examples
    --------
    >>> decode_secret_value("czNjcjN0")
    's3cr3t'
    >>> decode_secret_value("") is None
    True
    """

    encoded = encoded.strip().strip("'")
    if not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    return decoded or None


def probe_admin_credential(host: RemoteHost) -> str | None:
    """Return the ArgoCD initial admin password when the secret exists and decodes."""

    stdout = _remote_check(
        host,
        (
            f"sudo k3s kubectl -n {ADMIN_SECRET_NAMESPACE} get secret {ADMIN_SECRET_NAME} "
            "-o jsonpath='{.data.password}'"
        ),
        "ArgoCD admin credential",
    )
    if stdout is None:
        return None
    return decode_secret_value(stdout)


__all__ = [
    "ADMIN_SECRET_NAME",
    "ADMIN_SECRET_NAMESPACE",
    "decode_secret_value",
    "nodes_ready",
    "observe",
    "observe_instance",
    "probe_admin_credential",
    "probe_cluster_health",
    "probe_k3s_installed",
    "probe_public_ip",
    "probe_shape",
    "probe_ssh_reachable",
]
