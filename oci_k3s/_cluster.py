"""Install or repair k3s and its GitOps stack on the remote host.

The remote installation script is opaque: it is copied to the host with its
payload directory and run as a whole. Repair is not selective, so an
installed but unhealthy cluster gets the full installation again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from oci_k3s._errors import (
    CommandError,
    FatalConfigurationFailure,
    ProbeUnavailable,
    ProvisioningError,
)
from oci_k3s._files import write_private_file
from oci_k3s._probes import (
    probe_admin_credential,
    probe_cluster_health,
    probe_k3s_installed,
    probe_ssh_reachable,
)
from oci_k3s._ssh import RemoteHost, copy_to_remote, run_remote
from oci_k3s._waiting import WaitBudget, read_with_retry, wait_for

logger = logging.getLogger(__name__)

REMOTE_KUBECONFIG = "/etc/rancher/k3s/k3s.yaml"
_LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "[::1]")


@dataclass(frozen=True, slots=True)
class ClusterConfig:
    """Local payload and budgets for cluster configuration.

    Attributes
    ----------
    setup_script
        Installation script run on the host.
    payload_dir
        Directory copied next to the script. It must contain ``.env``.
    kubeconfig_out
        Optional local path for the exported kubeconfig.
    ssh_wait
        Budget for the host to accept ssh connections.
    install_timeout
        Timeout in seconds for the remote installation script.
    probe
        Retry budget for each remote state check.
    """

    setup_script: Path
    payload_dir: Path
    kubeconfig_out: Path | None = None
    ssh_wait: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=30, interval=10))
    install_timeout: int = 3600
    probe: WaitBudget = field(default_factory=lambda: WaitBudget(attempts=6, interval=10))


@dataclass(frozen=True, slots=True)
class ClusterResult:
    """Outcome of :func:`configure_cluster`."""

    installed_now: bool
    admin_password: str | None = None
    kubeconfig_path: Path | None = None

    @property
    def already_configured(self) -> bool:
        return not self.installed_now

    def to_outputs(self) -> dict[str, str]:
        """Return the ``KEY=value`` outputs of the k3s stage.

        Examples
        --------
        >>> ClusterResult(installed_now=True).to_outputs()
        {'K3S_INSTALLED': 'true', 'K3S_SETUP_COMPLETED': 'true'}
        """

        outputs = {"K3S_INSTALLED": "true"}
        if self.installed_now:
            outputs["K3S_SETUP_COMPLETED"] = "true"
        else:
            outputs["K3S_ALREADY_CONFIGURED"] = "true"
        if self.admin_password:
            outputs["ARGOCD_PASSWORD"] = self.admin_password
        if self.kubeconfig_path is not None:
            outputs["KUBECONFIG"] = str(self.kubeconfig_path)
        return outputs


def validate_payload(config: ClusterConfig) -> None:
    """Check the local payload before touching the remote host.

    Raises
    ------
    FatalConfigurationFailure
        When the script, the payload directory, or its ``.env`` is missing.
    """

    if not config.setup_script.is_file():
        msg = f"Setup script not found: {config.setup_script}"
        raise FatalConfigurationFailure(msg)
    if not config.payload_dir.is_dir():
        msg = f"Payload directory not found: {config.payload_dir}"
        raise FatalConfigurationFailure(msg)
    env_file = config.payload_dir / ".env"
    if not env_file.is_file():
        msg = (
            f"{env_file} not found; copy {config.payload_dir}/.env.template to "
            f"{env_file} and fill in your values"
        )
        raise FatalConfigurationFailure(msg)


def wait_for_ssh(host: RemoteHost, budget: WaitBudget) -> None:
    """Block until *host* accepts an authenticated ssh session."""

    logger.info("Waiting for SSH on %s", host.target)
    wait_for(
        lambda: probe_ssh_reachable(host),
        bool,
        budget,
        description=f"SSH on {host.address}",
    )
    logger.info("SSH is ready on %s", host.target)


def _is_converged(host: RemoteHost, budget: WaitBudget) -> tuple[bool, str | None]:
    """Return whether the cluster needs no work, plus the password if found."""

    logger.info("Checking if k3s is already installed")
    if not read_with_retry(lambda: probe_k3s_installed(host), budget, description="k3s installation"):
        logger.info("k3s is not installed")
        return False, None
    if not read_with_retry(lambda: probe_cluster_health(host), budget, description="cluster health"):
        logger.warning("k3s is installed but the cluster is not healthy, reinstalling")
        return False, None
    password = read_with_retry(lambda: probe_admin_credential(host), budget, description="ArgoCD credentials")
    if password is None:
        logger.warning("k3s is installed but ArgoCD is not configured, running full setup")
        return False, None
    logger.info("k3s cluster is healthy and ArgoCD is configured, nothing to do")
    return True, password


def run_installation(host: RemoteHost, config: ClusterConfig) -> None:
    """Copy the payload and run the installation script."""

    logger.info("Copying setup files to %s", host.target)
    try:
        copy_to_remote(host, [config.setup_script, config.payload_dir])
    except CommandError as exc:
        msg = "Failed to copy setup files"
        raise FatalConfigurationFailure(msg, diagnostic=exc.diagnostic) from exc

    script = config.setup_script.name
    logger.info("Running k3s setup on %s (this may take 10-15 minutes)", host.target)
    try:
        run_remote(
            host,
            f"chmod +x ./{script} && ./{script}",
            timeout=config.install_timeout,
        )
    except CommandError as exc:
        msg = "k3s setup failed"
        raise FatalConfigurationFailure(msg, diagnostic=exc.diagnostic) from exc
    logger.info("k3s cluster setup completed")


def rewrite_kubeconfig(document: Any, address: str) -> Any:
    """Point every loopback cluster server in a kubeconfig at *address*.

    Examples
    --------
    >>> doc = {"clusters": [{"cluster": {"server": "https://127.0.0.1:6443"}}]}
    >>> rewrite_kubeconfig(doc, "203.0.113.10")["clusters"][0]["cluster"]["server"]
    'https://203.0.113.10:6443'
    """

    if not isinstance(document, dict):
        msg = "kubeconfig is not a mapping"
        raise ProvisioningError(msg)
    for entry in document.get("clusters") or []:
        cluster = entry.get("cluster") if isinstance(entry, dict) else None
        if not isinstance(cluster, dict):
            continue
        server = cluster.get("server")
        if not isinstance(server, str):
            continue
        for loopback in _LOOPBACK_HOSTS:
            server = server.replace(f"//{loopback}:", f"//{address}:")
        cluster["server"] = server
    return document


def export_kubeconfig(host: RemoteHost, destination: Path) -> Path:
    """Fetch the cluster kubeconfig and store it locally with mode ``0600``."""

    try:
        raw = run_remote(host, f"sudo cat {REMOTE_KUBECONFIG}")
    except CommandError as exc:
        msg = f"Failed to read {REMOTE_KUBECONFIG}"
        raise FatalConfigurationFailure(msg, diagnostic=exc.diagnostic) from exc
    try:
        document = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        msg = f"{REMOTE_KUBECONFIG} is not valid YAML"
        raise FatalConfigurationFailure(msg, diagnostic=str(exc)) from exc
    document = rewrite_kubeconfig(document, host.address)
    write_private_file(destination, yaml.safe_dump(document, sort_keys=False))
    logger.info("Kubeconfig written to %s", destination)
    return destination


def configure_cluster(host: RemoteHost, config: ClusterConfig) -> ClusterResult:
    """Converge the remote host onto a healthy k3s cluster with ArgoCD.

    Raises
    ------
    FatalConfigurationFailure
        When the local payload is incomplete or the installation fails.
    SettlementTimeout
        When ssh never becomes available.
    ProbeUnavailable
        When the host stops answering state checks within ``config.probe``.
    """

    validate_payload(config)
    wait_for_ssh(host, config.ssh_wait)

    converged, password = _is_converged(host, config.probe)
    installed_now = not converged
    if installed_now:
        run_installation(host, config)
        logger.info("Retrieving ArgoCD credentials")
        try:
            password = read_with_retry(
                lambda: probe_admin_credential(host),
                config.probe,
                description="ArgoCD credentials",
            )
        except ProbeUnavailable as exc:
            logger.warning("Could not reach host to read ArgoCD credentials: %s", exc)
            password = None
        if password is None:
            logger.warning("Could not retrieve ArgoCD password")

    kubeconfig_path = None
    if config.kubeconfig_out is not None:
        kubeconfig_path = export_kubeconfig(host, config.kubeconfig_out)

    return ClusterResult(
        installed_now=installed_now,
        admin_password=password,
        kubeconfig_path=kubeconfig_path,
    )


__all__ = [
    "REMOTE_KUBECONFIG",
    "ClusterConfig",
    "ClusterResult",
    "configure_cluster",
    "export_kubeconfig",
    "rewrite_kubeconfig",
    "run_installation",
    "validate_payload",
    "wait_for_ssh",
]
