"""Remote execution channel to the k3s host over ssh and scp."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from oci_k3s._commands import CommandContext, run_command
from oci_k3s._errors import CommandError

DEFAULT_SSH_USER = "ubuntu"
# ssh reserves exit status 255 for its own connection and auth failures.
SSH_UNREACHABLE_EXIT = 255


@dataclass(frozen=True, slots=True)
class RemoteHost:
    """Address and credentials for the remote host."""

    address: str
    identity: Path | None = None
    user: str = DEFAULT_SSH_USER
    connect_timeout: int = 10

    @property
    def target(self) -> str:
        return f"{self.user}@{self.address}"


def ssh_options(host: RemoteHost) -> list[str]:
    """Return the option list shared by ssh and scp.

    Examples
    --------
    >>> ssh_options(RemoteHost("203.0.113.10"))[:2]
    ['-o', 'BatchMode=yes']
    >>> ssh_options(RemoteHost("203.0.113.10", identity=Path("key")))[-2:]
    ['-i', 'key']
    """

    options = [
        "-o",
        "BatchMode=yes",
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "UserKnownHostsFile=/dev/null",
        "-o",
        f"ConnectTimeout={host.connect_timeout}",
    ]
    if host.identity is not None:
        options.extend(["-i", str(host.identity)])
    return options


def is_unreachable(error: CommandError) -> bool:
    """Return whether *error* came from ssh itself rather than the remote command."""

    return error.return_code in (None, SSH_UNREACHABLE_EXIT)


def run_remote(host: RemoteHost, command: str, *, timeout: int | None = 60) -> str:
    """Run *command* through the remote shell and return its stdout."""

    return run_command(
        "ssh",
        *ssh_options(host),
        host.target,
        command,
        context=CommandContext(timeout=timeout),
    )


def copy_to_remote(
    host: RemoteHost,
    sources: Iterable[Path],
    destination: str = "~/",
    *,
    timeout: int | None = 300,
) -> None:
    """Copy local files or directories to the remote home directory."""

    run_command(
        "scp",
        *ssh_options(host),
        "-r",
        *(str(source) for source in sources),
        f"{host.target}:{destination}",
        context=CommandContext(timeout=timeout),
    )


__all__ = [
    "DEFAULT_SSH_USER",
    "SSH_UNREACHABLE_EXIT",
    "RemoteHost",
    "copy_to_remote",
    "is_unreachable",
    "run_remote",
    "ssh_options",
]
