"""Local ed25519 key pair used to reach the instance."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from oci_k3s._errors import FatalConfigurationFailure
from oci_k3s._files import PRIVATE_DIR_MODE, write_private_file

logger = logging.getLogger(__name__)

DEFAULT_SSH_KEY = Path("~/.ssh/oci_k3s_server")
PUBLIC_KEY_MODE = 0o644


@dataclass(frozen=True, slots=True)
class SshKeyPair:
    """Paths of a key pair on disk."""

    private_key: Path
    public_key: Path
    generated: bool


def public_key_path(private_key: Path) -> Path:
    """Return the ``.pub`` path that belongs to *private_key*.

    Examples
    --------
    >>> public_key_path(Path("/home/u/.ssh/oci_k3s_server"))
    PosixPath('/home/u/.ssh/oci_k3s_server.pub')
    """

    return private_key.with_name(f"{private_key.name}.pub")


def _key_comment() -> str:
    return f"oci-k3s-server-{datetime.now(tz=UTC):%Y%m%d}"


def ensure_ssh_keypair(private_key: Path) -> SshKeyPair:
    """Generate an ed25519 key pair at *private_key* unless one exists.

    The private key is written in OpenSSH format with mode ``0600`` and the
    public key with mode ``0644``.

    Raises
    ------
    FatalConfigurationFailure
        When only one half of the pair exists, or the path is a directory.
    """

    private_key = private_key.expanduser()
    public_key = public_key_path(private_key)
    if private_key.is_dir():
        msg = f"SSH key path is a directory: {private_key}"
        raise FatalConfigurationFailure(msg)
    if private_key.exists():
        if not public_key.exists():
            msg = f"SSH public key missing for {private_key}"
            raise FatalConfigurationFailure(msg)
        logger.info("Using existing SSH key %s", private_key)
        return SshKeyPair(private_key=private_key, public_key=public_key, generated=False)

    logger.info("Generating SSH key pair at %s", private_key)
    key = ed25519.Ed25519PrivateKey.generate()
    private_bytes = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_bytes = key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )

    write_private_file(private_key, private_bytes.decode("ascii"), dir_mode=PRIVATE_DIR_MODE)
    public_key.write_text(f"{public_bytes.decode('ascii')} {_key_comment()}\n", encoding="utf-8")
    os.chmod(public_key, PUBLIC_KEY_MODE)
    return SshKeyPair(private_key=private_key, public_key=public_key, generated=True)


__all__ = ["DEFAULT_SSH_KEY", "SshKeyPair", "ensure_ssh_keypair", "public_key_path"]
