"""Register the instance as a named host in the OpenSSH client config.

The config is treated as a preamble followed by ``Host``/``Match`` blocks.
Only the block whose header is exactly ``Host <alias>`` is touched; every
other line is written back unchanged.

Examples
--------
>>> alias = SshAlias("OCI-k3s", "203.0.113.10", Path("~/.ssh/oci_k3s_server"))
>>> print(alias.render(), end="")
Host OCI-k3s
    HostName 203.0.113.10
    User ubuntu
    IdentityFile ~/.ssh/oci_k3s_server
    StrictHostKeyChecking no
    UserKnownHostsFile /dev/null
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from oci_k3s._files import PRIVATE_DIR_MODE, write_private_file
from oci_k3s._ssh import DEFAULT_SSH_USER

logger = logging.getLogger(__name__)

DEFAULT_ALIAS_NAME = "OCI-k3s"
_BLOCK_KEYWORDS = frozenset({"host", "match"})


@dataclass(frozen=True, slots=True)
class SshAlias:
    """One ``Host`` entry pointing at the instance."""

    name: str
    address: str
    identity: Path
    user: str = DEFAULT_SSH_USER

    def __post_init__(self) -> None:
        if not self.name or any(char.isspace() for char in self.name):
            msg = f"Invalid SSH alias name: {self.name!r}"
            raise ValueError(msg)
        if not self.address:
            msg = "SSH alias address must not be empty"
            raise ValueError(msg)

    def render(self) -> str:
        return (
            f"Host {self.name}\n"
            f"    HostName {self.address}\n"
            f"    User {self.user}\n"
            f"    IdentityFile {self.identity}\n"
            "    StrictHostKeyChecking no\n"
            "    UserKnownHostsFile /dev/null\n"
        )

    def to_outputs(self) -> dict[str, str]:
        return {"SSH_ALIAS": self.name, "SSH_ALIAS_CREATED": "true"}


def _header(line: str) -> list[str] | None:
    """Return the tokens of a block header line, ``None`` for other lines."""

    tokens = line.split()
    if tokens and tokens[0].lower() in _BLOCK_KEYWORDS:
        return tokens
    return None


def split_blocks(text: str) -> tuple[list[str], list[list[str]]]:
    """Split an ssh config into preamble lines and blocks of lines.

    Line endings are kept so the pieces join back to *text*.

    Examples
    --------
    >>> preamble, blocks = split_blocks("# mine\\nHost a\\n  User x\\nHost b\\n")
    >>> preamble, [block[0] for block in blocks]
    (['# mine\\n'], ['Host a\\n', 'Host b\\n'])
    """

    preamble: list[str] = []
    blocks: list[list[str]] = []
    for line in text.splitlines(keepends=True):
        if _header(line) is not None:
            blocks.append([line])
        elif blocks:
            blocks[-1].append(line)
        else:
            preamble.append(line)
    return preamble, blocks


def _is_alias_block(block: list[str], name: str) -> bool:
    tokens = _header(block[0])
    return tokens is not None and tokens[0].lower() == "host" and tokens[1:] == [name]


def _trailing_detached_lines(block: list[str]) -> list[str]:
    """Return the blank and comment lines that end *block*.

    They precede the next ``Host`` line and belong to it, not to the block
    being replaced.
    """

    trailing: list[str] = []
    for line in reversed(block[1:]):
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            break
        trailing.insert(0, line)
    return trailing


def upsert_alias_text(text: str, alias: SshAlias) -> tuple[str, bool]:
    """Return *text* with the alias block replaced or appended.

    The boolean is ``True`` when an existing block was replaced. Extra
    blocks for the same alias are dropped so exactly one remains. Comments
    and blank lines trailing a replaced block are kept.
    """

    preamble, blocks = split_blocks(text)
    rendered = alias.render()
    output: list[str] = list(preamble)
    replaced = False
    for block in blocks:
        if not _is_alias_block(block, alias.name):
            output.extend(block)
            continue
        if not replaced:
            output.append(rendered)
            replaced = True
        output.extend(_trailing_detached_lines(block))

    if replaced:
        return "".join(output), True

    existing = "".join(output)
    if existing and not existing.endswith("\n"):
        existing += "\n"
    separator = "\n" if existing.strip() and not existing.endswith("\n\n") else ""
    return f"{existing}{separator}{rendered}", False


def upsert_alias(config_path: Path, alias: SshAlias) -> bool:
    """Write *alias* into the ssh config at *config_path*.

    The file is replaced atomically with mode ``0600``; a missing ``~/.ssh``
    is created with mode ``0700``.

    Returns
    -------
    bool
        ``True`` when an existing entry was updated, ``False`` when appended.
    """

    text = config_path.read_text(encoding="utf-8") if config_path.exists() else ""
    updated, replaced = upsert_alias_text(text, alias)
    if replaced:
        logger.warning("SSH alias %r already exists, updating", alias.name)
    write_private_file(config_path, updated, dir_mode=PRIVATE_DIR_MODE)
    logger.info("SSH alias %r points at %s", alias.name, alias.address)
    logger.info("You can now connect with: ssh %s", alias.name)
    return replaced


__all__ = [
    "DEFAULT_ALIAS_NAME",
    "SshAlias",
    "split_blocks",
    "upsert_alias",
    "upsert_alias_text",
]
