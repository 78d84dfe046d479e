"""Atomic writes for files that hold credentials or host configuration."""

from __future__ import annotations

import os
from contextlib import suppress
from pathlib import Path

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


def write_private_file(path: Path, content: str, *, dir_mode: int | None = None) -> None:
    """Write *content* to ``path`` atomically with mode ``0600``.

    A missing parent directory is created, with *dir_mode* when given.
    """

    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if dir_mode is not None:
            os.chmod(path.parent, dir_mode)
    tmp_path = path.with_name(f".{path.name}.tmp")

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_FILE_MODE)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
    except Exception:
        with suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise

    tmp_path.replace(path)
    os.chmod(path, PRIVATE_FILE_MODE)


__all__ = ["PRIVATE_DIR_MODE", "PRIVATE_FILE_MODE", "write_private_file"]
