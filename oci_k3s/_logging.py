"""Logging setup shared by the command-line entry points.

Log records go to stderr and are appended to a log file. Standard output
stays free for the ``KEY=value`` contract.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEFAULT_LOG_FILE = Path("logs/deployment.log")


def configure_logging(log_file: Path | None = DEFAULT_LOG_FILE, level: int = logging.INFO) -> None:
    """Attach a stderr handler and, when *log_file* is set, a file handler.

    Calling it again replaces the handlers installed by the previous call.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_oci_k3s", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._oci_k3s = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level)


__all__ = ["DEFAULT_LOG_FILE", "LOG_FORMAT", "configure_logging"]
