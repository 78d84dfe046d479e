"""``KEY=value`` output written on stdout when a command succeeds.

Multiline values use heredoc syntax so a line-oriented reader can still
pick them apart.
"""

from __future__ import annotations

import sys
from collections import abc as cabc
from typing import TextIO


def _choose_multiline_delimiter(value: str, base: str = "EOF") -> str:
    """Choose a heredoc delimiter that is not in the value."""
    delimiter = base
    counter = 0
    while delimiter in value:
        counter += 1
        delimiter = f"{base}_{counter}"
    return delimiter


def format_outputs(items: cabc.Mapping[str, str]) -> str:
    """Render *items* as ``KEY=value`` lines.

    Examples
    --------
    >>> print(format_outputs({"SSH_ALIAS": "OCI-k3s", "NOTE": "a\\nb"}), end="")
    SSH_ALIAS=OCI-k3s
    NOTE<<EOF
    a
    b
    EOF
    """

    lines: list[str] = []
    for key, value in items.items():
        if "\n" in value or "\r" in value:
            delimiter = _choose_multiline_delimiter(value)
            lines.extend((f"{key}<<{delimiter}", value, delimiter))
        else:
            lines.append(f"{key}={value}")
    return "".join(f"{line}\n" for line in lines)


def parse_outputs(text: str) -> dict[str, str]:
    """Parse single-line ``KEY=value`` output back into a mapping.

    Lines that are not assignments are ignored.

    Examples
    --------
    >>> parse_outputs("log line\\nINSTANCE_ID=ocid1.instance\\n")
    {'INSTANCE_ID': 'ocid1.instance'}
    """

    outputs: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key and key.replace("_", "").isalnum() and key.isupper():
            outputs[key] = value
    return outputs


def report_error(error: BaseException, stream: TextIO | None = None) -> None:
    """Print *error* as an ``error: ...`` line, plus its diagnostic when it adds detail."""

    target = stream if stream is not None else sys.stderr
    print(f"error: {error}", file=target)
    diagnostic = getattr(error, "diagnostic", None)
    if diagnostic and diagnostic not in str(error):
        print(f"diagnostic: {diagnostic}", file=target)


def emit_outputs(items: cabc.Mapping[str, str], stream: TextIO | None = None) -> None:
    """Write *items* to *stream* (stdout by default)."""

    target = stream if stream is not None else sys.stdout
    target.write(format_outputs(items))
    target.flush()


__all__ = ["emit_outputs", "format_outputs", "parse_outputs", "report_error"]
