"""Shared helpers for resolving CLI and environment inputs."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Empty environment values count as unset.

    Examples
    --------
    >>> resolve_input(None, InputResolution("INSTANCE_NAME", default="k3s-host"), {})
    'k3s-host'
    >>> resolve_input(None, InputResolution("SSH_KEY", as_path=True), {"SSH_KEY": "/k"})
    PosixPath('/k')
    """

    if param_value is not None:
        return Path(param_value).expanduser() if resolution.as_path else param_value

    env_value = (env if env is not None else os.environ).get(resolution.env_key)
    if env_value:
        return Path(env_value).expanduser() if resolution.as_path else env_value

    if resolution.required:
        msg = f"{resolution.env_key} is required"
        raise SystemExit(msg)

    if resolution.as_path and resolution.default is not None:
        return Path(resolution.default).expanduser()
    return resolution.default


def parse_int(value: str | int | None, *, name: str, minimum: int = 0) -> int:
    """Parse an integer input, exiting with a message when malformed.

    Examples
    --------
    >>> parse_int("3000", name="MAX_ATTEMPTS", minimum=1)
    3000
    """

    try:
        parsed = int(str(value).strip())
    except ValueError:
        msg = f"{name} must be an integer, got {value!r}"
        raise SystemExit(msg) from None
    if parsed < minimum:
        msg = f"{name} must be at least {minimum}, got {parsed}"
        raise SystemExit(msg)
    return parsed


def parse_float(value: str | float | None, *, name: str) -> float:
    """Parse a positive number input, exiting with a message when malformed.

    Examples
    --------
    >>> parse_float("24", name="TARGET_MEMORY_GB")
    24.0
    """

    try:
        parsed = float(str(value).strip())
    except ValueError:
        msg = f"{name} must be a number, got {value!r}"
        raise SystemExit(msg) from None
    if parsed <= 0:
        msg = f"{name} must be positive, got {parsed}"
        raise SystemExit(msg)
    return parsed


__all__ = ["InputResolution", "parse_float", "parse_int", "resolve_input"]
