"""Terraform helpers for creating and discarding the compute instance."""

from __future__ import annotations

import os
import subprocess
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

TERRAFORM_TIMEOUT_SECONDS = 1800


@dataclass(frozen=True, slots=True)
class TerraformResult:
    """Result of a Terraform command execution.

    Attributes
    ----------
    success
        Whether the command exited with status code ``0``.
    stdout
        Captured standard output.
    stderr
        Captured standard error.
    return_code
        Process exit status code returned by Terraform.

    Examples
    --------
    >>> TerraformResult(success=False, stdout="", stderr="Out of host capacity.", return_code=1).diagnostic
    'Out of host capacity.'
    """

    success: bool
    stdout: str
    stderr: str
    return_code: int

    @property
    def diagnostic(self) -> str:
        """Combined output used for failure classification."""

        return "\n".join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)


def _validate_command_args(args: list[str]) -> None:
    """Validate Terraform CLI arguments for safe execution."""
    for arg in args:
        if not isinstance(arg, str):
            msg = f"Terraform argument must be a string, got {type(arg).__name__}"
            raise TypeError(msg)
        if any(char in arg for char in ("\x00", "\n", "\r")):
            msg = "Terraform argument contains an invalid control character"
            raise ValueError(msg)


def run_terraform(
    args: list[str],
    cwd: Path,
    env: cabc.Mapping[str, str] | None = None,
) -> TerraformResult:
    """Execute a Terraform command and return the result.

    Parameters
    ----------
    args
        Command arguments (without the ``terraform`` prefix).
    cwd
        Terraform configuration directory.
    env
        Extra environment variables for the command.

    Returns
    -------
    TerraformResult
        Result containing success status, output, and return code. A timeout
        is reported as an unsuccessful result rather than raised.
    """
    cmd = ["terraform", *args]
    merged_env = {**os.environ, **(env or {})}

    _validate_command_args(cmd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            env=merged_env,
            capture_output=True,
            text=True,
            check=False,
            timeout=TERRAFORM_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired:
        msg = f"terraform {' '.join(args)} timed out after {TERRAFORM_TIMEOUT_SECONDS}s"
        return TerraformResult(success=False, stdout="", stderr=msg, return_code=-1)
    except FileNotFoundError:
        return TerraformResult(
            success=False,
            stdout="",
            stderr="terraform not found on PATH",
            return_code=127,
        )

    return TerraformResult(
        success=result.returncode == 0,
        stdout=result.stdout,
        stderr=result.stderr,
        return_code=result.returncode,
    )


def needs_init(cwd: Path) -> bool:
    """Return whether the working directory has not been initialised yet."""

    return not (cwd / ".terraform").is_dir()


def terraform_init(cwd: Path) -> TerraformResult:
    """Run ``terraform init``."""
    return run_terraform(["init", "-input=false"], cwd)


def terraform_apply(cwd: Path, *, auto_approve: bool = True) -> TerraformResult:
    """Run ``terraform apply`` without prompting for input."""
    args = ["apply", "-input=false"]
    if auto_approve:
        args.append("-auto-approve")
    return run_terraform(args, cwd)


def terraform_destroy(cwd: Path, *, auto_approve: bool = True) -> TerraformResult:
    """Run ``terraform destroy`` to discard partially created resources."""
    args = ["destroy", "-input=false"]
    if auto_approve:
        args.append("-auto-approve")
    return run_terraform(args, cwd)


__all__ = [
    "TerraformResult",
    "needs_init",
    "run_terraform",
    "terraform_apply",
    "terraform_destroy",
    "terraform_init",
]
