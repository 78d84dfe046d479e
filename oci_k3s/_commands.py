"""Command execution helpers shared by the OCI and SSH wrappers."""

from __future__ import annotations

from dataclasses import dataclass

from plumbum import local
from plumbum.commands.processes import (
    CommandNotFound,
    ProcessExecutionError,
    ProcessTimedOut,
)

from oci_k3s._errors import CommandError


@dataclass(slots=True)
class CommandContext:
    """Execution options for :func:`run_command`."""

    env: dict[str, str] | None = None
    stdin: str | None = None
    timeout: int | None = None


def run_command(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> str:
    """Execute an external command and return its standard output.

    Raises
    ------
    CommandError
        When the command is missing, times out, or exits non-zero. The
        error carries the command's stderr (or stdout when stderr is empty)
        as its diagnostic and the exit status as ``return_code``.

    Examples
    --------
    >>> run_command('printf', 'hello')
    'hello'
    """

    ctx = context or CommandContext()
    try:
        bound = local[command][list(args)]
        if ctx.stdin is None:
            _, stdout, _ = bound.run(env=ctx.env, timeout=ctx.timeout)
        else:
            _, stdout, _ = (bound << ctx.stdin).run(env=ctx.env, timeout=ctx.timeout)
    except CommandNotFound as exc:
        raise CommandError(command, f"{command} not found on PATH") from exc
    except ProcessTimedOut as exc:
        raise CommandError(command, f"timed out after {ctx.timeout}s") from exc
    except ProcessExecutionError as exc:
        diagnostic = (exc.stderr or "").strip() or (exc.stdout or "").strip()
        raise CommandError(command, diagnostic, return_code=exc.retcode) from exc
    return stdout


__all__ = ["CommandContext", "run_command"]
