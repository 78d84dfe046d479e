"""Tests for the terraform command wrappers."""

from __future__ import annotations

import doctest
import subprocess
from pathlib import Path

import pytest

from oci_k3s import _terraform
from oci_k3s._terraform import terraform_apply, terraform_destroy


class RecordingRun:
    """Stand-in for :func:`subprocess.run` that records each command."""

    def __init__(self, return_code: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.return_code = return_code
        self.stdout = stdout
        self.stderr = stderr
        self.commands: list[list[str]] = []
        self.cwds: list[Path] = []

    def __call__(self, cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        self.commands.append(cmd)
        self.cwds.append(kwargs["cwd"])
        return subprocess.CompletedProcess(cmd, self.return_code, self.stdout, self.stderr)


def test_apply_runs_without_prompting(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    run = RecordingRun(stdout="Apply complete! Resources: 1 added.")
    monkeypatch.setattr("oci_k3s._terraform.subprocess.run", run)

    result = terraform_apply(tmp_path)

    assert result.success is True
    assert run.commands == [["terraform", "apply", "-input=false", "-auto-approve"]]
    assert run.cwds == [tmp_path]


def test_failed_destroy_keeps_stderr(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "oci_k3s._terraform.subprocess.run",
        RecordingRun(return_code=1, stderr="Error: state lock\n"),
    )

    result = terraform_destroy(tmp_path)

    assert result.success is False
    assert result.diagnostic == "Error: state lock"


def test_missing_binary_is_reported_as_a_result(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def not_installed(cmd: list[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr("oci_k3s._terraform.subprocess.run", not_installed)

    result = terraform_apply(tmp_path)

    assert (result.success, result.return_code) == (False, 127)
    assert result.stderr == "terraform not found on PATH"


def test_module_examples_never_run_terraform(monkeypatch: pytest.MonkeyPatch) -> None:
    run = RecordingRun()
    monkeypatch.setattr("oci_k3s._terraform.subprocess.run", run)

    results = doctest.testmod(_terraform)

    assert results.failed == 0
    assert run.commands == []
