"""Tests for the command-line entry points."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from oci_k3s import create_ssh_alias, deploy_cluster, deploy_instance, resize_instance, setup_cluster
from oci_k3s._logging import configure_logging
from oci_k3s._outputs import parse_outputs

ENV_KEYS = (
    "COMPARTMENT_ID",
    "INSTANCE_NAME",
    "INSTANCE_ID",
    "PUBLIC_IP",
    "TERRAFORM_DIR",
    "SSH_KEY",
    "SSH_USER",
    "SSH_CONFIG",
    "ALIAS_NAME",
    "MAX_ATTEMPTS",
    "RETRY_INTERVAL",
    "STEPS",
    "TARGET_OCPUS",
    "TARGET_MEMORY_GB",
    "SETUP_SCRIPT",
    "PAYLOAD_DIR",
    "KUBECONFIG_OUT",
    "LOG_FILE",
)


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    for module in (create_ssh_alias, deploy_cluster, deploy_instance, resize_instance, setup_cluster):
        monkeypatch.setattr(module, "configure_logging", lambda *args, **kwargs: None)


def test_create_ssh_alias_prints_outputs(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    ssh_config = tmp_path / "config"

    code = create_ssh_alias.main(
        public_ip="203.0.113.10",
        ssh_key=tmp_path / "key",
        ssh_config=ssh_config,
    )

    assert code == 0
    assert parse_outputs(capsys.readouterr().out) == {"SSH_ALIAS": "OCI-k3s", "SSH_ALIAS_CREATED": "true"}
    assert "HostName 203.0.113.10" in ssh_config.read_text(encoding="utf-8")


def test_create_ssh_alias_reads_address_from_env(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("PUBLIC_IP", "198.51.100.4")
    monkeypatch.setenv("ALIAS_NAME", "lab")

    code = create_ssh_alias.main(ssh_config=tmp_path / "config")

    assert code == 0
    assert parse_outputs(capsys.readouterr().out)["SSH_ALIAS"] == "lab"
    assert "Host lab\n    HostName 198.51.100.4\n" in (tmp_path / "config").read_text(encoding="utf-8")


def test_create_ssh_alias_requires_public_ip(tmp_path: Path) -> None:
    with pytest.raises(SystemExit, match="PUBLIC_IP is required"):
        create_ssh_alias.main(ssh_config=tmp_path / "config")


def test_deploy_instance_reports_existing_instance(
    tmp_path: Path,
    fake_terraform,
    fake_oci,
    capsys: pytest.CaptureFixture[str],
) -> None:
    instance = fake_oci.add_instance(state="RUNNING")

    code = deploy_instance.main(compartment_id="ocid1.compartment.oc1..test", terraform_dir=tmp_path)

    outputs = parse_outputs(capsys.readouterr().out)
    assert code == 0
    assert outputs == {
        "INSTANCE_ID": instance.instance_id,
        "PUBLIC_IP": "203.0.113.10",
        "INSTANCE_STATE": "RUNNING",
        "INSTANCE_CREATED": "false",
    }
    assert fake_terraform.applies == 0


def test_deploy_instance_fatal_apply_exits_nonzero(
    tmp_path: Path,
    fake_terraform,
    capsys: pytest.CaptureFixture[str],
) -> None:
    fake_terraform.failures = ['{"code": "NotAuthenticated", "status": 401}']

    code = deploy_instance.main(compartment_id="ocid1.compartment.oc1..test", terraform_dir=tmp_path)

    captured = capsys.readouterr()
    assert code == 1
    assert captured.out == ""
    assert captured.err.startswith("error: terraform apply failed")
    assert "NotAuthenticated" in captured.err


def test_deploy_cluster_rejects_unknown_steps(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = deploy_cluster.main(steps="deploy,teardown", compartment_id="ocid1.compartment.oc1..test")

    assert code == 1
    assert "Unknown stage 'teardown'" in capsys.readouterr().err


def test_domain_name_is_read_from_env_file(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text('# settings\nDOMAIN_NAME="example.org"\nEMAIL=a@b\n', encoding="utf-8")

    assert deploy_cluster._domain_name(env_file) == "example.org"
    assert deploy_cluster._domain_name(tmp_path / "missing") is None


def test_configure_logging_writes_to_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "deployment.log"
    root = logging.getLogger()
    previous_level = root.level
    try:
        configure_logging(log_file)
        configure_logging(log_file)
        logging.getLogger("oci_k3s.test").info("hello from the test")
        ours = [handler for handler in root.handlers if getattr(handler, "_oci_k3s", False)]
        assert len(ours) == 2
    finally:
        for handler in list(root.handlers):
            if getattr(handler, "_oci_k3s", False):
                root.removeHandler(handler)
                handler.close()
        root.setLevel(previous_level)

    assert "INFO - hello from the test" in log_file.read_text(encoding="utf-8")


def test_resize_instance_reports_matching_shape(
    fake_oci,
    capsys: pytest.CaptureFixture[str],
) -> None:
    instance = fake_oci.add_instance(ocpus=4, memory_gbs=24)

    code = resize_instance.main(instance_id=instance.instance_id)

    assert code == 0
    assert parse_outputs(capsys.readouterr().out) == {
        "RESIZE_NEEDED": "false",
        "CURRENT_OCPUS": "4",
        "CURRENT_MEMORY": "24",
    }
    assert fake_oci.mutations == []


def test_resize_instance_missing_instance_exits_nonzero(
    fake_oci,
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = resize_instance.main(compartment_id="ocid1.compartment.oc1..test")

    assert code == 1
    assert "not found; deploy it first" in capsys.readouterr().err


def test_setup_cluster_installs_on_given_address(
    tmp_path: Path,
    fake_remote,
    capsys: pytest.CaptureFixture[str],
) -> None:
    script = tmp_path / "post-deployment-setup.sh"
    script.write_text("#!/bin/bash\n", encoding="utf-8")
    payload = tmp_path / "k3s"
    payload.mkdir()
    (payload / ".env").write_text("DOMAIN_NAME=example.com\n", encoding="utf-8")

    code = setup_cluster.main(
        public_ip="203.0.113.10",
        ssh_key=tmp_path / "key",
        setup_script=script,
        payload_dir=payload,
    )

    assert code == 0
    assert parse_outputs(capsys.readouterr().out) == {
        "K3S_INSTALLED": "true",
        "K3S_SETUP_COMPLETED": "true",
        "ARGOCD_PASSWORD": "argo-admin-pass",
    }
    assert fake_remote.installs == 1


def test_setup_cluster_refuses_a_stopped_instance(
    tmp_path: Path,
    fake_oci,
    fake_remote,
    capsys: pytest.CaptureFixture[str],
) -> None:
    instance = fake_oci.add_instance(state="STOPPED")
    script = tmp_path / "post-deployment-setup.sh"
    script.write_text("#!/bin/bash\n", encoding="utf-8")
    payload = tmp_path / "k3s"
    payload.mkdir()
    (payload / ".env").write_text("DOMAIN_NAME=example.com\n", encoding="utf-8")

    code = setup_cluster.main(
        compartment_id="ocid1.compartment.oc1..test",
        ssh_key=tmp_path / "key",
        setup_script=script,
        payload_dir=payload,
    )

    captured = capsys.readouterr()
    assert code == 1
    assert captured.out == ""
    assert f"Instance {instance.instance_id} is STOPPED, not RUNNING" in captured.err
    assert fake_remote.commands == []
    assert fake_oci.mutations == []
