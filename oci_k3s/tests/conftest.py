from __future__ import annotations

import base64
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path

import pytest


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


@dataclass
class FakeInstance:
    """Instance record that moves through queued lifecycle states on each read."""

    instance_id: str
    name: str
    state: str
    ocpus: float = 1
    memory_gbs: float = 6
    public_ip: str | None = "203.0.113.10"
    pending_states: list[str] = field(default_factory=list)
    pending_shape: tuple[float, float] | None = None

    def read(self) -> dict[str, object]:
        snapshot = {
            "id": self.instance_id,
            "display-name": self.name,
            "lifecycle-state": self.state,
            "shape-config": {"ocpus": self.ocpus, "memory-in-gbs": self.memory_gbs},
        }
        if self.pending_states:
            self.state = self.pending_states.pop(0)
        if self.pending_shape is not None:
            self.ocpus, self.memory_gbs = self.pending_shape
            self.pending_shape = None
        return snapshot


class FakeOci:
    """In-memory stand-in for the ``oci`` CLI.

    Mutating calls are recorded in ``mutations`` so tests can assert that
    converged state triggers none of them.
    """

    def __init__(self) -> None:
        self.instances: dict[str, FakeInstance] = {}
        self.calls: list[tuple[str, ...]] = []
        self.mutations: list[tuple[str, ...]] = []
        self.fail_actions: list[str] = []
        self._counter = 0

    def add_instance(
        self,
        *,
        name: str = "k3s-host",
        state: str = "RUNNING",
        ocpus: float = 1,
        memory_gbs: float = 6,
        pending_states: list[str] | None = None,
        public_ip: str | None = "203.0.113.10",
    ) -> FakeInstance:
        self._counter += 1
        instance = FakeInstance(
            instance_id=f"ocid1.instance.oc1..{self._counter:04d}",
            name=name,
            state=state,
            ocpus=ocpus,
            memory_gbs=memory_gbs,
            public_ip=public_ip,
            pending_states=list(pending_states or []),
        )
        self.instances[instance.instance_id] = instance
        return instance

    def only_instance(self) -> FakeInstance:
        (instance,) = self.instances.values()
        return instance

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if call[: len(prefix)] == prefix)

    @staticmethod
    def _option(args: tuple[str, ...], name: str) -> str:
        return args[args.index(name) + 1]

    def _not_found(self) -> Exception:
        from oci_k3s._errors import CommandError

        return CommandError(
            "oci",
            '{"code": "NotAuthorizedOrNotFound", "message": "not found", "status": 404}',
            return_code=1,
        )

    def __call__(self, command: str, *args: str, context: object = None) -> str:
        assert command == "oci"
        self.calls.append(args)
        if args[:3] == ("compute", "instance", "list"):
            name = self._option(args, "--display-name")
            matches = [inst.read() for inst in self.instances.values() if inst.name == name]
            return json.dumps({"data": matches}) if matches else ""
        if args[:3] == ("compute", "instance", "get"):
            instance = self.instances.get(self._option(args, "--instance-id"))
            if instance is None:
                raise self._not_found()
            return json.dumps({"data": instance.read()})
        if args[:3] == ("compute", "instance", "list-vnics"):
            instance = self.instances[self._option(args, "--instance-id")]
            return json.dumps({"data": [{"public-ip": instance.public_ip}]})
        if args[:3] == ("compute", "instance", "action"):
            return self._action(self._option(args, "--instance-id"), self._option(args, "--action"))
        if args[:3] == ("compute", "instance", "update"):
            instance_id = self._option(args, "--instance-id")
            shape = json.loads(self._option(args, "--shape-config"))
            self.mutations.append(("update", instance_id))
            self.instances[instance_id].pending_shape = (shape["ocpus"], shape["memoryInGBs"])
            return json.dumps({"data": {"id": instance_id}})
        if args[:3] == ("iam", "compartment", "list"):
            return json.dumps({"data": [{"compartment-id": "ocid1.compartment.oc1..fake"}]})
        raise AssertionError(f"unexpected oci call: {args}")

    def _action(self, instance_id: str, action: str) -> str:
        from oci_k3s._errors import CommandError

        self.mutations.append(("action", instance_id, action))
        if self.fail_actions:
            raise CommandError("oci", self.fail_actions.pop(0), return_code=1)
        instance = self.instances[instance_id]
        if action == "STOP":
            instance.state = "STOPPING"
            instance.pending_states = ["STOPPED"]
        elif action == "START":
            instance.state = "STARTING"
            instance.pending_states = ["RUNNING"]
        return json.dumps({"data": {"id": instance_id}})


@dataclass
class FakeRemote:
    """Scripted ssh/scp host running (or not running) k3s."""

    reachable: bool = True
    installed: bool = False
    healthy: bool = False
    password: str | None = None
    install_password: str | None = "argo-admin-pass"
    install_fails: bool = False
    kubeconfig: str = (
        "apiVersion: v1\n"
        "clusters:\n"
        "- cluster:\n"
        "    server: https://127.0.0.1:6443\n"
        "  name: default\n"
        "kind: Config\n"
    )
    commands: list[str] = field(default_factory=list)
    copies: list[tuple[str, ...]] = field(default_factory=list)

    @property
    def installs(self) -> int:
        return sum(1 for command in self.commands if command.startswith("chmod +x"))

    def __call__(self, command: str, *args: str, context: object = None) -> str:
        from oci_k3s._errors import CommandError

        if not self.reachable:
            raise CommandError(command, "ssh: connect to host: Connection refused", return_code=255)
        if command == "scp":
            self.copies.append(args)
            return ""
        assert command == "ssh"
        remote = args[-1]
        self.commands.append(remote)
        if remote == "true":
            return ""
        if remote.startswith("command -v k3s"):
            if not self.installed:
                raise CommandError("ssh", "", return_code=1)
            return ""
        if remote.startswith("sudo k3s kubectl get nodes"):
            if not self.installed:
                raise CommandError("ssh", "sudo: k3s: command not found", return_code=1)
            status = "True" if self.healthy else "False"
            nodes = {"items": [{"status": {"conditions": [{"type": "Ready", "status": status}]}}]}
            return json.dumps(nodes)
        if "argocd-initial-admin-secret" in remote:
            if not self.password:
                raise CommandError("ssh", 'secrets "argocd-initial-admin-secret" not found', return_code=1)
            return base64.b64encode(self.password.encode()).decode()
        if remote.startswith("chmod +x"):
            if self.install_fails:
                raise CommandError("ssh", "helm: install failed", return_code=2)
            self.installed = True
            self.healthy = True
            self.password = self.install_password
            return "done"
        if remote == "sudo cat /etc/rancher/k3s/k3s.yaml":
            return self.kubeconfig
        raise AssertionError(f"unexpected remote command: {remote}")


@dataclass
class FakeTerraform:
    """Terraform stand-in that creates instances in :class:`FakeOci`."""

    oci: FakeOci
    failures: list[str] = field(default_factory=list)
    applies: int = 0
    destroys: int = 0
    inits: int = 0
    initialised: bool = False
    created_state: str = "PROVISIONING"

    def needs_init(self, cwd: Path) -> bool:
        return not self.initialised

    def init(self, cwd: Path):
        from oci_k3s._terraform import TerraformResult

        self.inits += 1
        self.initialised = True
        return TerraformResult(success=True, stdout="Terraform has been successfully initialized!", stderr="", return_code=0)

    def apply(self, cwd: Path, *, auto_approve: bool = True):
        from oci_k3s._terraform import TerraformResult

        self.applies += 1
        if self.failures:
            return TerraformResult(success=False, stdout="", stderr=self.failures.pop(0), return_code=1)
        self.oci.add_instance(state=self.created_state, pending_states=["RUNNING"])
        return TerraformResult(success=True, stdout="Apply complete! Resources: 1 added.", stderr="", return_code=0)

    def destroy(self, cwd: Path, *, auto_approve: bool = True):
        from oci_k3s._terraform import TerraformResult

        self.destroys += 1
        return TerraformResult(success=True, stdout="Destroy complete!", stderr="", return_code=0)


@pytest.fixture
def fake_oci(monkeypatch: pytest.MonkeyPatch) -> FakeOci:
    fake = FakeOci()
    monkeypatch.setattr("oci_k3s._oci.run_command", fake)
    return fake


@pytest.fixture
def fake_remote(monkeypatch: pytest.MonkeyPatch) -> FakeRemote:
    fake = FakeRemote()
    monkeypatch.setattr("oci_k3s._ssh.run_command", fake)
    return fake


@pytest.fixture
def fake_terraform(monkeypatch: pytest.MonkeyPatch, fake_oci: FakeOci) -> FakeTerraform:
    fake = FakeTerraform(oci=fake_oci)
    monkeypatch.setattr("oci_k3s._deploy.needs_init", fake.needs_init)
    monkeypatch.setattr("oci_k3s._deploy.terraform_init", fake.init)
    monkeypatch.setattr("oci_k3s._deploy.terraform_apply", fake.apply)
    monkeypatch.setattr("oci_k3s._deploy.terraform_destroy", fake.destroy)
    return fake
