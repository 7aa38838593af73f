import json
import re
import threading
from dataclasses import dataclass
from typing import Dict, List, Set

import pytest

from clusterboot.modules.secrets import Credential, StaticSecretProvider
from clusterboot.modules.ssh import CommandResult, Connection, RemoteExecutor
from clusterboot.modules.topology import ClusterSpec

TOKEN = "K10abc123::server:deadbeef"

TOPOLOGY_YAML = """
name: lab
ssh_user: admin
master:
  name: mac1
  address: 10.0.0.1
workers:
  - name: mac2
    address: 10.0.0.2
  - name: mac3
    address: 10.0.0.3
"""


def ok(stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=0)


def failed(stderr: str, exit_code: int = 1) -> CommandResult:
    return CommandResult(stdout="", stderr=stderr, exit_code=exit_code)


@dataclass(frozen=True)
class Call:
    host: str
    script: str
    timeout: float


class FakeExecutor(RemoteExecutor):
    """Plays the part of every macOS host running limactl.

    Tracks which VMs exist per host so delete-before-create and idempotent
    delete can be asserted on. ``fail_on(host, marker, outcome)`` makes every
    script containing ``marker`` on ``host`` return (or raise) ``outcome``. A
    callable outcome is called with the connection and script, outside the
    executor lock, and its result used in place of the default.
    """

    def __init__(self, token: str = TOKEN):
        self.token = token
        self.calls: List[Call] = []
        self.vms: Dict[str, Set[str]] = {}
        self.overrides: Dict[str, list] = {}
        self.closed = False
        self._lock = threading.Lock()

    def fail_on(self, host: str, marker: str, outcome) -> None:
        self.overrides.setdefault(host, []).append((marker, outcome))

    def hosts_called(self) -> Set[str]:
        return {call.host for call in self.calls}

    def scripts_for(self, host: str) -> List[str]:
        return [call.script for call in self.calls if call.host == host]

    def execute(self, connection: Connection, script: str, timeout: float) -> CommandResult:
        with self._lock:
            self.calls.append(Call(connection.host, script, timeout))
            outcome = next(
                (o for marker, o in self.overrides.get(connection.host, []) if marker in script), None
            )
            if outcome is None:
                return self._default(connection, script)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(connection, script)
        return outcome

    def _default(self, connection: Connection, script: str) -> CommandResult:
        vms = self.vms.setdefault(connection.host, set())

        if "does not exist" in script:
            vm = re.search(r"delete -f (\S+)", script).group(1)
            if vm not in vms:
                return ok(stderr=f"instance {vm} does not exist\n")
            vms.discard(vm)
            return ok()

        if "start --name=" in script:
            vm = re.search(r"start --name=(\S+)", script).group(1)
            # limactl refuses to start over an existing instance
            if vm in vms and f"delete -f {vm}" not in script:
                return failed(f"instance {vm} already exists")
            vms.add(vm)
            return ok(stderr=f"Starting {vm}...\n")

        if "--arg token" in script:
            return ok(json.dumps({
                "ip": connection.address,
                "token": self.token,
                "kubeconfig": f"apiVersion: v1\nclusters:\n- cluster:\n    server: https://{connection.address}:6443\n",
            }) + "\n")

        if "INTERNAL_IP" in script:
            return ok(json.dumps({"ip": connection.address}) + "\n")

        return ok()

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def keys():
    return {"mac1": "master-key", "mac2": "worker-key-2", "mac3": "worker-key-3"}


@pytest.fixture
def provider(keys):
    return StaticSecretProvider(keys)


@pytest.fixture
def spec():
    return ClusterSpec.from_mapping({
        "name": "lab",
        "ssh_user": "admin",
        "master": {"name": "mac1", "address": "10.0.0.1"},
        "workers": [
            {"name": "mac2", "address": "10.0.0.2"},
            {"name": "mac3", "address": "10.0.0.3"},
        ],
    })


@pytest.fixture
def topology_file(tmp_path):
    path = tmp_path / "topology.yaml"
    path.write_text(TOPOLOGY_YAML)
    return path


@pytest.fixture
def connection():
    return Connection(
        host="mac1",
        address="10.0.0.1",
        principal="admin",
        credential=Credential.from_text("mac1", "master-key"),
    )
