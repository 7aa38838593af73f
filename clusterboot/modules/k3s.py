"""Create and delete scripts for k3s master and worker nodes running in Lima VMs."""
import shlex
from typing import List

from .lima import Limactl
from .readiness import ReadinessCheck
from .secrets import JoinInfo
from .task import ProbeStep, ScriptStep, Step
from .topology import HostSpec, ProvisioningSettings

TOKEN_PATH = "/var/lib/rancher/k3s/server/node-token"
KUBECONFIG_PATH = "/etc/rancher/k3s/k3s.yaml"


def worker_vm_name(worker: HostSpec) -> str:
    return f"k3s-{worker.name.lower()}"


def vm_boot_check(limactl: Limactl, vm: str, settings: ProvisioningSettings) -> ReadinessCheck:
    return ReadinessCheck(
        name=f"VM {vm}",
        command=f"{limactl.limactl} shell {shlex.quote(vm)} echo ready",
        interval=settings.vm_boot_interval,
        max_attempts=settings.vm_boot_attempts,
    )


def master_steps(settings: ProvisioningSettings, master: HostSpec) -> List[Step]:
    """Steps that (re)create the master VM, install k3s server and emit its secrets.

    The final step prints ``{"ip", "token", "kubeconfig"}`` as one JSON object.
    The kubeconfig points at the master address instead of 127.0.0.1.
    """
    limactl = Limactl(settings)
    vm = settings.master_vm_name
    ip = shlex.quote(master.address)

    install = (
        f"curl -sfL {shlex.quote(settings.install_url)} | sh -s - server "
        f"--tls-san {ip} --flannel-backend={shlex.quote(settings.flannel_backend)} "
        "> /tmp/k3s-install.log 2>&1 || { cat /tmp/k3s-install.log >&2; exit 1; }"
    )
    secrets_ready = ReadinessCheck(
        name=f"k3s secrets on {vm}",
        command=limactl.shell(vm, f"sudo test -f {TOKEN_PATH} && sudo test -f {KUBECONFIG_PATH}"),
        interval=settings.secrets_interval,
        max_attempts=settings.secrets_attempts,
    )
    escaped_loopback = r"127\.0\.0\.1"
    extract = "\n".join([
        "set -e",
        'echo "Extracting k3s join token and kubeconfig..." >&2',
        f"TOKEN=$({limactl.shell(vm, f'sudo cat {TOKEN_PATH}')})",
        f"KUBECONFIG=$({limactl.shell(vm, f'sudo cat {KUBECONFIG_PATH}')} "
        f"| sed {shlex.quote(f's/{escaped_loopback}/{master.address}/g')})",
        f"{limactl.jq} -n --arg ip {ip} --arg token \"$TOKEN\" --arg kubeconfig \"$KUBECONFIG\" "
        "'{ip: $ip, token: $token, kubeconfig: $kubeconfig}'",
    ])

    return [
        ScriptStep("launch-vm", limactl.recreate(vm, "master", forward_api_port=True)),
        ProbeStep(vm_boot_check(limactl, vm, settings)),
        ScriptStep("install-k3s-server", limactl.shell(vm, install)),
        ProbeStep(secrets_ready),
        ScriptStep("extract-secrets", extract),
    ]


def worker_steps(settings: ProvisioningSettings, worker: HostSpec, join: JoinInfo) -> List[Step]:
    """Steps that (re)create a worker VM, join it to the master and emit ``{"ip"}``."""
    limactl = Limactl(settings)
    vm = worker_vm_name(worker)
    server_url = f"https://{join.ip}:{settings.api_port}"

    join_script = (
        f"curl -sfL {shlex.quote(settings.install_url)} | "
        f"K3S_URL={shlex.quote(server_url)} K3S_TOKEN={shlex.quote(join.token.get_secret_value())} sh -s - "
        "> /tmp/k3s-join.log 2>&1 || { cat /tmp/k3s-join.log >&2; exit 1; }"
    )
    agent_ready = ReadinessCheck(
        name=f"k3s agent on {vm}",
        command=limactl.shell(vm, "sudo systemctl is-active --quiet k3s-agent"),
        interval=settings.join_interval,
        max_attempts=settings.join_attempts,
    )
    report = "\n".join([
        "set -e",
        f"INTERNAL_IP=$({limactl.address(vm)})",
        f"{limactl.jq} -n --arg ip \"$INTERNAL_IP\" '{{ip: $ip}}'",
    ])

    return [
        ScriptStep("launch-vm", limactl.recreate(vm, "worker")),
        ProbeStep(vm_boot_check(limactl, vm, settings)),
        ScriptStep("join-cluster", limactl.shell(vm, join_script)),
        ProbeStep(agent_ready),
        ScriptStep("report-address", report),
    ]


def master_delete_script(settings: ProvisioningSettings) -> str:
    return Limactl(settings).guarded_delete(settings.master_vm_name)


def worker_delete_script(settings: ProvisioningSettings, worker: HostSpec) -> str:
    return Limactl(settings).guarded_delete(worker_vm_name(worker))
