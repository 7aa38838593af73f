"""Lima VM configuration and ``limactl`` command builders."""
import shlex
from typing import Any, Dict

import yaml

from .topology import ProvisioningSettings


def render_vm_config(settings: ProvisioningSettings, forward_api_port: bool = False) -> str:
    """Render the Lima instance YAML.

    Args:
        settings: Provisioning settings (VM type, image, API port)
        forward_api_port: Forward the k3s API port from the guest to the host

    Returns:
        str: Lima instance configuration
    """
    config: Dict[str, Any] = {
        'vmType': settings.vm_type,
        'images': [
            {'location': settings.image_location, 'arch': settings.image_arch},
        ],
        'mounts': [
            {'location': '~'},
            {'location': '/tmp/lima', 'writable': True},
        ],
    }
    if forward_api_port:
        config['portForwards'] = [
            {'guestPort': settings.api_port, 'hostIP': '0.0.0.0', 'hostPort': settings.api_port},
        ]
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


class Limactl:
    """Builds shell snippets that drive ``limactl`` on a macOS host."""

    def __init__(self, settings: ProvisioningSettings):
        self.settings = settings
        self.limactl = f"{settings.brew_bin_path}/limactl"
        self.jq = f"{settings.brew_bin_path}/jq"

    @staticmethod
    def config_path(vm: str) -> str:
        return f"/tmp/{vm}.yaml"

    def delete(self, vm: str) -> str:
        return f"{self.limactl} delete -f {shlex.quote(vm)}"

    def cache_delete(self) -> str:
        return f"{self.limactl} cache delete"

    def write_config(self, vm: str, content: str) -> str:
        return f"printf '%s' {shlex.quote(content)} > {shlex.quote(self.config_path(vm))}"

    def start(self, vm: str) -> str:
        return f"{self.limactl} start --name={shlex.quote(vm)} {shlex.quote(self.config_path(vm))}"

    def shell(self, vm: str, script: str) -> str:
        """Run ``script`` with bash inside the VM."""
        return f"{self.limactl} shell {shlex.quote(vm)} -- bash -c {shlex.quote(script)}"

    def address(self, vm: str) -> str:
        return f"{self.limactl} list {shlex.quote(vm)} --json | {self.jq} -r .address"

    def recreate(self, vm: str, label: str, forward_api_port: bool = False) -> str:
        """Delete any same-named instance, then write its config and start it.

        This is the delete-before-create half of every create flow, so a
        re-run after a partial or stale create starts from a clean slate.
        """
        lines = [
            "set -e",
            f'echo "Deleting old {label} instance {vm}..." >&2',
            f"{self.delete(vm)} > /dev/null 2>&1 || true",
        ]
        if self.settings.clear_image_cache:
            lines += [
                'echo "Clearing Lima image cache..." >&2',
                f"{self.cache_delete()} > /dev/null 2>&1 || true",
            ]
        lines += [
            f'echo "Writing Lima config for {label} {vm}..." >&2',
            self.write_config(vm, render_vm_config(self.settings, forward_api_port)),
            f'echo "Starting {label} node {vm}..." >&2',
            f"{self.start(vm)} > /dev/null",
        ]
        return "\n".join(lines)

    def guarded_delete(self, vm: str) -> str:
        """Delete the instance, succeeding quietly when it does not exist.

        Only a successful listing that lacks the instance counts as absent. A
        failing ``limactl list`` (missing binary, broken daemon) fails the script
        with its own exit status.
        """
        return "\n".join([
            f"INSTANCES=$({self.limactl} list -q) || exit $?",
            f"if ! printf '%s\\n' \"$INSTANCES\" | grep -qx {shlex.quote(vm)}; then",
            f'  echo "instance {vm} does not exist" >&2',
            "  exit 0",
            "fi",
            self.delete(vm),
        ])
