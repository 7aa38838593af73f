"""Cluster topology and provisioning settings.

Topology is loaded from a YAML file (or from the flat stack-config keys
``ssh_user``, ``master_mac_name``, ``master_mac_ip`` and ``worker_nodes``)
and validated once; the resulting ``ClusterSpec`` is immutable.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..errors import ConfigurationError

logger = logging.getLogger("clusterboot.topology")

HOST_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"


class HostSpec(BaseModel):
    """A host reachable over SSH."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(pattern=HOST_NAME_PATTERN, description="Logical host name")
    address: str = Field(min_length=1, description="IP or DNS name used to connect")


class WorkerSpec(HostSpec):
    """A host that will run a worker node."""


class ProvisioningSettings(BaseModel):
    """Per-topology tuning of the VM runtime, k3s and readiness polling."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    brew_bin_path: str = "/opt/homebrew/bin"
    vm_type: str = "vz"
    image_location: str = (
        "https://cloud-images.ubuntu.com/releases/24.04/release/ubuntu-24.04-server-cloudimg-arm64.img"
    )
    image_arch: str = "aarch64"
    master_vm_name: str = Field(default="k3s-master", pattern=HOST_NAME_PATTERN)
    clear_image_cache: bool = True

    install_url: str = "https://get.k3s.io"
    api_port: int = Field(default=6443, gt=0, lt=65536)
    flannel_backend: str = "wireguard-native"

    ssh_port: int = Field(default=22, gt=0, lt=65536)
    master_timeout: float = Field(default=1800, gt=0, description="Seconds (30m)")
    worker_timeout: float = Field(default=1500, gt=0, description="Seconds (25m)")
    step_timeout: float = Field(default=900, gt=0, description="Upper bound for one remote command")

    vm_boot_interval: float = Field(default=8, ge=0)
    vm_boot_attempts: int = Field(default=25, ge=1)
    secrets_interval: float = Field(default=2, ge=0)
    secrets_attempts: int = Field(default=90, ge=1)
    join_interval: float = Field(default=5, ge=0)
    join_attempts: int = Field(default=60, ge=1)

    max_parallel_workers: int = Field(default=10, ge=1)


class ClusterSpec(BaseModel):
    """SSH principal, master host and ordered worker hosts."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(default="k3s", pattern=HOST_NAME_PATTERN)
    ssh_user: str = Field(min_length=1)
    master: HostSpec
    workers: Tuple[WorkerSpec, ...] = ()
    settings: ProvisioningSettings = Field(default_factory=ProvisioningSettings)

    @model_validator(mode="after")
    def check_unique_names(self) -> "ClusterSpec":
        # Names derive credential keys (uppercased) and VM names (lowercased)
        seen: Dict[str, str] = {self.master.name.lower(): self.master.name}
        for worker in self.workers:
            key = worker.name.lower()
            if key in seen:
                raise ValueError(f"Duplicate host name '{worker.name}' (clashes with '{seen[key]}')")
            seen[key] = worker.name
        return self

    @property
    def hosts(self) -> List[HostSpec]:
        return [self.master, *self.workers]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClusterSpec":
        """Validate a plain mapping into a ClusterSpec.

        Raises:
            ConfigurationError: If the mapping is not a valid topology
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError("Topology must be a mapping")
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid cluster topology:\n{e}") from e

    @classmethod
    def from_stack_config(cls, config: Mapping[str, Any]) -> "ClusterSpec":
        """Build a ClusterSpec from flat stack-config keys.

        ``worker_nodes`` is a JSON string holding a list of ``{name, ip}`` objects.
        """
        missing = [k for k in ("ssh_user", "master_mac_name", "master_mac_ip", "worker_nodes") if k not in config]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

        raw_workers = config["worker_nodes"]
        if isinstance(raw_workers, str):
            try:
                raw_workers = json.loads(raw_workers)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Failed to unmarshal worker_nodes config: {e}") from e
        if not isinstance(raw_workers, list) or not all(isinstance(w, dict) for w in raw_workers):
            raise ConfigurationError("worker_nodes must be a list of {name, ip} objects")

        try:
            workers = [{"name": w["name"], "address": w["ip"]} for w in raw_workers]
        except KeyError as e:
            raise ConfigurationError(f"worker_nodes entry is missing {e}") from e

        data: Dict[str, Any] = {
            "ssh_user": config["ssh_user"],
            "master": {"name": config["master_mac_name"], "address": config["master_mac_ip"]},
            "workers": workers,
        }
        for optional in ("name", "settings"):
            if optional in config:
                data[optional] = config[optional]
        return cls.from_mapping(data)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ClusterSpec":
        """Load a topology YAML file.

        Files using the flat stack-config keys are accepted as well.
        """
        path = Path(path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Topology file not found: {path}")
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        logger.debug(f"Loaded topology from {path}")
        if isinstance(data, Mapping) and "master_mac_name" in data:
            return cls.from_stack_config(data)
        return cls.from_mapping(data)
