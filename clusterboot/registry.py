"""Local registry of provisioned clusters.

Each cluster gets ``<state_dir>/<name>/state.json`` holding the redacted
exported outputs, plus a ``kubeconfig`` file readable only by its owner.
"""
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .config import Config
from .errors import ClusterbootError
from .modules.models import ClusterState
from .utils import redact_sensitive_data

logger = logging.getLogger("clusterboot.registry")

STATE_FILE = "state.json"
KUBECONFIG_FILE = "kubeconfig"


def registry_path(state_dir: Optional[Union[str, Path]] = None) -> Path:
    return Path(state_dir or Config.STATE_DIR).expanduser()


def cluster_dir(name: str, state_dir: Optional[Union[str, Path]] = None) -> Path:
    return registry_path(state_dir) / name


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def save_state(state: ClusterState, state_dir: Optional[Union[str, Path]] = None) -> Path:
    """Persist a provisioned cluster.

    Args:
        state: Result of a provisioning run
        state_dir: Registry root (defaults to ``Config.STATE_DIR``)

    Returns:
        Path: Directory the cluster was written to
    """
    target = cluster_dir(state.name, state_dir)
    target.mkdir(parents=True, exist_ok=True)

    kubeconfig_path = target / KUBECONFIG_FILE
    fd = os.open(kubeconfig_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(state.kubeconfig.get_secret_value())
    os.chmod(kubeconfig_path, 0o600)

    record: Dict[str, Any] = {
        "name": state.name,
        "outputs": redact_sensitive_data(state.export()),
        "kubeconfig_path": str(kubeconfig_path),
        "partial": state.partial,
        "status": {"provisioned": True, "deleted": False, "last_updated": _now()},
    }
    with open(target / STATE_FILE, "w") as f:
        json.dump(record, f, indent=2)

    logger.info(f"📝 Saved cluster state to {target}")
    return target


def load_state(name: str, state_dir: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Read the saved (redacted) record of a cluster.

    Raises:
        ClusterbootError: If the cluster is not registered or its record is unreadable
    """
    path = cluster_dir(name, state_dir) / STATE_FILE
    if not path.exists():
        raise ClusterbootError(f"No saved state for cluster '{name}' in {path.parent.parent}")
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ClusterbootError(f"Corrupt state file {path}: {e}") from e


def mark_deleted(name: str, state_dir: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Flag a cluster as deleted and remove its kubeconfig.

    Returns:
        The state file path, or None if the cluster was never saved
    """
    target = cluster_dir(name, state_dir)
    path = target / STATE_FILE
    if not path.exists():
        logger.debug(f"No saved state for {name}, nothing to mark")
        return None

    record = load_state(name, state_dir)
    record.setdefault("status", {})
    record["status"].update({"provisioned": False, "deleted": True, "last_updated": _now()})
    with open(path, "w") as f:
        json.dump(record, f, indent=2)

    kubeconfig_path = target / KUBECONFIG_FILE
    if kubeconfig_path.exists():
        kubeconfig_path.unlink()
        logger.info(f"🧹 Removed {kubeconfig_path}")
    return path
