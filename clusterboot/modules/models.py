"""Data models for cluster provisioning."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from pydantic import SecretStr

from ..logging import redact_text

from .secrets import NodeDescriptor, SecretBundle


class TaskState(str, Enum):
    """Lifecycle states of a provisioning task."""
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    DESTROYING = 'destroying'
    DESTROYED = 'destroyed'


@dataclass(frozen=True)
class TaskFailure:
    """Why a task failed, kept for reporting alongside successful results."""
    task: str
    host: str
    error: Exception

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return redact_text(str(self.error))

    def to_dict(self) -> Dict[str, str]:
        return {'task': self.task, 'host': self.host, 'error': self.kind, 'message': self.message}


@dataclass
class ClusterState:
    """Aggregated result of a provisioning run.

    ``workers`` holds only the workers that joined, in topology order.
    ``failed_workers`` is keyed by worker name, also in topology order.
    """
    name: str
    master_address: str
    bundle: SecretBundle
    workers: List[NodeDescriptor] = field(default_factory=list)
    failed_workers: Dict[str, TaskFailure] = field(default_factory=dict)

    @property
    def worker_addresses(self) -> List[str]:
        return [worker.ip for worker in self.workers]

    @property
    def kubeconfig(self) -> SecretStr:
        return self.bundle.kubeconfig

    @property
    def partial(self) -> bool:
        return bool(self.failed_workers)

    def export(self) -> Dict[str, Any]:
        """Stack outputs; the kubeconfig stays wrapped as a secret."""
        outputs: Dict[str, Any] = {
            'masterNodeIP': self.master_address,
            'workerNodeIPs': self.worker_addresses,
            'kubeconfig': self.kubeconfig,
        }
        if self.failed_workers:
            outputs['failedWorkers'] = {
                name: failure.to_dict() for name, failure in self.failed_workers.items()
            }
        return outputs


@dataclass
class TeardownReport:
    """Best-effort teardown outcome, collected after every attempt completes."""
    destroyed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        return f"DESTROYED={len(self.destroyed)} FAILED={len(self.errors)}"
