"""Cluster provisioning orchestration.

The master task runs first and alone. Once it has produced its secret
bundle, every worker task runs concurrently; worker failures are collected
rather than aborting the run. Teardown runs in reverse dependency order:
workers (concurrently) before the master.
"""
import functools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..errors import ClusterbootError, ConfigurationError
from .k3s import master_delete_script, master_steps, worker_delete_script, worker_steps
from .models import ClusterState, TaskFailure, TeardownReport
from .secrets import (
    Credential,
    EnvSecretProvider,
    NodeDescriptor,
    SecretBundle,
    SecretProvider,
    decode_master_output,
    decode_worker_output,
)
from .ssh import Connection, RemoteExecutor, SSHExecutor
from .task import ProvisioningTask
from .topology import ClusterSpec, HostSpec

logger = logging.getLogger("clusterboot.orchestrator")

MASTER_TASK = "provision-master-node"


def worker_task_name(worker: HostSpec) -> str:
    return f"provision-worker-{worker.name}"


class ClusterOrchestrator:
    """Builds the master and worker tasks for a topology and drives them.

    Args:
        spec: Cluster topology
        executor: RemoteExecutor for every remote call (paramiko SSH by default)
        secret_provider: Resolves each host's private key (environment by default)
    """

    def __init__(
        self,
        spec: ClusterSpec,
        executor: Optional[RemoteExecutor] = None,
        secret_provider: Optional[SecretProvider] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.spec = spec
        self.executor = executor or SSHExecutor()
        self.secret_provider = secret_provider or EnvSecretProvider()
        self.clock = clock
        self.sleep = sleep
        self.cancel_event = threading.Event()

        self.master_task: Optional[ProvisioningTask] = None
        self.worker_tasks: List[ProvisioningTask] = []
        self.state: Optional[ClusterState] = None

    def __enter__(self) -> "ClusterOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def tasks(self) -> List[ProvisioningTask]:
        return ([self.master_task] if self.master_task else []) + self.worker_tasks

    # ------------------ planning ------------------

    def resolve_credentials(self) -> Dict[str, Credential]:
        """Resolve every host's credential up front.

        Raises:
            ConfigurationError: Listing every host whose credential is missing
        """
        credentials: Dict[str, Credential] = {}
        missing: List[str] = []
        for host in self.spec.hosts:
            credential = self.secret_provider.resolve(host.name)
            if credential is None:
                missing.append(self.secret_provider.describe(host.name))
            else:
                credentials[host.name] = credential
        if missing:
            raise ConfigurationError(f"Missing credentials: {', '.join(missing)}")
        return credentials

    def plan(self) -> List[ProvisioningTask]:
        """Build the master task and one task per worker (idempotent)."""
        if self.master_task is not None:
            return self.tasks

        credentials = self.resolve_credentials()
        settings = self.spec.settings

        def connection(host: HostSpec) -> Connection:
            return Connection(
                host=host.name,
                address=host.address,
                principal=self.spec.ssh_user,
                credential=credentials[host.name],
                port=settings.ssh_port,
            )

        common: Dict[str, Any] = dict(
            executor=self.executor,
            delete_timeout=settings.step_timeout,
            cancel_event=self.cancel_event,
            clock=self.clock,
            sleep=self.sleep,
        )

        master = self.spec.master
        self.master_task = ProvisioningTask(
            name=MASTER_TASK,
            connection=connection(master),
            create=lambda inputs: master_steps(settings, master),
            delete_script=master_delete_script(settings),
            timeout=settings.master_timeout,
            decode=decode_master_output,
            **common,
        )

        self.worker_tasks = [
            ProvisioningTask(
                name=worker_task_name(worker),
                connection=connection(worker),
                create=functools.partial(self._worker_steps, worker),
                delete_script=worker_delete_script(settings, worker),
                timeout=settings.worker_timeout,
                decode=functools.partial(decode_worker_output, worker.name),
                upstream=[self.master_task],
                **common,
            )
            for worker in self.spec.workers
        ]

        logger.info(
            f"📋 Planned cluster '{self.spec.name}': master {master.name} ({master.address}) "
            f"and {len(self.worker_tasks)} worker(s)"
        )
        return self.tasks

    def _worker_steps(self, worker: HostSpec, inputs: Mapping[str, Any]):
        bundle: SecretBundle = inputs[MASTER_TASK]
        return worker_steps(self.spec.settings, worker, bundle.join_info())

    # ------------------ run ------------------

    def run(self) -> ClusterState:
        """Provision the master, then all workers in parallel.

        Returns:
            ClusterState: Master data plus the workers that joined, in topology
            order, and the failures of the workers that did not

        Raises:
            ClusterbootError: If the master task fails; no worker is attempted
        """
        self.plan()
        self.cancel_event.clear()
        self.state = None
        start = self.clock()
        logger.info(f"🚀 Provisioning cluster '{self.spec.name}'...")

        try:
            bundle: SecretBundle = self.master_task.run()
        except ClusterbootError:
            logger.error("❌ Master provisioning failed, aborting before any worker starts")
            raise

        joined, failures = self._run_workers()

        self.state = ClusterState(
            name=self.spec.name,
            master_address=bundle.ip,
            bundle=bundle,
            workers=[node for node in joined if node is not None],
            failed_workers={f.host: f for f in failures if f is not None},
        )

        duration = self.clock() - start
        if self.state.partial:
            logger.warning(
                f"⚠️  Cluster '{self.spec.name}' partially provisioned in {duration:.1f}s: "
                f"{len(self.state.workers)} worker(s) joined, "
                f"{len(self.state.failed_workers)} failed ({', '.join(self.state.failed_workers)})"
            )
        else:
            logger.info(
                f"✅ Cluster '{self.spec.name}' provisioned in {duration:.1f}s "
                f"with {len(self.state.workers)} worker(s)"
            )
        return self.state

    def _run_workers(self):
        count = len(self.worker_tasks)
        joined: List[Optional[NodeDescriptor]] = [None] * count
        failures: List[Optional[TaskFailure]] = [None] * count
        if not count:
            return joined, failures

        max_workers = min(self.spec.settings.max_parallel_workers, count)
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="worker") as pool:
            future_to_index = {
                pool.submit(task.run): index for index, task in enumerate(self.worker_tasks)
            }
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                task = self.worker_tasks[index]
                try:
                    joined[index] = future.result()
                except Exception as e:
                    if not isinstance(e, ClusterbootError):
                        logger.error(f"Unexpected error in {task.name}", exc_info=True)
                    failures[index] = TaskFailure(task=task.name, host=task.host, error=e)

        return joined, failures

    # ------------------ teardown / cancel ------------------

    def teardown(self) -> TeardownReport:
        """Tear down workers concurrently, then the master. Never raises for task errors.

        Returns:
            TeardownReport: Destroyed task names and per-task errors
        """
        self.plan()
        report = TeardownReport()
        logger.info(f"🗑️ Tearing down cluster '{self.spec.name}'...")

        if self.worker_tasks:
            max_workers = min(self.spec.settings.max_parallel_workers, len(self.worker_tasks))
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="teardown") as pool:
                future_to_task = {pool.submit(task.teardown): task for task in self.worker_tasks}
                for future in as_completed(future_to_task):
                    self._record_teardown(report, future_to_task[future], future.result)

        self._record_teardown(report, self.master_task, self.master_task.teardown)

        self.state = None
        logger.info(f"🧹 Teardown of '{self.spec.name}' finished: {report.summary()}")
        return report

    @staticmethod
    def _record_teardown(report: TeardownReport, task: ProvisioningTask, action: Callable[[], Any]) -> None:
        try:
            action()
        except Exception as e:
            report.errors[task.name] = str(e)
        else:
            report.destroyed.append(task.name)

    def cancel(self) -> None:
        """Ask the tasks of the current run to stop at their next step or probe attempt."""
        logger.warning("🛑 Cancellation requested")
        self.cancel_event.set()

    def close(self) -> None:
        self.executor.close()
