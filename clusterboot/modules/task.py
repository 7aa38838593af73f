"""Provisioning tasks: one host's idempotent create and delete lifecycle.

A task runs its create steps in order. Script steps must exit 0; probe steps
poll a remote check through a ReadinessProbe. The stdout of the final script
step is the task's structured output and is handed to the task's decoder.
"""
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

from ..errors import (
    ClusterbootError,
    CommandTimeout,
    RemoteExecutionError,
    TaskCancelled,
    TaskStateError,
)
from .models import TaskState
from .readiness import ProbeResult, ReadinessCheck, ReadinessProbe
from .ssh import CommandResult, Connection, RemoteExecutor

logger = logging.getLogger("clusterboot.task")

# limactl wording for an instance that is already gone
NOT_FOUND_PATTERN = re.compile(r'\binstance "?[A-Za-z0-9][A-Za-z0-9_.-]*"? does not exist', re.IGNORECASE)


@dataclass(frozen=True)
class ScriptStep:
    """A remote script that must exit 0."""
    name: str
    script: str
    timeout: Optional[float] = None


@dataclass(frozen=True)
class ProbeStep:
    """A bounded wait for a remote condition."""
    check: ReadinessCheck
    command_timeout: float = 60

    @property
    def name(self) -> str:
        return self.check.name


Step = Union[ScriptStep, ProbeStep]
StepFactory = Callable[[Mapping[str, Any]], Sequence[Step]]


class ProvisioningTask:
    """One host's lifecycle action.

    Args:
        name: Task name, unique within an orchestration
        connection: Host, principal and credential the scripts run with
        create: Step factory called with the outputs of ``upstream`` keyed by task name
        delete_script: Idempotent teardown script
        timeout: Seconds the whole create flow may take
        decode: Parses the final step's stdout into the task's typed output
        executor: RemoteExecutor used for every remote call
        upstream: Tasks that must have succeeded before this one runs
    """

    def __init__(
        self,
        name: str,
        connection: Connection,
        create: StepFactory,
        delete_script: str,
        timeout: float,
        decode: Callable[[str], Any],
        executor: RemoteExecutor,
        upstream: Sequence["ProvisioningTask"] = (),
        delete_timeout: float = 300,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.name = name
        self.connection = connection
        self.create = create
        self.delete_script = delete_script
        self.timeout = timeout
        self.decode = decode
        self.executor = executor
        self.upstream = list(upstream)
        self.delete_timeout = delete_timeout
        self.cancel_event = cancel_event
        self.clock = clock
        self.sleep = sleep

        self.state = TaskState.PENDING
        self.output: Any = None
        self.error: Optional[Exception] = None
        self.teardown_error: Optional[Exception] = None
        self.probe_results: Dict[str, ProbeResult] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ProvisioningTask(name={self.name!r}, host={self.host!r}, state={self.state.value})"

    @property
    def host(self) -> str:
        return self.connection.host

    def describe(self) -> Dict[str, Any]:
        return {
            'task': self.name,
            'host': self.host,
            'address': self.connection.address,
            'user': self.connection.principal,
            'timeout': self.timeout,
            'depends_on': [t.name for t in self.upstream],
            'state': self.state.value,
        }

    # ------------------ create ------------------

    def run(self) -> Any:
        """Run the create steps and decode the task output.

        Returns:
            The decoded output (e.g. a SecretBundle or NodeDescriptor)

        Raises:
            TaskStateError: If an upstream task has not succeeded or the task is busy
            ClusterbootError: Any failure of the create flow; it is also kept on ``self.error``
        """
        with self._lock:
            if self.state in (TaskState.RUNNING, TaskState.DESTROYING):
                raise TaskStateError(f"Task {self.name} is {self.state.value}")
            not_ready = [t.name for t in self.upstream if t.state != TaskState.SUCCEEDED]
            if not_ready:
                raise TaskStateError(
                    f"Task {self.name} requires succeeded upstream task(s): {', '.join(not_ready)}"
                )
            inputs = {t.name: t.output for t in self.upstream}
            self.state = TaskState.RUNNING
            self.output = None
            self.error = None
            self.probe_results = {}

        logger.info(f"🚀 [{self.host}] Starting {self.name} ({self.connection.address})")
        start = self.clock()
        deadline = start + self.timeout

        try:
            steps = list(self.create(inputs))
            if not steps or not isinstance(steps[-1], ScriptStep):
                raise TaskStateError(f"Task {self.name} must end with a script step that emits its output")

            result: Optional[CommandResult] = None
            for step in steps:
                self._raise_if_cancelled()
                if isinstance(step, ProbeStep):
                    self._run_probe(step, deadline)
                else:
                    result = self._run_script(step, deadline)

            output = self.decode(result.stdout)
        except Exception as e:
            with self._lock:
                self.state = TaskState.FAILED
                self.error = e
            logger.error(f"❌ [{self.host}] {self.name} failed after {self.clock() - start:.1f}s: {e}")
            raise

        with self._lock:
            self.state = TaskState.SUCCEEDED
            self.output = output
        logger.info(f"✅ [{self.host}] {self.name} succeeded in {self.clock() - start:.1f}s")
        return output

    def _remaining(self, deadline: float, what: str) -> float:
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise CommandTimeout(
                self.host, self.timeout,
                f"Task {self.name} exceeded its {self.timeout:.0f}s timeout before {what}"
            )
        return remaining

    def _run_script(self, step: ScriptStep, deadline: float) -> CommandResult:
        remaining = self._remaining(deadline, f"step '{step.name}'")
        timeout = min(remaining, step.timeout) if step.timeout else remaining

        logger.info(f"🔧 [{self.host}] {step.name}")
        result = self.executor.execute(self.connection, step.script, timeout)
        for line in result.stderr.splitlines():
            logger.debug(f"[{self.host}] {line}")

        if not result.ok:
            raise RemoteExecutionError(self.host, result.exit_code, result.stderr, step.name)
        return result

    def _run_probe(self, step: ProbeStep, deadline: float) -> None:
        probe = ReadinessProbe.for_check(
            step.check, clock=self.clock, sleep=self.sleep, cancel_event=self.cancel_event
        )

        def check() -> bool:
            timeout = min(self._remaining(deadline, f"check '{step.name}'"), step.command_timeout)
            try:
                return self.executor.execute(self.connection, step.check.command, timeout).ok
            except CommandTimeout:
                logger.debug(f"[{self.host}] check '{step.name}' timed out after {timeout:.1f}s")
                return False

        self.probe_results[step.name] = probe.wait(check, name=step.name, deadline=deadline)

    def _raise_if_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise TaskCancelled(f"Task {self.name} was cancelled")

    # ------------------ teardown ------------------

    def teardown(self) -> None:
        """Run the delete script. A resource that does not exist counts as deleted.

        A failed teardown leaves the task FAILED so it can be run or torn down again.

        Raises:
            ClusterbootError: If the delete script could not run or failed for another reason
        """
        with self._lock:
            self.state = TaskState.DESTROYING
            self.teardown_error = None

        logger.info(f"🗑️ [{self.host}] Tearing down {self.name}")
        try:
            result = self.executor.execute(self.connection, self.delete_script, self.delete_timeout)
            if not result.ok:
                if not is_not_found(result.stderr):
                    raise RemoteExecutionError(self.host, result.exit_code, result.stderr, "teardown")
                logger.info(f"🔍 [{self.host}] Nothing to delete for {self.name}")
        except ClusterbootError as e:
            with self._lock:
                self.state = TaskState.FAILED
                self.teardown_error = e
            logger.warning(f"⚠️  [{self.host}] Teardown of {self.name} failed: {e}")
            raise

        with self._lock:
            self.state = TaskState.DESTROYED
            self.output = None
        logger.info(f"🧹 [{self.host}] {self.name} destroyed")


def is_not_found(stderr: str) -> bool:
    return NOT_FOUND_PATTERN.search(stderr) is not None
