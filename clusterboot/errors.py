"""Error taxonomy for cluster provisioning."""
from typing import Optional


class ClusterbootError(Exception):
    """Base class for all provisioning errors."""


class ConfigurationError(ClusterbootError):
    """Topology or credential problem detected before any remote action."""


class RemoteConnectionError(ClusterbootError, ConnectionError):
    """The remote command channel could not reach or authenticate to a host."""

    def __init__(self, host: str, message: str):
        super().__init__(f"Cannot connect to {host}: {message}")
        self.host = host


class CommandTimeout(ClusterbootError, TimeoutError):
    """A remote command or a task deadline elapsed."""

    def __init__(self, host: str, timeout: float, message: Optional[str] = None):
        super().__init__(message or f"Command on {host} timed out after {timeout:.1f}s")
        self.host = host
        self.timeout = timeout


class ReadinessTimeout(ClusterbootError):
    """A bounded readiness poll ran out of attempts."""

    def __init__(self, check: str, attempts: int, elapsed: float):
        super().__init__(
            f"'{check}' not ready after {attempts} attempts ({elapsed:.1f}s elapsed)"
        )
        self.check = check
        self.attempts = attempts
        self.elapsed = elapsed


class DeadlineExceeded(ClusterbootError, TimeoutError):
    """A readiness poll was still waiting when its caller's deadline passed."""

    def __init__(self, check: str, attempts: int, elapsed: float):
        super().__init__(
            f"Deadline reached while waiting for '{check}' after {attempts} attempts ({elapsed:.1f}s elapsed)"
        )
        self.check = check
        self.attempts = attempts
        self.elapsed = elapsed


class RemoteExecutionError(ClusterbootError):
    """A remote script exited non-zero. ``stderr`` is kept verbatim."""

    def __init__(self, host: str, exit_code: int, stderr: str, step: Optional[str] = None):
        where = f" during '{step}'" if step else ""
        super().__init__(f"Remote command on {host} failed{where} with exit code {exit_code}:\n{stderr}")
        self.host = host
        self.exit_code = exit_code
        self.stderr = stderr
        self.step = step


class MalformedOutput(ClusterbootError):
    """A script succeeded but its stdout broke the structured output contract."""

    def __init__(self, reason: str, stdout: str):
        super().__init__(f"Malformed script output: {reason}. Raw output was: {stdout!r}")
        self.reason = reason
        self.stdout = stdout


class TaskStateError(ClusterbootError):
    """A task operation was requested in a state that does not allow it."""


class TaskCancelled(ClusterbootError):
    """The orchestration run was cancelled while the task was in progress."""
