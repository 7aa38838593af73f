"""Bounded polling of remote readiness conditions."""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import DeadlineExceeded, ReadinessTimeout, TaskCancelled

logger = logging.getLogger("clusterboot.readiness")


@dataclass(frozen=True)
class ReadinessCheck:
    """A remote command that exits 0 once a condition holds."""
    name: str
    command: str
    interval: float
    max_attempts: int


@dataclass(frozen=True)
class ProbeResult:
    attempts: int
    elapsed: float


class ReadinessProbe:
    """Polls a boolean check at a fixed interval for at most ``max_attempts`` tries.

    The probe sleeps ``interval`` seconds after every failed attempt, so an
    exhausted probe has waited at least ``max_attempts * interval`` seconds.
    """

    def __init__(
        self,
        interval: float,
        max_attempts: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.interval = interval
        self.max_attempts = max_attempts
        self.clock = clock
        self.sleep = sleep
        self.cancel_event = cancel_event

    @classmethod
    def for_check(cls, check: ReadinessCheck, **kwargs) -> "ReadinessProbe":
        return cls(interval=check.interval, max_attempts=check.max_attempts, **kwargs)

    def wait(
        self,
        check: Callable[[], bool],
        name: str = "condition",
        deadline: Optional[float] = None,
    ) -> ProbeResult:
        """Block until ``check`` returns True.

        Args:
            check: Callable returning True once the condition holds
            name: Label used in log lines and errors
            deadline: Optional absolute time (in ``clock`` units) after which
                polling stops with DeadlineExceeded

        Returns:
            ProbeResult: Attempts used and time elapsed

        Raises:
            ReadinessTimeout: If every attempt failed
            TaskCancelled: If the cancel event was set while waiting
            DeadlineExceeded: If the deadline passed before the check succeeded
        """
        start = self.clock()
        logger.info(f"⏳ Waiting for {name} (every {self.interval:g}s, up to {self.max_attempts} attempts)")

        for attempt in range(1, self.max_attempts + 1):
            self._raise_if_cancelled(name)
            if deadline is not None and self.clock() >= deadline:
                raise DeadlineExceeded(name, attempt - 1, self.clock() - start)

            if check():
                elapsed = self.clock() - start
                logger.info(f"✅ {name} ready after {attempt} attempt(s) ({elapsed:.1f}s)")
                return ProbeResult(attempts=attempt, elapsed=elapsed)

            logger.debug(f"Still waiting for {name}... (attempt {attempt}/{self.max_attempts})")
            self._pause(name)

        elapsed = self.clock() - start
        logger.error(f"❌ Timed out waiting for {name} after {self.max_attempts} attempts")
        raise ReadinessTimeout(name, self.max_attempts, elapsed)

    def _pause(self, name: str) -> None:
        if self.cancel_event is None:
            self.sleep(self.interval)
        elif self.cancel_event.wait(self.interval):
            raise TaskCancelled(f"Cancelled while waiting for {name}")

    def _raise_if_cancelled(self, name: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise TaskCancelled(f"Cancelled while waiting for {name}")
