import functools
import threading

import pytest

from clusterboot.errors import (
    CommandTimeout,
    MalformedOutput,
    ReadinessTimeout,
    RemoteExecutionError,
    TaskCancelled,
    TaskStateError,
)
from clusterboot.modules.models import TaskState
from clusterboot.modules.readiness import ReadinessCheck
from clusterboot.modules.secrets import decode_worker_output
from clusterboot.modules.ssh import CommandResult, RemoteExecutor
from clusterboot.modules.task import ProbeStep, ProvisioningTask, ScriptStep, is_not_found
from clusterboot.tests.conftest import failed, ok


class ScriptedExecutor(RemoteExecutor):
    """Answers each script from a mapping of script text to a list of results."""

    def __init__(self, responses, clock=None, cost=0):
        self.responses = {script: list(results) for script, results in responses.items()}
        self.calls = []
        self.clock = clock
        self.cost = cost

    def execute(self, connection, script, timeout):
        self.calls.append(script)
        if self.clock is not None:
            self.clock.now += self.cost
        results = self.responses[script]
        outcome = results.pop(0) if len(results) > 1 else results[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


STEPS = [
    ScriptStep("prepare", "prepare"),
    ScriptStep("report", "report"),
]


def make_task(connection, executor, clock, steps=STEPS, **kwargs):
    kwargs.setdefault("timeout", 100)
    return ProvisioningTask(
        name="provision-worker-mac2",
        connection=connection,
        create=kwargs.pop("create", lambda inputs: steps),
        delete_script="delete",
        decode=functools.partial(decode_worker_output, "mac2"),
        executor=executor,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


def test_run_decodes_final_stdout(connection, clock):
    executor = ScriptedExecutor({"prepare": [ok("noise on stdout")], "report": [ok('{"ip": "10.0.0.2"}')]})
    task = make_task(connection, executor, clock)

    node = task.run()

    assert node.ip == "10.0.0.2"
    assert task.output == node
    assert task.state == TaskState.SUCCEEDED
    assert executor.calls == ["prepare", "report"]


def test_non_zero_exit_fails_regardless_of_stdout(connection, clock):
    executor = ScriptedExecutor({
        "prepare": [ok()],
        "report": [CommandResult(stdout='{"ip": "10.0.0.2"}', stderr="limactl: boom\n", exit_code=3)],
    })
    task = make_task(connection, executor, clock)

    with pytest.raises(RemoteExecutionError) as exc:
        task.run()

    assert exc.value.exit_code == 3
    assert exc.value.stderr == "limactl: boom\n"
    assert exc.value.step == "report"
    assert task.state == TaskState.FAILED
    assert task.error is exc.value


def test_failed_step_stops_the_flow(connection, clock):
    executor = ScriptedExecutor({"prepare": [failed("no space left")], "report": [ok('{"ip": "10.0.0.2"}')]})
    task = make_task(connection, executor, clock)

    with pytest.raises(RemoteExecutionError):
        task.run()

    assert executor.calls == ["prepare"]


def test_malformed_output(connection, clock):
    executor = ScriptedExecutor({"prepare": [ok()], "report": [ok("192.168.5.15")]})
    task = make_task(connection, executor, clock)

    with pytest.raises(MalformedOutput) as exc:
        task.run()

    assert exc.value.stdout == "192.168.5.15"
    assert task.state == TaskState.FAILED


def test_upstream_must_have_succeeded(connection, clock):
    executor = ScriptedExecutor({})
    master = make_task(connection, executor, clock)
    worker = make_task(connection, executor, clock, upstream=[master])

    with pytest.raises(TaskStateError):
        worker.run()

    assert executor.calls == []
    assert worker.state == TaskState.PENDING


def test_upstream_outputs_are_passed_to_step_factory(connection, clock):
    executor = ScriptedExecutor({"prepare": [ok()], "report": [ok('{"ip": "10.0.0.2"}')]})
    upstream = make_task(connection, executor, clock)
    upstream.run()
    seen = {}

    def create(inputs):
        seen.update(inputs)
        return STEPS

    task = make_task(connection, executor, clock, upstream=[upstream], create=create)
    task.run()

    assert seen == {"provision-worker-mac2": upstream.output}


def test_probe_step_polls_until_ready(connection, clock):
    check = ReadinessCheck(name="agent", command="probe", interval=5, max_attempts=10)
    executor = ScriptedExecutor({
        "prepare": [ok()],
        "probe": [failed("inactive"), failed("inactive"), ok()],
        "report": [ok('{"ip": "10.0.0.2"}')],
    })
    task = make_task(connection, executor, clock, steps=[STEPS[0], ProbeStep(check), STEPS[1]])

    task.run()

    assert task.probe_results["agent"].attempts == 3
    assert clock.sleeps == [5, 5]


def test_probe_command_timeout_counts_as_not_ready(connection, clock):
    check = ReadinessCheck(name="vm", command="probe", interval=1, max_attempts=2)
    executor = ScriptedExecutor({
        "prepare": [ok()],
        "probe": [CommandTimeout("mac2", 60)],
        "report": [ok('{"ip": "10.0.0.2"}')],
    })
    task = make_task(connection, executor, clock, steps=[STEPS[0], ProbeStep(check), STEPS[1]])

    with pytest.raises(ReadinessTimeout) as exc:
        task.run()

    assert exc.value.attempts == 2
    assert "report" not in executor.calls


def test_task_timeout(connection, clock):
    executor = ScriptedExecutor({"prepare": [ok()], "report": [ok('{"ip": "10.0.0.2"}')]}, clock=clock, cost=60)
    task = make_task(connection, executor, clock, timeout=50)

    with pytest.raises(CommandTimeout):
        task.run()

    assert executor.calls == ["prepare"]
    assert task.state == TaskState.FAILED


def test_steps_must_end_with_a_script(connection, clock):
    check = ReadinessCheck(name="vm", command="probe", interval=1, max_attempts=1)
    task = make_task(connection, ScriptedExecutor({}), clock, steps=[ProbeStep(check)])

    with pytest.raises(TaskStateError):
        task.run()


def test_cancelled_task_runs_nothing(connection, clock):
    event = threading.Event()
    event.set()
    executor = ScriptedExecutor({})
    task = make_task(connection, executor, clock, cancel_event=event)

    with pytest.raises(TaskCancelled):
        task.run()

    assert executor.calls == []


def test_rerun_after_failure(connection, clock):
    executor = ScriptedExecutor({
        "prepare": [failed("instance k3s-mac2 is stale"), ok()],
        "report": [ok('{"ip": "10.0.0.2"}')],
    })
    task = make_task(connection, executor, clock)

    with pytest.raises(RemoteExecutionError):
        task.run()
    node = task.run()

    assert node.ip == "10.0.0.2"
    assert task.state == TaskState.SUCCEEDED
    assert task.error is None


def test_teardown(connection, clock):
    task = make_task(connection, ScriptedExecutor({"delete": [ok()]}), clock)

    task.teardown()

    assert task.state == TaskState.DESTROYED
    assert task.output is None


def test_teardown_tolerates_missing_resource(connection, clock):
    executor = ScriptedExecutor({"delete": [failed("FATA[0000] instance \"k3s-mac2\" does not exist")]})
    task = make_task(connection, executor, clock)

    task.teardown()
    task.teardown()

    assert task.state == TaskState.DESTROYED
    assert task.teardown_error is None


def test_teardown_failure_is_recorded(connection, clock):
    task = make_task(connection, ScriptedExecutor({"delete": [failed("permission denied")]}), clock)

    with pytest.raises(RemoteExecutionError):
        task.teardown()

    assert task.state == TaskState.FAILED
    assert isinstance(task.teardown_error, RemoteExecutionError)


def test_task_can_run_again_after_failed_teardown(connection, clock):
    executor = ScriptedExecutor({
        "delete": [failed("permission denied")],
        "prepare": [ok()],
        "report": [ok('{"ip": "10.0.0.2"}')],
    })
    task = make_task(connection, executor, clock)

    with pytest.raises(RemoteExecutionError):
        task.teardown()
    node = task.run()

    assert node.ip == "10.0.0.2"
    assert task.state == TaskState.SUCCEEDED


@pytest.mark.parametrize("stderr", [
    "bash: limactl: command not found",
    "bash: /opt/homebrew/bin/limactl: No such file or directory",
    "FATA[0000] failed to connect to lima daemon: not found",
    "permission denied",
    "",
])
def test_missing_binary_is_not_a_missing_instance(connection, clock, stderr):
    task = make_task(connection, ScriptedExecutor({"delete": [failed(stderr, exit_code=127)]}), clock)

    with pytest.raises(RemoteExecutionError):
        task.teardown()

    assert task.state == TaskState.FAILED


@pytest.mark.parametrize("stderr,expected", [
    ("instance k3s-mac2 does not exist", True),
    ('FATA[0000] instance "k3s-master" does not exist', True),
    ("Error: Not Found", False),
    ("bash: limactl: command not found", False),
    ("rm: /tmp/x: No such file or directory", False),
    ("permission denied", False),
    ("", False),
])
def test_is_not_found(stderr, expected):
    assert is_not_found(stderr) is expected
