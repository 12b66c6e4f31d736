from __future__ import annotations

import threading
import time

import pytest

from actionflow.dsl import job, on_push, sh, uses, workflow
from actionflow.errors import CycleDetectedError, InfrastructureError
from actionflow.executor import LocalStepExecutor
from actionflow.model import (
    JobDefinition,
    JobStatus,
    RunStatus,
    StepResult,
    StepStatus,
    WorkflowDefinition,
)
from actionflow.runner import CancellationToken, RunController

from conftest import FakeExecutor, make_event


def _controller(wf, executor, tmp_path, console, event=None, **options):
    options.setdefault("retry_backoff", 0)
    return RunController(
        wf,
        event or make_event("push", "master", contents="write"),
        executor,
        work_root=tmp_path / "work",
        source=tmp_path,
        console=console,
        **options,
    )


def test_run_moves_from_pending_to_succeeded(formatter, executor, tmp_path, console):
    controller = _controller(formatter, executor, tmp_path, console)
    assert controller.run.status == RunStatus.PENDING
    assert all(j.status == JobStatus.PENDING for j in controller.run.jobs.values())

    run = controller.execute()
    assert run.status == RunStatus.SUCCEEDED
    assert run.done
    assert run.finished_at is not None

    with pytest.raises(RuntimeError, match="already"):
        controller.execute()


def test_steps_run_in_declared_order(formatter, executor, tmp_path, console):
    _controller(formatter, executor, tmp_path, console).execute()
    assert executor.calls_for("format") == [
        "actions/checkout@v2",
        "actions-rs/toolchain@v1",
        "Automatically apply lint suggestions",
        "Format check packages",
        "Commit changes",
    ]
    assert executor.calls_for("check") == [
        "actions/checkout@v2",
        "actions-rs/toolchain@v1",
        "Run clippy check on workspace",
        "Format all packages",
    ]


def test_fail_fast_stops_invoking_later_steps(formatter, tmp_path, console):
    executor = FakeExecutor(fail={("format", "Automatically apply lint suggestions")})
    run = _controller(formatter, executor, tmp_path, console).execute()

    # step 3 failed: the executor was called exactly 3 times for that job
    assert len(executor.calls_for("format")) == 3
    steps = run.jobs["format"].steps
    assert [s.status for s in steps] == [
        StepStatus.SUCCEEDED,
        StepStatus.SUCCEEDED,
        StepStatus.FAILED,
        StepStatus.SKIPPED,
        StepStatus.SKIPPED,
    ]
    assert steps[2].output == "error: lint failed"
    assert steps[2].error_kind == "step_failure"
    assert run.jobs["format"].first_failure is steps[2]


def test_failing_job_does_not_stop_its_sibling(formatter, tmp_path, console):
    executor = FakeExecutor(fail={("format", "Format check packages")})
    run = _controller(formatter, executor, tmp_path, console).execute()

    assert run.jobs["format"].status == JobStatus.FAILED
    assert run.jobs["check"].status == JobStatus.SUCCEEDED
    assert len(executor.calls_for("check")) == 4
    assert run.status == RunStatus.FAILED
    assert run.first_failure[0].name == "format"


def test_commit_step_needs_contents_write(formatter, executor, tmp_path, console):
    event = make_event("push", "master", contents="read")
    run = _controller(formatter, executor, tmp_path, console, event=event).execute()

    commit = run.jobs["format"].steps[4]
    assert commit.status == StepStatus.SKIPPED
    assert commit.error_kind == "permission_denied"
    assert "Commit changes" not in executor.calls_for("format")
    # advisory by default: the job still succeeds
    assert run.jobs["format"].status == JobStatus.SUCCEEDED
    assert run.status == RunStatus.SUCCEEDED


def test_missing_grant_fails_job_under_fail_policy(formatter, executor, tmp_path, console):
    event = make_event("push", "master")
    run = _controller(formatter, executor, tmp_path, console, event=event, permission_policy="fail").execute()

    assert run.jobs["format"].steps[4].status == StepStatus.FAILED
    assert run.jobs["format"].status == JobStatus.FAILED
    assert run.status == RunStatus.FAILED


def test_unknown_permission_policy_is_rejected(formatter, executor, tmp_path, console):
    with pytest.raises(ValueError, match="permission_policy"):
        _controller(formatter, executor, tmp_path, console, permission_policy="maybe")


def test_workflow_permissions_cap_event_grants(executor, tmp_path, console):
    wf = workflow(
        "capped",
        job("a", uses("stefanzweifel/git-auto-commit-action@v4", "Commit")),
        on=[on_push()],
        permissions={"contents": "read"},
    )
    run = _controller(wf, executor, tmp_path, console).execute()
    assert run.permissions == {"contents": "read"}
    assert run.jobs["a"].steps[0].status == StepStatus.SKIPPED


def test_each_job_gets_its_own_environment(formatter, tmp_path, console):
    seen = {}
    lock = threading.Lock()

    class Recorder(FakeExecutor):
        def execute(self, step, environment):
            with lock:
                seen.setdefault(environment.job, set()).add(environment.workspace)
            return super().execute(step, environment)

    run = _controller(formatter, Recorder(), tmp_path, console).execute()
    assert run.status == RunStatus.SUCCEEDED
    assert len(seen["format"]) == 1 and len(seen["check"]) == 1
    assert seen["format"] != seen["check"]
    (workspace,) = seen["format"]
    assert workspace.parent.name == run.id


def test_environment_propagates_between_steps(tmp_path, console):
    class EnvExecutor:
        def __init__(self):
            self.seen = []

        def execute(self, step, environment):
            self.seen.append((environment.job, environment.env.get("TOOLCHAIN")))
            if step.display_name == "setup":
                return StepResult(status=StepStatus.SUCCEEDED, environment=environment.with_env(TOOLCHAIN="stable"))
            return StepResult(status=StepStatus.SUCCEEDED)

    wf = workflow(
        "env",
        job("a", sh("setup", "true"), sh("use", "true")),
        job("b", sh("use", "true")),
        on=[on_push()],
    )
    executor = EnvExecutor()
    _controller(wf, executor, tmp_path, console).execute()
    assert ("a", "stable") in executor.seen
    assert ("b", None) in executor.seen


def test_dependent_job_is_skipped_when_dependency_fails(tmp_path, console):
    wf = workflow(
        "chain",
        job("build", sh("compile", "make")),
        job("test", sh("pytest", "pytest"), needs=["build"]),
        job("lint", sh("ruff", "ruff")),
        on=[on_push()],
    )
    executor = FakeExecutor(fail={"compile"})
    run = _controller(wf, executor, tmp_path, console).execute()

    assert run.jobs["build"].status == JobStatus.FAILED
    assert run.jobs["test"].status == JobStatus.SKIPPED
    assert run.jobs["lint"].status == JobStatus.SUCCEEDED
    assert executor.calls_for("test") == []
    assert run.status == RunStatus.FAILED


def test_batches_wait_for_dependencies(tmp_path, console):
    wf = workflow(
        "chain",
        job("first", sh("one", "true")),
        job("second", sh("two", "true"), needs=["first"]),
        on=[on_push()],
    )
    executor = FakeExecutor()
    _controller(wf, executor, tmp_path, console).execute()
    assert executor.calls == [("first", "one"), ("second", "two")]


def test_cancellation_is_checked_between_batches(tmp_path, console):
    token = CancellationToken()

    class CancellingExecutor(FakeExecutor):
        def execute(self, step, environment):
            token.cancel("newer run")
            return super().execute(step, environment)

    wf = workflow(
        "chain",
        job("first", sh("one", "true"), sh("two", "true")),
        job("second", sh("three", "true"), needs=["first"]),
        on=[on_push()],
    )
    executor = CancellingExecutor()
    run = _controller(wf, executor, tmp_path, console, token=token).execute()

    # the running batch finishes; the next one never starts
    assert run.jobs["first"].status == JobStatus.SUCCEEDED
    assert executor.calls_for("first") == ["one", "two"]
    assert run.jobs["second"].status == JobStatus.CANCELLED
    assert run.jobs["second"].reason == "newer run"
    assert run.status == RunStatus.CANCELLED


def test_executor_timeout_fails_the_step(tmp_path, console):
    release = threading.Event()

    class SlowExecutor:
        def execute(self, step, environment):
            release.wait(5)
            return StepResult(status=StepStatus.SUCCEEDED)

    wf = workflow("slow", job("a", sh("hang", "sleep 60"), sh("after", "true")), on=[on_push()])
    try:
        run = _controller(wf, SlowExecutor(), tmp_path, console, step_timeout=0.1).execute()
    finally:
        release.set()

    step = run.jobs["a"].steps[0]
    assert step.status == StepStatus.FAILED
    assert step.error_kind == "timeout"
    assert run.jobs["a"].steps[1].status == StepStatus.SKIPPED
    assert run.status == RunStatus.FAILED


def test_run_timeout_stops_the_command(tmp_path, console):
    wf = workflow("slow", job("a", sh("hang", "sleep 1 && touch marker")), on=[on_push()])
    run = _controller(wf, LocalStepExecutor(), tmp_path, console, step_timeout=0.3).execute()

    step = run.jobs["a"].steps[0]
    assert step.status == StepStatus.FAILED
    assert step.error_kind == "timeout"

    # the command would have touched the marker after one second
    time.sleep(1.5)
    assert not (tmp_path / "work" / run.id / "a" / "marker").exists()


class FlakyExecutor(FakeExecutor):
    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    def execute(self, step, environment):
        self.calls.append((environment.job, step.display_name))
        if self.failures:
            self.failures -= 1
            raise InfrastructureError("runner lost")
        return StepResult(status=StepStatus.SUCCEEDED)


def test_transient_errors_are_retried(tmp_path, console):
    wf = workflow("flaky", job("a", sh("fetch", "true")), on=[on_push()])
    run = _controller(wf, FlakyExecutor(failures=2), tmp_path, console, retries=2).execute()

    step = run.jobs["a"].steps[0]
    assert step.status == StepStatus.SUCCEEDED
    assert step.attempts == 3


def test_retries_are_bounded(tmp_path, console):
    wf = workflow("flaky", job("a", sh("fetch", "true")), on=[on_push()])
    executor = FlakyExecutor(failures=5)
    run = _controller(wf, executor, tmp_path, console, retries=1).execute()

    step = run.jobs["a"].steps[0]
    assert step.status == StepStatus.FAILED
    assert step.error_kind == "infrastructure"
    assert step.attempts == 2
    assert len(executor.calls) == 2


def test_unexpected_executor_error_is_contained_to_its_job(tmp_path, console):
    class BrokenExecutor(FakeExecutor):
        def execute(self, step, environment):
            if environment.job == "a":
                raise KeyError("boom")
            return super().execute(step, environment)

    wf = workflow("broken", job("a", sh("x", "true"), sh("y", "true")), job("b", sh("z", "true")), on=[on_push()])
    run = _controller(wf, BrokenExecutor(), tmp_path, console).execute()

    assert run.jobs["a"].status == JobStatus.FAILED
    assert [s.status for s in run.jobs["a"].steps] == [StepStatus.FAILED, StepStatus.SKIPPED]
    assert run.jobs["b"].status == JobStatus.SUCCEEDED
    assert run.status == RunStatus.FAILED


def test_cyclic_workflow_never_creates_a_run(executor, tmp_path, console):
    wf = WorkflowDefinition(
        name="cyclic",
        triggers=(),
        jobs={
            "a": JobDefinition(name="a", steps=(sh("x", "true"),), needs=("b",)),
            "b": JobDefinition(name="b", steps=(sh("y", "true"),), needs=("a",)),
        },
    )
    with pytest.raises(CycleDetectedError):
        _controller(wf, executor, tmp_path, console)
    assert executor.calls == []


def test_side_effect_keys_are_unique_per_step(formatter, executor, tmp_path, console):
    run = _controller(formatter, executor, tmp_path, console).execute()
    effects = run.side_effects
    assert len(effects) == 1
    job_exec, step = effects[0]
    assert job_exec.name == "format"
    assert step.effect.key == f"{run.id}/format/4"
    assert step.effect.inputs == {"message": "Apply formatting changes", "branch": "master"}
