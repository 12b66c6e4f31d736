# runner.py
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

from . import settings
from .dag import ExecutionPlan, resolve
from .errors import ActionflowError, ExecutorTimeout, InfrastructureError, PermissionDenied
from .executor import StepExecutor, required_permission
from .model import (
    Environment,
    JobDefinition,
    JobExecution,
    JobStatus,
    RepositoryEvent,
    Run,
    RunStatus,
    StepExecution,
    StepResult,
    StepStatus,
    WorkflowDefinition,
    has_permission,
    now_utc,
)
from .ui.console import Console, get_console

PERMISSION_POLICIES = ("skip", "fail")


class CancellationToken:
    """Cooperative cancellation, checked by the RunController between batches."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _call_with_timeout(fn: Callable[..., StepResult], timeout: Optional[float], *args) -> StepResult:
    """
    Bounded wait on an executor call.

    The executor gets the same timeout on its Environment and is expected to
    stop its own work; this only guarantees the controller moves on.
    """
    if timeout is None:
        return fn(*args)

    pool = ThreadPoolExecutor(max_workers=1)
    fut = pool.submit(fn, *args)
    try:
        return fut.result(timeout=timeout)
    except FutureTimeout:
        raise ExecutorTimeout(f"no step result after {timeout}s", details={"timeout": timeout})
    finally:
        pool.shutdown(wait=False)


def new_job_execution(job: JobDefinition) -> JobExecution:
    return JobExecution(
        name=job.name,
        display_name=job.display_name or job.name,
        steps=[StepExecution(index=i, name=s.display_name) for i, s in enumerate(job.steps)],
    )


class RunController:
    """
    Owns one Run: creates it, executes the plan batch by batch and sets the
    terminal status. Nothing else mutates the Run or its JobExecutions while
    execute() is in progress.
    """

    def __init__(
        self,
        workflow: WorkflowDefinition,
        event: RepositoryEvent,
        executor: StepExecutor,
        *,
        plan: Optional[ExecutionPlan] = None,
        source: str | Path = ".",
        work_root: str | Path = settings.WORK_DIR,
        max_workers: Optional[int] = settings.MAX_WORKERS,
        step_timeout: Optional[float] = settings.STEP_TIMEOUT,
        retries: int = settings.STEP_RETRIES,
        retry_backoff: float = settings.RETRY_BACKOFF,
        permission_policy: str = settings.PERMISSION_POLICY,
        token: Optional[CancellationToken] = None,
        console: Optional[Console] = None,
    ):
        if permission_policy not in PERMISSION_POLICIES:
            raise ValueError(f"permission_policy must be one of {PERMISSION_POLICIES}, got {permission_policy!r}")

        # resolve first: a cyclic graph never produces a Run
        self.plan = plan or resolve(workflow.jobs)
        self.workflow = workflow
        self.executor = executor
        self.source = Path(source).resolve()
        self.work_root = Path(work_root)
        self.max_workers = max_workers
        self.step_timeout = step_timeout
        self.retries = retries
        self.retry_backoff = retry_backoff
        self.permission_policy = permission_policy
        self.token = token or CancellationToken()
        self.console = console or get_console()

        self.run = Run(
            workflow=workflow.name,
            event=event,
            jobs={name: new_job_execution(job) for name, job in workflow.jobs.items()},
            permissions=workflow.effective_permissions(event),
        )

    def cancel(self, reason: str = "cancelled") -> None:
        self.token.cancel(reason)

    # ------------------------------------------------------------------
    # Run level
    # ------------------------------------------------------------------

    def execute(self) -> Run:
        run = self.run
        if run.status != RunStatus.PENDING:
            raise RuntimeError(f"Run {run.id} already {run.status.value}")

        run.status = RunStatus.RUNNING
        self.console.print_run_started(
            workflow=run.workflow,
            event=run.event.kind.value,
            branch=run.event.branch,
            job_count=len(run.jobs),
            run_id=run.id,
        )

        for index, batch in enumerate(self.plan):
            if self.token.cancelled:
                self._cancel_remaining()
                break
            self.console.print_batch(index, list(batch))
            self._run_batch(batch)

        run.status = self._final_status()
        run.finished_at = now_utc()
        return run

    def _run_batch(self, batch) -> None:
        runnable = []
        for name in batch:
            job = self.workflow.jobs[name]
            blocked = [d for d in job.needs if self.run.jobs[d].status != JobStatus.SUCCEEDED]
            if blocked:
                self._skip_job(name, f"needs {blocked}")
            else:
                runnable.append(name)

        if not runnable:
            return

        workers = self.max_workers or len(runnable)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self._run_job, name): name for name in runnable}
            # barrier: every job in the batch reaches a terminal state
            for future in as_completed(futures):
                name = futures[future]
                try:
                    future.result()
                except Exception as e:
                    self._crash_job(name, e)

    def _final_status(self) -> RunStatus:
        statuses = [j.status for j in self.run.jobs.values()]
        if JobStatus.FAILED in statuses:
            return RunStatus.FAILED
        if JobStatus.CANCELLED in statuses:
            return RunStatus.CANCELLED
        return RunStatus.SUCCEEDED

    def _cancel_remaining(self) -> None:
        for job in self.run.jobs.values():
            if job.status == JobStatus.PENDING:
                job.status = JobStatus.CANCELLED
                job.reason = self.token.reason
                for step in job.steps:
                    step.status = StepStatus.SKIPPED

    def _skip_job(self, name: str, reason: str) -> None:
        job = self.run.jobs[name]
        job.status = JobStatus.SKIPPED
        job.reason = reason
        for step in job.steps:
            step.status = StepStatus.SKIPPED

    def _crash_job(self, name: str, exc: Exception) -> None:
        job = self.run.jobs[name]
        job.status = JobStatus.FAILED
        job.reason = f"{type(exc).__name__}: {exc}"
        job.finished_at = now_utc()
        for step in job.steps:
            if step.status == StepStatus.RUNNING:
                step.status = StepStatus.FAILED
                step.error_kind = "error"
                step.error = str(exc)
            elif step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED
        self.console.print_failure(name, job.reason, is_job=True)

    # ------------------------------------------------------------------
    # Job level
    # ------------------------------------------------------------------

    def environment_for(self, job: JobDefinition) -> Environment:
        """A fresh environment per job per run; nothing is shared across jobs."""
        workspace = (self.work_root / self.run.id / job.name).resolve()
        workspace.mkdir(parents=True, exist_ok=False)

        env = {
            "CI": "true",
            "ACTIONFLOW_RUN_ID": self.run.id,
            "ACTIONFLOW_WORKFLOW": self.workflow.name,
            "ACTIONFLOW_JOB": job.name,
            "ACTIONFLOW_WORKSPACE": str(workspace),
        }
        env.update(job.env)
        return Environment(
            run_id=self.run.id,
            job=job.name,
            workspace=workspace,
            source=self.source,
            event=self.run.event,
            permissions=dict(self.run.permissions),
            env=env,
        )

    def _run_job(self, name: str) -> None:
        job = self.workflow.jobs[name]
        record = self.run.jobs[name]
        record.status = JobStatus.RUNNING
        record.started_at = now_utc()
        self.console.print_job_start(record.display_name)

        environment = self.environment_for(job)
        failed = False

        for index, step in enumerate(job.steps):
            rec = record.steps[index]

            # fail-fast: later steps are never invoked
            if failed:
                rec.status = StepStatus.SKIPPED
                continue

            needed = required_permission(step)
            if needed and not has_permission(environment.permissions, needed):
                denied = PermissionDenied(f"run lacks '{needed}'", job=name, step=rec.name)
                rec.error_kind = denied.kind
                rec.error = denied.message
                if self.permission_policy == "fail":
                    rec.status = StepStatus.FAILED
                    self.console.print_failure(rec.name, str(denied))
                    failed = True
                else:
                    rec.status = StepStatus.SKIPPED
                    self.console.print_step_skipped(name, rec.name, denied.message)
                continue

            rec.status = StepStatus.RUNNING
            self.console.print_step(name, rec.name)
            result = self._execute_step(step, environment, rec)

            rec.status = result.status
            rec.output = result.output
            if result.ok:
                if result.environment is not None:
                    environment = result.environment
                if result.effect is not None:
                    rec.effect = replace(result.effect, key=f"{self.run.id}/{name}/{index}")
            else:
                rec.status = StepStatus.FAILED
                rec.error = rec.error or result.error or "step failed"
                rec.error_kind = rec.error_kind or "step_failure"
                self.console.print_failure(rec.name, rec.error)
                failed = True

        record.status = JobStatus.FAILED if failed else JobStatus.SUCCEEDED
        record.finished_at = now_utc()

    def _execute_step(self, step, environment: Environment, rec: StepExecution) -> StepResult:
        timeout = step.timeout or self.step_timeout
        environment = replace(environment, timeout=timeout)
        while True:
            rec.attempts += 1
            try:
                return _call_with_timeout(self.executor.execute, timeout, step, environment)
            except InfrastructureError as e:
                if rec.attempts > self.retries:
                    rec.error_kind = e.kind
                    rec.error = e.message
                    return StepResult(status=StepStatus.FAILED, error=e.message)
                self.console.print_retry(environment.job, rec.name, rec.attempts, e.message)
                time.sleep(self.retry_backoff)
            except ActionflowError as e:
                rec.error_kind = e.kind
                rec.error = e.message
                return StepResult(status=StepStatus.FAILED, error=e.message)
