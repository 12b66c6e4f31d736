# src/actionflow/dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .dag import resolve
from .model import (
    EventKind,
    InlineCommand,
    JobDefinition,
    ReusableAction,
    StepDefinition,
    TriggerRule,
    WorkflowDefinition,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, requires: str | None = None) -> InlineCommand:
    """Create a shell step."""
    return InlineCommand(run=cmd, name=name, cwd=cwd, required_permission=requires)


def uses(action: str, name: str | None = None, *, requires: str | None = None, **inputs) -> ReusableAction:
    """Create a reusable-action step: uses("actions-rs/cargo@v1", command="fmt")."""
    return ReusableAction(
        uses=action,
        with_={k: str(v) for k, v in inputs.items()},
        name=name,
        required_permission=requires,
    )


# ---------------------------------------------------------------------
# Trigger helpers
# ---------------------------------------------------------------------

def on_push(*branches: str) -> TriggerRule:
    """Trigger on push; no branches means any branch."""
    return TriggerRule(event=EventKind.PUSH, branches=tuple(branches) or None)


def on_pull_request(*branches: str) -> TriggerRule:
    return TriggerRule(event=EventKind.PULL_REQUEST, branches=tuple(branches) or None)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepDefinition,  # allow: job("x", sh(...), uses(...))
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    runs_on: str = "local",
    display_name: str | None = None,
) -> JobDefinition:
    if not steps:
        raise ValueError(f"job({name!r}) must have at least one step")

    return JobDefinition(
        name=name,
        steps=tuple(steps),
        runs_on=runs_on,
        display_name=display_name,
        needs=tuple(needs or ()),
        env=dict(env or {}),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[StepDefinition] = []
        self._env: dict[str, str] = {}
        self._runs_on = "local"
        self._display_name: Optional[str] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def runs_on(self, target: str):
        self._runs_on = target
        return self

    def titled(self, display_name: str):
        self._display_name = display_name
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(sh(name, run, cwd=cwd))
        return self

    def use_action(self, action: str, name: str | None = None, **inputs):
        self._steps.append(uses(action, name, **inputs))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> JobDefinition:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        return job(
            self.name,
            *self._steps,
            needs=self._needs,
            env=self._env,
            runs_on=self._runs_on,
            display_name=self._display_name,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def workflow(
    name: str,
    *jobs: JobDefinition,
    on: Iterable[TriggerRule],
    permissions: Optional[Dict[str, str]] = None,
    cancel_superseded: bool = False,
) -> WorkflowDefinition:
    """
    Workflow definition helper:

        workflow(
            "Formatter",
            job("check", uses("actions/checkout@v2"), sh("lint", "ruff check .")),
            on=[on_push("master"), on_pull_request("master")],
            permissions={"contents": "write"},
        )

    Validates the job graph the same way a loaded YAML file is validated.
    """
    wf = WorkflowDefinition(
        name=name,
        triggers=tuple(on),
        jobs={j.name: j for j in jobs},
        permissions=dict(permissions or {}),
        cancel_superseded=cancel_superseded,
    )
    if len(wf.jobs) != len(jobs):
        # surfaces the duplicate as a ConfigError
        resolve(list(jobs))
    resolve(wf.jobs)
    return wf
