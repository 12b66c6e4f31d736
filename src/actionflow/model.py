# model.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union


# ---------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------

class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


PERMISSION_LEVELS = {"none": 0, "read": 1, "write": 2}


@dataclass(frozen=True)
class RepositoryEvent:
    """
    An incoming repository event.

    `branch` is the branch the event targets: the pushed branch for a push,
    the base branch for a pull request. `source_branch` is the PR head.
    """
    kind: EventKind
    branch: str
    source_branch: Optional[str] = None
    commit: Optional[str] = None
    actor: Optional[str] = None
    repository: Optional[str] = None
    permissions: Mapping[str, str] = field(default_factory=dict)

    @property
    def head_branch(self) -> str:
        return self.source_branch or self.branch


# ---------------------------------------------------------------------
# Definitions (immutable, shared across runs)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class TriggerRule:
    event: EventKind
    branches: Optional[Tuple[str, ...]] = None   # None -> any branch
    branches_ignore: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReusableAction:
    """A step that invokes a reusable action by reference, e.g. actions/checkout@v2."""
    uses: str
    with_: Mapping[str, str] = field(default_factory=dict)
    name: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    required_permission: Optional[str] = None

    @property
    def action(self) -> str:
        # version is not part of the lookup key
        return self.uses.split("@", 1)[0]

    @property
    def version(self) -> Optional[str]:
        _, sep, version = self.uses.partition("@")
        return version if sep else None

    @property
    def display_name(self) -> str:
        return self.name or self.uses


@dataclass(frozen=True)
class InlineCommand:
    """A step that runs a shell command inside the job workspace."""
    run: str
    name: Optional[str] = None
    cwd: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    required_permission: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.run.splitlines()[0]


StepDefinition = Union[ReusableAction, InlineCommand]


@dataclass(frozen=True)
class JobDefinition:
    name: str
    steps: Tuple[StepDefinition, ...]
    runs_on: str = "local"
    display_name: Optional[str] = None
    needs: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    triggers: Tuple[TriggerRule, ...]
    jobs: Mapping[str, JobDefinition]
    permissions: Mapping[str, str] = field(default_factory=dict)
    cancel_superseded: bool = False

    def __post_init__(self) -> None:
        # read-only view; insertion (declaration) order is preserved
        object.__setattr__(self, "jobs", MappingProxyType(dict(self.jobs)))
        object.__setattr__(self, "permissions", MappingProxyType(dict(self.permissions)))

    def effective_permissions(self, event: RepositoryEvent) -> Dict[str, str]:
        """
        Grants a run holds: what the event grants, capped by what the
        workflow requests (when it requests anything at all).
        """
        granted = dict(event.permissions)
        if not self.permissions:
            return granted

        effective: Dict[str, str] = {}
        for capability, requested in self.permissions.items():
            level = min(
                PERMISSION_LEVELS.get(requested, 0),
                PERMISSION_LEVELS.get(granted.get(capability, "none"), 0),
            )
            if level:
                effective[capability] = "write" if level == 2 else "read"
        return effective


def has_permission(grants: Mapping[str, str], required: str) -> bool:
    """`required` is "capability:level", e.g. "contents:write". write implies read."""
    capability, _, level = required.partition(":")
    need = PERMISSION_LEVELS.get(level or "read", 1)
    return PERMISSION_LEVELS.get(grants.get(capability, "none"), 0) >= need


# ---------------------------------------------------------------------
# Step execution boundary
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Environment:
    """
    Per-job execution environment handle. A fresh one is built for every job
    of every run; steps receive it and may return an updated copy.
    """
    run_id: str
    job: str
    workspace: Path
    source: Path
    event: RepositoryEvent
    permissions: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    state: Mapping[str, str] = field(default_factory=dict)
    # effective step timeout (seconds), set by the controller before each step
    timeout: Optional[float] = None

    def with_env(self, **values: str) -> "Environment":
        merged = dict(self.env)
        merged.update({k: str(v) for k, v in values.items()})
        return replace(self, env=merged)

    def with_state(self, **values: str) -> "Environment":
        merged = dict(self.state)
        merged.update(values)
        return replace(self, state=merged)


@dataclass(frozen=True)
class SideEffect:
    """An externally visible action to dispatch once the run is reported."""
    action: str
    inputs: Mapping[str, str]
    workspace: Path
    key: str = ""


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    status: StepStatus
    output: str = ""
    environment: Optional[Environment] = None
    effect: Optional[SideEffect] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.SUCCEEDED


# ---------------------------------------------------------------------
# Live run state (owned by one RunController)
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED}


@dataclass
class StepExecution:
    index: int
    name: str
    status: StepStatus = StepStatus.PENDING
    output: str = ""
    attempts: int = 0
    error_kind: Optional[str] = None
    error: Optional[str] = None
    effect: Optional[SideEffect] = None
    effect_status: Optional[str] = None   # "dispatched" | "failed"


@dataclass
class JobExecution:
    name: str
    display_name: str
    steps: List[StepExecution]
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    reason: Optional[str] = None

    @property
    def first_failure(self) -> Optional[StepExecution]:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Run:
    workflow: str
    event: RepositoryEvent
    jobs: Dict[str, JobExecution]
    permissions: Dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = field(default_factory=now_utc)
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def side_effects(self) -> List[Tuple[JobExecution, StepExecution]]:
        pending = []
        for job in self.jobs.values():
            for step in job.steps:
                if step.effect is not None and step.status == StepStatus.SUCCEEDED:
                    pending.append((job, step))
        return pending

    @property
    def first_failure(self) -> Optional[Tuple[JobExecution, StepExecution]]:
        for job in self.jobs.values():
            step = job.first_failure
            if step is not None:
                return job, step
        return None
