# loader.py
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .dag import resolve
from .errors import ConfigError
from .model import (
    EventKind,
    InlineCommand,
    JobDefinition,
    ReusableAction,
    StepDefinition,
    TriggerRule,
    WorkflowDefinition,
)
from .trigger import branch_pattern

CAPABILITIES = [
    "actions",
    "checks",
    "contents",
    "deployments",
    "issues",
    "packages",
    "pull-requests",
    "statuses",
]
LEVELS = ("read", "write", "none")


# ---------------------------------------------------------------------
# Document schema
# ---------------------------------------------------------------------

def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


class StepDoc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Any] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    requires_permission: Optional[str] = Field(default=None, alias="requires-permission")

    @model_validator(mode="after")
    def _one_kind(self) -> "StepDoc":
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step needs exactly one of 'uses' or 'run'")
        if self.uses is not None and self.working_directory is not None:
            raise ValueError("'working-directory' only applies to 'run' steps")
        return self

    @field_validator("requires_permission")
    @classmethod
    def _permission_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        capability, sep, level = v.partition(":")
        if not sep or not capability or level not in ("read", "write"):
            raise ValueError("requires-permission must look like 'contents:write'")
        return v


class JobDoc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    runs_on: Union[str, List[str]] = Field(default="local", alias="runs-on")
    needs: Union[str, List[str]] = Field(default_factory=list)
    env: Dict[str, Any] = Field(default_factory=dict)
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    steps: List[StepDoc] = Field(min_length=1)


class TriggerDoc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    branches: Optional[List[str]] = None
    branches_ignore: Optional[List[str]] = Field(default=None, alias="branches-ignore")

    @field_validator("branches", "branches_ignore")
    @classmethod
    def _patterns_compile(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        for pattern in v or ():
            try:
                branch_pattern(pattern)
            except re.error as e:
                raise ValueError(f"invalid branch pattern {pattern!r}: {e}") from e
        return v

    @model_validator(mode="after")
    def _not_both(self) -> "TriggerDoc":
        if self.branches is not None and self.branches_ignore is not None:
            raise ValueError("use either 'branches' or 'branches-ignore', not both")
        return self


class ConcurrencyDoc(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    cancel_in_progress: bool = Field(default=False, alias="cancel-in-progress")


class WorkflowDoc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    on: Union[str, List[str], Dict[str, Optional[TriggerDoc]]]
    permissions: Union[str, Dict[str, str], None] = None
    concurrency: Optional[ConcurrencyDoc] = None
    env: Dict[str, Any] = Field(default_factory=dict)
    jobs: Dict[str, JobDoc] = Field(min_length=1)

    @field_validator("permissions")
    @classmethod
    def _permissions(cls, v):
        if v is None or isinstance(v, dict):
            for capability, level in (v or {}).items():
                if level not in LEVELS:
                    raise ValueError(f"permission '{capability}' must be one of {LEVELS}, got {level!r}")
            return v
        if v not in ("read-all", "write-all"):
            raise ValueError("permissions must be a mapping, 'read-all' or 'write-all'")
        return v


# ---------------------------------------------------------------------
# Document -> definitions
# ---------------------------------------------------------------------

def _event_kind(name: str) -> EventKind:
    try:
        return EventKind(name)
    except ValueError:
        supported = [k.value for k in EventKind]
        raise ConfigError(f"Unsupported trigger event '{name}'. Supported: {supported}") from None


def _triggers(on) -> tuple:
    if isinstance(on, str):
        return (TriggerRule(event=_event_kind(on)),)
    if isinstance(on, list):
        return tuple(TriggerRule(event=_event_kind(e)) for e in on)

    rules = []
    for event, doc in on.items():
        doc = doc or TriggerDoc()
        rules.append(TriggerRule(
            event=_event_kind(event),
            branches=tuple(doc.branches) if doc.branches is not None else None,
            branches_ignore=tuple(doc.branches_ignore or ()),
        ))
    return tuple(rules)


def _permissions(permissions) -> Dict[str, str]:
    if permissions is None:
        return {}
    if permissions == "read-all":
        return {c: "read" for c in CAPABILITIES}
    if permissions == "write-all":
        return {c: "write" for c in CAPABILITIES}
    return dict(permissions)


def _step(doc: StepDoc, job_timeout: Optional[float]) -> StepDefinition:
    minutes = doc.timeout_minutes or job_timeout
    timeout = minutes * 60 if minutes else None
    env = {k: _scalar(v) for k, v in doc.env.items()}

    if doc.uses is not None:
        return ReusableAction(
            uses=doc.uses,
            with_={k: _scalar(v) for k, v in doc.with_.items()},
            name=doc.name,
            env=env,
            timeout=timeout,
            required_permission=doc.requires_permission,
        )
    return InlineCommand(
        run=doc.run,
        name=doc.name,
        cwd=doc.working_directory,
        env=env,
        timeout=timeout,
        required_permission=doc.requires_permission,
    )


def _job(name: str, doc: JobDoc, workflow_env: Dict[str, str]) -> JobDefinition:
    needs = [doc.needs] if isinstance(doc.needs, str) else list(doc.needs)
    runs_on = doc.runs_on if isinstance(doc.runs_on, str) else ",".join(doc.runs_on)
    env = dict(workflow_env)
    env.update({k: _scalar(v) for k, v in doc.env.items()})
    return JobDefinition(
        name=name,
        display_name=doc.name,
        runs_on=runs_on,
        needs=tuple(needs),
        env=env,
        steps=tuple(_step(s, doc.timeout_minutes) for s in doc.steps),
    )


def parse_workflow(data: Any, default_name: str = "workflow") -> WorkflowDefinition:
    """
    Build a WorkflowDefinition from an already-parsed document.

    Raises ConfigError for a malformed document and CycleDetectedError
    when the job graph is not a DAG.
    """
    if not isinstance(data, dict):
        raise ConfigError("Workflow document must be a mapping")

    data = dict(data)
    # YAML 1.1 reads a bare `on` key as boolean True
    if True in data:
        data["on"] = data.pop(True)

    try:
        doc = WorkflowDoc.model_validate(data)
    except ValidationError as e:
        details = {
            ".".join(str(p) for p in err["loc"]) or "document": err["msg"]
            for err in e.errors()
        }
        raise ConfigError("Invalid workflow definition", details=details) from e

    workflow_env = {k: _scalar(v) for k, v in doc.env.items()}
    workflow = WorkflowDefinition(
        name=doc.name or default_name,
        triggers=_triggers(doc.on),
        jobs={name: _job(name, job, workflow_env) for name, job in doc.jobs.items()},
        permissions=_permissions(doc.permissions),
        cancel_superseded=bool(doc.concurrency and doc.concurrency.cancel_in_progress),
    )

    resolve(workflow.jobs)
    return workflow


def load_workflow_text(text: str, default_name: str = "workflow") -> WorkflowDefinition:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Workflow is not valid YAML: {e}") from e
    return parse_workflow(data, default_name=default_name)


def load_workflow(path: str | Path) -> WorkflowDefinition:
    """Load one workflow file (.yml / .yaml)."""
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix not in (".yml", ".yaml"):
        raise ConfigError(f"Workflow must be a .yml or .yaml file, got: {wf_path.name}")

    try:
        return load_workflow_text(wf_path.read_text(encoding="utf-8"), default_name=wf_path.stem)
    except ConfigError as e:
        e.details.setdefault("file", str(wf_path))
        raise


def load_workflows(directory: str | Path) -> List[WorkflowDefinition]:
    """Load every workflow file in a directory, in file-name order."""
    root = Path(directory)
    if not root.is_dir():
        raise ConfigError(f"Workflow directory not found: {root}")
    files = sorted(list(root.glob("*.yml")) + list(root.glob("*.yaml")))
    return [load_workflow(f) for f in files]
