from .dsl import job, sh, uses, on_push, on_pull_request, workflow, JobBuilder, build
from .dag import resolve, ExecutionPlan
from .engine import Engine
from .loader import load_workflow, load_workflows
from .model import RepositoryEvent, EventKind, Run, RunStatus, JobStatus, StepStatus
from .runner import RunController, CancellationToken
from .trigger import matches

__all__ = [
    "job", "sh", "uses", "on_push", "on_pull_request", "workflow", "JobBuilder", "build",
    "resolve", "ExecutionPlan", "Engine", "load_workflow", "load_workflows",
    "RepositoryEvent", "EventKind", "Run", "RunStatus", "JobStatus", "StepStatus",
    "RunController", "CancellationToken", "matches",
]
