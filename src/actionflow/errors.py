# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ActionflowError(Exception):
    """
    Structured engine error with enough context for:
      - clean CLI output
      - per-step records on a JobExecution
      - debugging without full tracebacks
    """
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    kind = "error"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Load / resolve time (fatal, no run is created)
# ----------------------------------------------------------------------

@dataclass
class ConfigError(ActionflowError):
    kind = "config_error"


@dataclass
class CycleDetectedError(ConfigError):
    kind = "cycle_detected"

    @property
    def jobs(self) -> list[str]:
        return list(self.details.get("stuck", []))


@dataclass
class InvalidEventError(ActionflowError, ValueError):
    kind = "invalid_event"


# ----------------------------------------------------------------------
# Step level (contained to the job)
# ----------------------------------------------------------------------

@dataclass
class StepFailure(ActionflowError):
    kind = "step_failure"


@dataclass
class PermissionDenied(ActionflowError):
    kind = "permission_denied"


@dataclass
class ExecutorTimeout(StepFailure):
    kind = "timeout"


@dataclass
class InfrastructureError(ActionflowError):
    """Transient failure; retried by the job runner before it becomes a StepFailure."""
    kind = "infrastructure"
