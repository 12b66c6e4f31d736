# actions/commit.py
from __future__ import annotations

from typing import Dict

from ..model import Environment, ReusableAction, SideEffect, StepResult, StepStatus

GIT_COMMIT = "git-commit"
DEFAULT_MESSAGE = "Apply automatic changes"


def auto_commit(step: ReusableAction, inputs: Dict[str, str], environment: Environment) -> StepResult:
    """
    Request a write-back commit of the workspace.

    Nothing is committed here: the step yields a SideEffect that the
    reporter dispatches once the run is finished.
    """
    branch = inputs.get("branch") or environment.event.head_branch
    message = inputs.get("commit_message") or DEFAULT_MESSAGE

    effect = SideEffect(
        action=GIT_COMMIT,
        inputs={"message": message, "branch": branch},
        workspace=environment.workspace,
    )
    return StepResult(
        status=StepStatus.SUCCEEDED,
        output=f"commit to {branch} queued: {message}",
        effect=effect,
    )
