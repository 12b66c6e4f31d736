# executor.py
from __future__ import annotations

from typing import Callable, Dict, Mapping, Optional, Protocol

from .actions.checkout import checkout
from .actions.command import tool_action
from .actions.commit import auto_commit
from .actions.toolchain import rust_toolchain
from .expressions import event_context, render, render_inputs
from .model import (
    Environment,
    InlineCommand,
    ReusableAction,
    StepDefinition,
    StepResult,
    StepStatus,
)
from .process import run_process

ActionHandler = Callable[[ReusableAction, Dict[str, str], Environment], StepResult]


class StepExecutor(Protocol):
    """
    The engine's only view of step work.

    Returns a StepResult; may raise InfrastructureError (retried),
    ExecutorTimeout or StepFailure (both fail the step).
    """

    def execute(self, step: StepDefinition, environment: Environment) -> StepResult:
        ...


# Reusable actions known to the local executor, keyed by "owner/name" (no version)
BUILTIN_ACTIONS: Dict[str, ActionHandler] = {
    "actions/checkout": checkout,
    "actions-rs/toolchain": rust_toolchain,
    "actions-rs/cargo": tool_action("cargo"),
    "stefanzweifel/git-auto-commit-action": auto_commit,
}

# Grants an action needs before it may run at all
ACTION_PERMISSIONS: Dict[str, str] = {
    "stefanzweifel/git-auto-commit-action": "contents:write",
}


def required_permission(step: StepDefinition) -> Optional[str]:
    if step.required_permission:
        return step.required_permission
    if isinstance(step, ReusableAction):
        return ACTION_PERMISSIONS.get(step.action)
    return None


class LocalStepExecutor:
    """Runs inline commands through the shell and reusable actions from a registry."""

    def __init__(self, actions: Optional[Mapping[str, ActionHandler]] = None):
        self.actions: Dict[str, ActionHandler] = dict(BUILTIN_ACTIONS if actions is None else actions)

    def register(self, action: str, handler: ActionHandler) -> None:
        self.actions[action.split("@", 1)[0]] = handler

    def execute(self, step: StepDefinition, environment: Environment) -> StepResult:
        context = event_context(environment.event)

        if isinstance(step, InlineCommand):
            return run_process(
                render(step.run, context),
                environment,
                cwd=step.cwd,
                env=step.env,
                timeout=step.timeout or environment.timeout,
            )

        if isinstance(step, ReusableAction):
            handler = self.actions.get(step.action)
            if handler is None:
                return StepResult(
                    status=StepStatus.FAILED,
                    error=f"Unknown action '{step.uses}'. Known actions: {sorted(self.actions)}",
                )
            if step.env:
                environment = environment.with_env(**step.env)
            return handler(step, render_inputs(step.with_, context), environment)

        raise TypeError(f"Unsupported step type: {type(step).__name__}")
