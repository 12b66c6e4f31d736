# actions/command.py
from __future__ import annotations

import shlex
from typing import Callable, Dict

from ..model import Environment, ReusableAction, StepResult, StepStatus
from ..process import check_tool_available, run_process

ActionHandler = Callable[[ReusableAction, Dict[str, str], Environment], StepResult]


def tool_action(tool: str) -> ActionHandler:
    """
    Build a handler that runs `<tool> <command> <args...>` in the workspace,
    e.g. actions-rs/cargo with command=fmt, args="--all -- --check".
    """

    def run(step: ReusableAction, inputs: Dict[str, str], environment: Environment) -> StepResult:
        command = inputs.get("command")
        if not command:
            return StepResult(
                status=StepStatus.FAILED,
                error=f"{step.uses}: missing required input 'command'",
            )

        check_tool_available(tool)

        cmd_parts = [tool, command]
        args = inputs.get("args")
        if args:
            # split args, honoring quoted strings
            cmd_parts.extend(shlex.split(args))

        return run_process(cmd_parts, environment, timeout=step.timeout or environment.timeout)

    run.__name__ = f"{tool}_action"
    return run
