# actions/toolchain.py
from __future__ import annotations

from typing import Dict

from ..model import Environment, ReusableAction, StepResult, StepStatus
from ..process import check_tool_available


def rust_toolchain(step: ReusableAction, inputs: Dict[str, str], environment: Environment) -> StepResult:
    """Check that cargo is available and pin the toolchain for the rest of the job."""
    check_tool_available("cargo")

    toolchain = inputs.get("toolchain", "stable")
    environment = environment.with_env(RUSTUP_TOOLCHAIN=toolchain)
    return StepResult(
        status=StepStatus.SUCCEEDED,
        output=f"toolchain: {toolchain}",
        environment=environment,
    )
