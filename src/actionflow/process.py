# process.py
from __future__ import annotations

import os
import shutil
import signal
import subprocess
from pathlib import Path
from typing import List, Mapping, Optional, Union

from .errors import ExecutorTimeout, InfrastructureError, StepFailure
from .model import Environment, StepResult, StepStatus

OUTPUT_TAIL = 4000

TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "git": "Install Git or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "python3": "Install Python 3 or fix PATH (python3).",
}


def check_tool_available(tool: str) -> None:
    """Raise a StepFailure with an install hint if `tool` is not on PATH."""
    if shutil.which(tool) is None:
        hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
        raise StepFailure(
            f"{tool} is not available",
            details={"hint": hint, "tool": tool},
        )


def workdir(environment: Environment, cwd: Optional[str] = None) -> Path:
    path = (environment.workspace / (cwd or ".")).resolve()
    if not path.exists():
        raise StepFailure(f"working directory not found: {path}", job=environment.job)
    return path


def process_env(environment: Environment, extra: Optional[Mapping[str, str]] = None) -> dict:
    env = os.environ.copy()
    env.update(environment.env)
    env.update(extra or {})
    return env


def _kill_tree(proc: subprocess.Popen) -> None:
    """Kill the command and anything it spawned (it leads its own session)."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    proc.communicate()


def run_process(
    cmd: Union[str, List[str]],
    environment: Environment,
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> StepResult:
    """
    Run a command in the job workspace and turn its exit code into a StepResult.

    Raises:
        ExecutorTimeout when the process outlives `timeout`. The process and
            its children are killed first.
        InfrastructureError when the process could not be started at all.
    """
    shell = isinstance(cmd, str)
    display = cmd if shell else " ".join(cmd)
    try:
        proc = subprocess.Popen(
            cmd,
            shell=shell,
            cwd=str(workdir(environment, cwd)),
            env=process_env(environment, env),
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    except OSError as e:
        raise InfrastructureError(
            f"could not start command: {e}",
            job=environment.job,
            details={"cmd": display},
        ) from e

    try:
        stdout, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired as e:
        _kill_tree(proc)
        raise ExecutorTimeout(
            f"command timed out after {timeout}s: {display}",
            job=environment.job,
            details={"timeout": timeout},
        ) from e

    output = (stdout or "")[-OUTPUT_TAIL:]
    if proc.returncode != 0:
        return StepResult(
            status=StepStatus.FAILED,
            output=output,
            error=f"exit={proc.returncode}: {display}",
        )
    return StepResult(status=StepStatus.SUCCEEDED, output=output)
