from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from actionflow.actions.commit import GIT_COMMIT, auto_commit  # noqa: E402
from actionflow.expressions import event_context, render_inputs  # noqa: E402
from actionflow.loader import load_workflow_text  # noqa: E402
from actionflow.model import (  # noqa: E402
    EventKind,
    RepositoryEvent,
    ReusableAction,
    StepResult,
    StepStatus,
)
from actionflow.report import Reporter  # noqa: E402
from actionflow.ui.console import Console  # noqa: E402

FORMATTER_YAML = """\
name: Formatter
on:
  push:
    branches: [master]
  pull_request:
    branches: [master]

permissions:
  contents: write # for checkout
  pull-requests: write # for comments

jobs:
  format:
    name: Format apply
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v2
      - uses: actions-rs/toolchain@v1
        with:
          toolchain: stable
      - name: Automatically apply lint suggestions
        uses: actions-rs/cargo@v1
        with:
          command: clippy
          args: --fix --workspace
      - name: Format check packages
        uses: actions-rs/cargo@v1
        with:
          command: fmt
          args: --all -- --check
      - name: Commit changes
        uses: stefanzweifel/git-auto-commit-action@v4
        with:
          commit_message: Apply formatting changes
          branch: ${{ github.head_ref }}
  check:
    name: Format check
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v2
      - uses: actions-rs/toolchain@v1
        with:
          toolchain: stable
      - name: Run clippy check on workspace
        uses: actions-rs/cargo@v1
        with:
          command: clippy
          args: --workspace
      - name: Format all packages
        uses: actions-rs/cargo@v1
        with:
          command: fmt
          args: --all
"""


class FakeExecutor:
    """
    Records every call and succeeds unless told otherwise.

    `fail` holds step display names, or (job, step name) pairs, that should
    return a failed StepResult. The auto-commit action goes through the real
    handler so it yields a SideEffect.
    """

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def execute(self, step, environment):
        name = step.display_name
        with self._lock:
            self.calls.append((environment.job, name))

        if name in self.fail or (environment.job, name) in self.fail:
            return StepResult(status=StepStatus.FAILED, output="error: lint failed", error="exit=101")

        if isinstance(step, ReusableAction) and step.action == "stefanzweifel/git-auto-commit-action":
            inputs = render_inputs(step.with_, event_context(environment.event))
            return auto_commit(step, inputs, environment)

        return StepResult(status=StepStatus.SUCCEEDED, output=f"ran {name}")

    def calls_for(self, job: str) -> list[str]:
        return [name for j, name in self.calls if j == job]


class RecordingSink:
    def __init__(self, error: Exception | None = None):
        self.effects = []
        self.error = error

    def dispatch(self, effect):
        self.effects.append(effect)
        if self.error is not None:
            raise self.error
        return "abc123"


@pytest.fixture
def console() -> Console:
    return Console(debug=False)


@pytest.fixture
def formatter():
    return load_workflow_text(FORMATTER_YAML)


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def reporter(sink, console) -> Reporter:
    return Reporter({GIT_COMMIT: sink}, console=console)


def make_event(kind="push", branch="master", source_branch=None, **permissions) -> RepositoryEvent:
    grants = {k.replace("_", "-"): v for k, v in permissions.items()}
    return RepositoryEvent(
        kind=EventKind(kind),
        branch=branch,
        source_branch=source_branch,
        commit="0123456789abcdef",
        actor="octocat",
        repository="demo",
        permissions=grants,
    )
