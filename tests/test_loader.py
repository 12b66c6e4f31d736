from __future__ import annotations

import pytest

from actionflow.errors import ConfigError, CycleDetectedError
from actionflow.loader import load_workflow, load_workflow_text, load_workflows
from actionflow.model import EventKind, InlineCommand, ReusableAction

from conftest import FORMATTER_YAML


def test_formatter_definition_is_loaded(formatter):
    assert formatter.name == "Formatter"
    assert [r.event for r in formatter.triggers] == [EventKind.PUSH, EventKind.PULL_REQUEST]
    assert all(r.branches == ("master",) for r in formatter.triggers)
    assert dict(formatter.permissions) == {"contents": "write", "pull-requests": "write"}
    assert list(formatter.jobs) == ["format", "check"]

    fmt = formatter.jobs["format"]
    assert fmt.display_name == "Format apply"
    assert fmt.runs_on == "ubuntu-latest"
    assert fmt.needs == ()
    assert len(fmt.steps) == 5

    cargo = fmt.steps[3]
    assert isinstance(cargo, ReusableAction)
    assert cargo.action == "actions-rs/cargo"
    assert cargo.version == "v1"
    assert dict(cargo.with_) == {"command": "fmt", "args": "--all -- --check"}

    commit = fmt.steps[4]
    assert commit.with_["branch"] == "${{ github.head_ref }}"


def test_definitions_are_read_only(formatter):
    with pytest.raises(TypeError):
        formatter.jobs["extra"] = formatter.jobs["format"]
    with pytest.raises(AttributeError):
        formatter.name = "changed"


def test_on_as_string_or_list_matches_any_branch():
    wf = load_workflow_text("on: push\njobs:\n  a:\n    steps:\n      - run: echo hi\n")
    assert wf.triggers[0].event == EventKind.PUSH
    assert wf.triggers[0].branches is None

    wf = load_workflow_text("on: [push, pull_request]\njobs:\n  a:\n    steps:\n      - run: echo hi\n")
    assert [t.event for t in wf.triggers] == [EventKind.PUSH, EventKind.PULL_REQUEST]


def test_run_steps_and_options():
    text = """
name: Build
on:
  push:
    branches-ignore: [wip/*]
permissions: read-all
env:
  LEVEL: 1
concurrency:
  group: build
  cancel-in-progress: true
jobs:
  build:
    timeout-minutes: 2
    env:
      DEBUG: true
    steps:
      - name: Compile
        run: make
        working-directory: src
  test:
    needs: build
    steps:
      - run: make test
        timeout-minutes: 1
"""
    wf = load_workflow_text(text)
    assert wf.triggers[0].branches is None
    assert wf.triggers[0].branches_ignore == ("wip/*",)
    assert wf.permissions["contents"] == "read"
    assert wf.cancel_superseded is True

    build = wf.jobs["build"]
    assert dict(build.env) == {"LEVEL": "1", "DEBUG": "true"}
    step = build.steps[0]
    assert isinstance(step, InlineCommand)
    assert step.cwd == "src"
    assert step.timeout == 120

    assert wf.jobs["test"].needs == ("build",)
    assert wf.jobs["test"].steps[0].timeout == 60
    assert wf.jobs["test"].steps[0].display_name == "make test"


@pytest.mark.parametrize(
    "text, fragment",
    [
        ("on: push\njobs: {}\n", "jobs"),
        ("on: push\njobs:\n  a:\n    steps: []\n", "steps"),
        ("on: push\njobs:\n  a:\n    steps:\n      - name: empty\n", "exactly one"),
        ("on: push\njobs:\n  a:\n    steps:\n      - run: x\n        uses: y\n", "exactly one"),
        ("on: push\njobs:\n  a:\n    steps:\n      - run: x\n        if: always()\n", "if"),
        ("on: push\npermissions:\n  contents: admin\njobs:\n  a:\n    steps:\n      - run: x\n", "permission"),
        ("jobs:\n  a:\n    steps:\n      - run: x\n", "on"),
        ("on:\n  push:\n    branches: ['[z-a]']\njobs:\n  a:\n    steps:\n      - run: x\n", "invalid branch pattern"),
    ],
)
def test_malformed_documents_raise_config_error(text, fragment):
    with pytest.raises(ConfigError) as info:
        load_workflow_text(text)
    assert fragment in str(info.value)


def test_unsupported_event_is_rejected():
    with pytest.raises(ConfigError, match="Unsupported trigger event 'schedule'"):
        load_workflow_text("on: schedule\njobs:\n  a:\n    steps:\n      - run: x\n")


def test_invalid_yaml_is_a_config_error():
    with pytest.raises(ConfigError, match="not valid YAML"):
        load_workflow_text("on: [push\n")


def test_cycles_are_rejected_at_load():
    text = """
on: push
jobs:
  a:
    needs: b
    steps: [{run: x}]
  b:
    needs: a
    steps: [{run: y}]
"""
    with pytest.raises(CycleDetectedError):
        load_workflow_text(text)


def test_load_from_files(tmp_path):
    wf_dir = tmp_path / "workflows"
    wf_dir.mkdir()
    (wf_dir / "formatter.yml").write_text(FORMATTER_YAML)
    (wf_dir / "other.yaml").write_text("on: push\njobs:\n  a:\n    steps:\n      - run: echo hi\n")
    (wf_dir / "notes.txt").write_text("ignored")

    workflows = load_workflows(wf_dir)
    assert [w.name for w in workflows] == ["Formatter", "other"]

    with pytest.raises(ConfigError, match="not found"):
        load_workflow(wf_dir / "missing.yml")
    with pytest.raises(ConfigError, match=".yml or .yaml"):
        load_workflow(wf_dir / "notes.txt")


def test_file_errors_name_the_file(tmp_path):
    bad = tmp_path / "bad.yml"
    bad.write_text("on: push\njobs: {}\n")
    with pytest.raises(ConfigError) as info:
        load_workflow(bad)
    assert info.value.details["file"] == str(bad.resolve())
