# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from actionflow import settings
from actionflow.actions.commit import GIT_COMMIT
from actionflow.archive import RunArchive
from actionflow.dag import resolve
from actionflow.engine import Engine
from actionflow.errors import ActionflowError, ConfigError
from actionflow.executor import LocalStepExecutor
from actionflow.git_facts.git import current_branch, get_actor, get_remote_url, head_sha
from actionflow.loader import load_workflow
from actionflow.model import EventKind, RepositoryEvent, RunStatus
from actionflow.report import GitCommitSink, Reporter
from actionflow.ui.console import Console, get_console, set_console


def find_workflow_files(directory: str | Path = settings.WORKFLOWS_DIR) -> list[Path]:
    """
    Find all workflow files in the workflows directory.

    Returns:
        Sorted list of *.yml / *.yaml paths
    """
    root = Path(directory)
    if not root.is_dir():
        return []
    return sorted(list(root.glob("*.yml")) + list(root.glob("*.yaml")))


def discover_workflows(workflow_arg: str | None, workflows_dir: str) -> list[Path]:
    """
    Resolve the workflow files to use from the CLI arguments.

    Raises:
        SystemExit: If no workflow can be found
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify an existing file:\n  actionflow run --workflow .github/workflows/ci.yml",
            )
            sys.exit(1)
        return [workflow_path]

    workflow_files = find_workflow_files(workflows_dir)
    if not workflow_files:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {workflows_dir}/*.yml", f"  {workflows_dir}/*.yaml"],
            suggestion="Create a workflow file or specify one explicitly:\n  actionflow run --workflow my_workflow.yml",
        )
        sys.exit(1)
    return workflow_files


def parse_permissions(values: tuple[str, ...]) -> dict[str, str]:
    """Turn ("contents:write", "pull-requests:read") into a grants mapping."""
    grants: dict[str, str] = {}
    for value in values:
        capability, sep, level = value.partition(":")
        if not sep or level not in ("read", "write", "none"):
            raise click.BadParameter(f"expected capability:level, got {value!r}", param_hint="--permission")
        grants[capability] = level
    return grants


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """actionflow: event-driven workflow runner for repository automation."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("workflows", nargs=-1, type=click.Path(exists=True, dir_okay=False))
@click.option("--workflows-dir", default=settings.WORKFLOWS_DIR, show_default=True, help="Directory searched when no file is given")
def validate(workflows, workflows_dir):
    """Validate workflow files (schema, job references, cycles)."""
    console = get_console()
    paths = [Path(w) for w in workflows] or discover_workflows(None, workflows_dir)

    failed = False
    for path in paths:
        try:
            wf = load_workflow(path)
        except ConfigError as e:
            failed = True
            console.print_error("Invalid workflow", str(path), details=str(e).splitlines())
            continue
        console.print_info(f"OK {path} ({wf.name}, {len(wf.jobs)} job(s))")

    if failed:
        sys.exit(1)


@cli.command()
@click.argument("workflow", type=click.Path(exists=True, dir_okay=False))
def plan(workflow):
    """Print the batches a workflow's jobs resolve into."""
    console = get_console()
    try:
        wf = load_workflow(workflow)
    except ConfigError as e:
        console.print_error("Invalid workflow", str(workflow), details=str(e).splitlines())
        sys.exit(1)

    console.print_header(wf.name)
    console.print_plan([list(batch) for batch in resolve(wf.jobs)])


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to every file in --workflows-dir)")
@click.option("--workflows-dir", default=settings.WORKFLOWS_DIR, show_default=True)
@click.option("--event", "event_kind", type=click.Choice([k.value for k in EventKind]), default="push", show_default=True)
@click.option("--branch", default=None, help="Target branch (defaults to the current git branch)")
@click.option("--source-branch", default=None, help="Pull request head branch")
@click.option("--commit", default=None, help="Commit SHA (defaults to HEAD)")
@click.option("--actor", default=None)
@click.option("--permission", "permissions", multiple=True, help="Grant, e.g. contents:write (repeatable)")
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Max parallel jobs per batch")
@click.option("--timeout", default=settings.STEP_TIMEOUT, type=float, show_default=True, help="Step timeout (seconds)")
@click.option("--retries", default=settings.STEP_RETRIES, type=int, show_default=True, help="Retries for transient step errors")
@click.option("--permission-policy", type=click.Choice(["skip", "fail"]), default=settings.PERMISSION_POLICY, show_default=True)
@click.option("--work-dir", default=settings.WORK_DIR, show_default=True, help="Where job workspaces are created")
@click.option("--keep-workspace", is_flag=True, default=False, help="Keep job workspaces after the run")
@click.option("--push/--no-push", default=False, show_default=True, help="Write commits back to the target branch (otherwise kept under refs/actionflow/)")
@click.option("--archive/--no-archive", default=False, show_default=True, help="Record runs in ACTIONFLOW_DATABASE_URL")
@click.pass_context
def run(
    ctx, workflow, workflows_dir, event_kind, branch, source_branch, commit, actor, permissions,
    workers, timeout, retries, permission_policy, work_dir, keep_workspace, push, archive,
):
    """Simulate a repository event locally and run the workflows it triggers."""
    console = get_console()
    paths = discover_workflows(workflow, workflows_dir)

    try:
        workflows = [load_workflow(p) for p in paths]

        if branch is None:
            try:
                branch = current_branch()
            except (subprocess.CalledProcessError, FileNotFoundError, RuntimeError) as e:
                console.print_error(
                    "Could not determine branch",
                    "No --branch given and git could not tell the current branch.",
                    details=[str(e)],
                    suggestion="Pass it explicitly:\n  actionflow run --branch master",
                )
                sys.exit(1)

        if commit is None:
            try:
                commit = head_sha()
            except (subprocess.CalledProcessError, FileNotFoundError):
                console.print_debug("no git HEAD; running without a commit SHA")

        try:
            repository = get_remote_url("origin").rstrip("/").split("/")[-1].replace(".git", "")
        except (subprocess.CalledProcessError, FileNotFoundError):
            repository = Path(".").resolve().name

        event = RepositoryEvent(
            kind=EventKind(event_kind),
            branch=branch,
            source_branch=source_branch,
            commit=commit,
            actor=actor or get_actor(),
            repository=repository,
            permissions=parse_permissions(permissions),
        )

        engine = Engine(
            workflows,
            LocalStepExecutor(),
            Reporter({GIT_COMMIT: GitCommitSink(push=push)}, console=console),
            RunArchive() if archive else None,
            source=".",
            work_root=work_dir,
            keep_workspaces=keep_workspace,
            console=console,
            max_workers=workers,
            step_timeout=timeout,
            retries=retries,
            permission_policy=permission_policy,
        )
        runs = engine.handle(event)

        if any(r.status != RunStatus.SUCCEEDED for r in runs):
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except ActionflowError as e:
        console.print_error("Run not started", e.message, details=str(e).splitlines()[1:])
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command(name="runs")
@click.option("--limit", default=20, show_default=True)
@click.option("--branch", default=None)
def list_runs(limit, branch):
    """List archived runs."""
    console = get_console()
    for data in RunArchive().list(limit=limit, branch=branch):
        console.print_info(
            f"{data['id'][:12]}  {data['status']:<10} {data['workflow']} "
            f"({data['event']} {data['branch']})"
        )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
