# report.py
from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, Set

from .actions.commit import GIT_COMMIT
from .git_facts import git
from .model import Run, SideEffect
from .ui.console import Console, get_console

KEPT_REF_PREFIX = "refs/actionflow/"


class SideEffectSink(Protocol):
    def dispatch(self, effect: SideEffect) -> Optional[str]:
        """Perform the effect; return a short description (e.g. a commit SHA)."""
        ...


class GitCommitSink:
    """
    Commits everything in the job workspace and writes it back to the source.

    With `push`, the commit lands on the target branch: a branch checked out
    in a local source repository is fast-forwarded, anything else is pushed.
    Without it, the commit is kept in the source repository under
    refs/actionflow/<run>/<job>/<step> so it outlives the workspace.
    """

    def __init__(self, push: bool = True, remote: str = "origin"):
        self.push = push
        self.remote = remote

    def dispatch(self, effect: SideEffect) -> Optional[str]:
        if effect.action != GIT_COMMIT:
            raise ValueError(f"GitCommitSink cannot dispatch '{effect.action}'")

        sha = git.commit_all(effect.inputs["message"], cwd=effect.workspace)
        if sha is None:
            return "nothing to commit"

        if not self.push:
            if not effect.key:
                raise ValueError("effect has no key to keep its commit under")
            ref = KEPT_REF_PREFIX + effect.key
            git.push_ref(ref, cwd=effect.workspace, remote=self.remote)
            return f"{sha[:12]} kept as {ref}"

        branch = effect.inputs["branch"]
        checkout = self._local_checkout(effect.workspace)
        if checkout is not None and git.checked_out_branch(checkout) == branch:
            git.fast_forward(checkout, effect.workspace)
        else:
            git.push(branch, cwd=effect.workspace, remote=self.remote)
        return sha[:12]

    def _local_checkout(self, workspace: Path) -> Optional[Path]:
        """The remote as a local working tree, when it is one."""
        path = Path(git.get_remote_url(self.remote, cwd=workspace))
        if path.is_absolute() and git.is_repo(path):
            return path
        return None


class Reporter:
    """
    Prints a run's outcome and dispatches its side effects.

    Every effect is dispatched at most once per key, no matter how often the
    same run is reported or how many attempts its step needed.
    """

    def __init__(
        self,
        sinks: Optional[Dict[str, SideEffectSink]] = None,
        console: Optional[Console] = None,
    ):
        self.sinks: Dict[str, SideEffectSink] = dict(sinks) if sinks is not None else {GIT_COMMIT: GitCommitSink()}
        self.console = console or get_console()
        self._dispatched: Set[str] = set()
        self._lock = threading.Lock()

    def report(self, run: Run) -> None:
        self._print_run(run)
        self._dispatch_effects(run)

    def _print_run(self, run: Run) -> None:
        c = self.console
        c.print_run_result(run.id, run.workflow, run.status.value)

        first = run.first_failure
        for job in run.jobs.values():
            c.print_job_result(job.display_name, job.status.value, job.reason)
            for step in job.steps:
                highlight = first is not None and first[0] is job and first[1] is step
                c.print_step_result(step.name, step.status.value, highlight=highlight)
                if highlight and step.output:
                    c.print_output(step.output)

        if first is not None:
            job, step = first
            c.print_failure(f"{job.display_name} / {step.name}", step.error or "step failed")

    def _claim(self, key: str) -> bool:
        with self._lock:
            if key in self._dispatched:
                return False
            self._dispatched.add(key)
            return True

    def _dispatch_effects(self, run: Run) -> None:
        for job, step in run.side_effects:
            effect = step.effect
            if not self._claim(effect.key):
                continue

            sink = self.sinks.get(effect.action)
            if sink is None:
                step.effect_status = "failed"
                self.console.print_effect(job.name, step.name, "failed", f"no sink for '{effect.action}'")
                continue

            try:
                detail = sink.dispatch(effect)
            except (subprocess.CalledProcessError, OSError, ValueError) as e:
                step.effect_status = "failed"
                self.console.print_effect(job.name, step.name, "failed", str(e))
                continue

            step.effect_status = "dispatched"
            self.console.print_effect(job.name, step.name, "dispatched", detail)

    def dispatched(self, key: str) -> bool:
        with self._lock:
            return key in self._dispatched
