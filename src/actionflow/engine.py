# engine.py
from __future__ import annotations

import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from . import settings
from .executor import LocalStepExecutor, StepExecutor
from .model import RepositoryEvent, Run, WorkflowDefinition
from .report import Reporter
from .runner import RunController
from .trigger import normalize_branch, select_workflows
from .ui.console import Console, get_console


class Engine:
    """
    Entry point for incoming events: picks the matching workflows, runs each
    one under its own RunController, reports and archives the result.

    Runs of the same workflow on the same branch share a concurrency key; a
    workflow with cancel_superseded cancels the older run when a newer one
    starts (between batches, never mid-job).
    """

    def __init__(
        self,
        workflows: Sequence[WorkflowDefinition],
        executor: Optional[StepExecutor] = None,
        reporter: Optional[Reporter] = None,
        archive=None,
        *,
        source: str | Path = ".",
        work_root: str | Path = settings.WORK_DIR,
        keep_workspaces: bool = False,
        console: Optional[Console] = None,
        **controller_options,
    ):
        self.workflows = list(workflows)
        self.executor = executor or LocalStepExecutor()
        self.console = console or get_console()
        self.reporter = reporter or Reporter(console=self.console)
        self.archive = archive
        self.source = Path(source)
        self.work_root = Path(work_root)
        self.keep_workspaces = keep_workspaces
        self.controller_options = controller_options

        self._lock = threading.Lock()
        self._active: Dict[Tuple[str, str], RunController] = {}
        self._by_id: Dict[str, RunController] = {}

    def handle(self, event: RepositoryEvent) -> List[Run]:
        """Run every workflow the event triggers. No match means no Run at all."""
        matched = select_workflows(event, self.workflows)
        if not matched:
            self.console.print_no_match(event.kind.value, event.branch)
            return []

        if len(matched) == 1:
            return [self.run_workflow(matched[0], event)]

        with ThreadPoolExecutor(max_workers=len(matched)) as pool:
            futures = [pool.submit(self.run_workflow, wf, event) for wf in matched]
            return [f.result() for f in futures]

    def run_workflow(self, workflow: WorkflowDefinition, event: RepositoryEvent) -> Run:
        controller = RunController(
            workflow,
            event,
            self.executor,
            source=self.source,
            work_root=self.work_root,
            console=self.console,
            **self.controller_options,
        )
        run = controller.run
        key = (workflow.name, normalize_branch(event.head_branch))

        with self._lock:
            previous = self._active.get(key)
            if previous is not None and workflow.cancel_superseded:
                previous.cancel(f"superseded by run {run.id}")
            self._active[key] = controller
            self._by_id[run.id] = controller

        try:
            controller.execute()
            self.reporter.report(run)
            if self.archive is not None:
                self.archive.save(run)
        finally:
            with self._lock:
                if self._active.get(key) is controller:
                    del self._active[key]
                self._by_id.pop(run.id, None)
            if not self.keep_workspaces:
                shutil.rmtree(self.work_root / run.id, ignore_errors=True)

        return run

    def cancel(self, run_id: str, reason: str = "cancelled by request") -> bool:
        with self._lock:
            controller = self._by_id.get(run_id)
        if controller is None:
            return False
        controller.cancel(reason)
        return True

    def get_active(self, run_id: str) -> Optional[Run]:
        with self._lock:
            controller = self._by_id.get(run_id)
        return controller.run if controller is not None else None

    def active_runs(self) -> List[Run]:
        with self._lock:
            return [c.run for c in self._by_id.values()]
