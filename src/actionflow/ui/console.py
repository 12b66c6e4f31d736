"""Console output formatting utilities for actionflow."""

from __future__ import annotations

import sys
from typing import Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event: str,
        branch: str,
        job_count: int,
        run_id: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        if run_id:
            print(f"Run ID: {run_id}")
        print(f"Workflow: {workflow}")
        print(f"Event: {event} ({branch})")
        print(f"Jobs: {job_count}")
        print()

    def print_no_match(self, event: str, branch: str) -> None:
        print(f"No workflow matches {event} on {branch}; nothing to run.")

    def print_batch(self, index: int, jobs: list[str]) -> None:
        print(f"=== Batch {index + 1}: {jobs} ===")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        print(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        print(f"[{job}] STEP: {name}")

    def print_step_skipped(self, job: str, name: str, reason: str) -> None:
        print(f"[{job}] STEP SKIPPED: {name} ({reason})")

    def print_retry(self, job: str, name: str, attempt: int, reason: str) -> None:
        print(f"[{job}] RETRY {attempt}: {name} ({reason})")

    def print_failure(
        self,
        name: str,
        reason: str,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        print(f"{prefix}: {name}")
        if hint:
            print(f"Hint: {hint}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split('\n')[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_plan(self, batches: list[list[str]]) -> None:
        """Print the resolved execution plan."""
        print("PLAN")
        for i, batch in enumerate(batches):
            print(f"  batch {i + 1}: {', '.join(batch)}")

    def print_run_result(self, run_id: str, workflow: str, status: str) -> None:
        print("\n" + "=" * 40)
        print(f"RUN {status.upper()}: {workflow} ({run_id[:12]})")
        print("=" * 40)

    def print_job_result(self, name: str, status: str, reason: Optional[str] = None) -> None:
        line = f"  {name}: {status.upper()}"
        if reason:
            line += f" ({reason})"
        print(line)

    def print_step_result(self, name: str, status: str, highlight: bool = False) -> None:
        marker = ">>" if highlight else "  "
        print(f"  {marker} {name}: {status}")

    def print_output(self, output: str, limit: int = 20) -> None:
        """Print the tail of captured step output, indented."""
        lines = output.rstrip().splitlines()
        if not self.debug:
            lines = lines[-limit:]
        for line in lines:
            print(f"       | {line}")

    def print_effect(self, job: str, step: str, status: str, detail: Optional[str] = None) -> None:
        line = f"EFFECT [{job}] {step}: {status}"
        if detail:
            line += f" ({detail})"
        print(line)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
