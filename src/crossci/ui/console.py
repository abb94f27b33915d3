"""Console output formatting utilities for crossci."""

from __future__ import annotations

import sys
from typing import Mapping, Optional


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
        repository: str,
        workflow: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Repository: {repository}")
        print(f"Workflow: {workflow}")
        print(f"Jobs: {job_count}")
        print()

    def print_trigger(self, fired: bool, reason: str) -> None:
        """Print the trigger decision for the incoming event."""
        print(f"TRIGGER: {'fired' if fired else 'ignored'} ({reason})")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        print(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        print(f"[{job}] STEP: {name}")

    def print_provisioned(self, job: str, what: str, detail: str) -> None:
        print(f"[{job}] {what}: {detail}")

    def print_job_done(self, name: str, status: str) -> None:
        """Print job completion message."""
        print(f"[{name}] STATUS: {status}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print job failure message.

        Args:
            name: Job name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        print(f"JOB FAILED: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if hint:
            print(f"Hint: {hint}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split('\n')[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        print(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        print(f"  {name} (skipped: {reason})")

    def print_results(self, results: Mapping[str, object], status: Optional[str] = None) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for job, result in results.items():
            job_status = getattr(result, "status", result)
            reason = getattr(result, "reason", "")
            status_display = job_status.upper() if job_status != "ok" else "SUCCESS"
            suffix = f" ({reason})" if reason and job_status != "ok" else ""
            print(f"  {job}: {status_display}{suffix}")
        if status is not None:
            print("-" * 40)
            print(f"  RUN: {'SUCCESS' if status == 'ok' else status.upper()}")

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
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_agent_started(
        self,
        agent_id: str,
        api: str,
        poll_interval: int,
    ) -> None:
        """Print agent start information."""
        print("\nAGENT STARTED")
        print(f"Agent ID: {agent_id}")
        print(f"API: {api}")
        print(f"Polling every: {poll_interval}s")
        print()

    def print_lease_acquired(self, job_name: str, run_id: str) -> None:
        """Print lease acquisition message."""
        print("\nLEASE ACQUIRED")
        print(f"Job: {job_name}")
        print(f"Run ID: {run_id}")

    def print_execution_complete(
        self,
        status: str,
        duration: Optional[float] = None,
    ) -> None:
        """Print execution completion message."""
        print("\nEXECUTION COMPLETE")
        print(f"Status: {status}")
        if duration is not None:
            print(f"Duration: {duration:.1f}s")

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
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
