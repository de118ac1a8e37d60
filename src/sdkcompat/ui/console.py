"""Console output formatting utilities for sdkcompat."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from sdkcompat.model import JobExecution, JobStatus, PipelineSummary


_STATUS_DISPLAY = {
    JobStatus.PASSED: "PASSED",
    JobStatus.FAILED: "FAILED",
    JobStatus.ERRORED: "ERRORED",
    JobStatus.RUNNING: "RUNNING",
    JobStatus.PENDING: "PENDING",
}


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # SDK jobs print from worker threads
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        image: str,
        trigger: str,
        sdk_count: int,
        workflow: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        lines = ["\nRUN STARTED", f"Image: {image}", f"Trigger: {trigger}"]
        if workflow:
            lines.append(f"Workflow: {workflow}")
        lines.extend([f"SDKs: {sdk_count}", ""])
        self._out(*lines)

    def print_service_starting(self, image: str, port: int) -> None:
        self._out(f"SERVICE: starting {image} on port {port}")

    def print_service_ready(self, base_url: str, waited: float) -> None:
        self._out(f"SERVICE: ready at {base_url} ({waited:.1f}s)")

    def print_service_stopped(self, base_url: str) -> None:
        self._out(f"SERVICE: stopped ({base_url})")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"\n[{name}] JOB STARTED")

    def print_step(self, job: str, index: int, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP {index}: {name}")

    def print_job_finished(self, execution: JobExecution) -> None:
        status = _STATUS_DISPLAY[execution.status]
        if execution.status is JobStatus.PASSED:
            self._out(f"[{execution.sdk}] STATUS: {status}")
            return
        lines = [f"[{execution.sdk}] STATUS: {status}"]
        if execution.error:
            lines.append(f"[{execution.sdk}] Reason: {execution.error}")
        if self.debug and execution.output_tail:
            lines.append(execution.output_tail)
        self._out(*lines)

    def print_summary(self, summary: PipelineSummary) -> None:
        """Print final per-SDK results table."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40, f"Image: {summary.image.image}"]
        width = max((len(r.sdk) for r in summary.results), default=0)
        for r in summary.results:
            line = f"  {r.sdk.ljust(width)}  {_STATUS_DISPLAY[r.status]}"
            if r.failed_step is not None:
                line += f" (step {r.failed_step}: {r.failed_step_name})"
            elif r.status is JobStatus.ERRORED and r.error:
                line += f" ({r.error.splitlines()[0]})"
            lines.append(line)
        if summary.cause:
            lines.append(f"Cause: {summary.cause}")
        lines.append(f"Pipeline: {summary.status.upper()}")
        self._out(*lines)

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
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_agent_started(
        self,
        agent_id: str,
        api: str,
        poll_interval: int,
    ) -> None:
        """Print agent start information."""
        self._out(
            "\nAGENT STARTED",
            f"Agent ID: {agent_id}",
            f"API: {api}",
            f"Polling every: {poll_interval}s",
            "",
        )

    def print_lease_acquired(self, run_id: str, trigger: str, docker_image: Optional[str]) -> None:
        """Print lease acquisition message."""
        self._out(
            "\nLEASE ACQUIRED",
            f"Run ID: {run_id}",
            f"Trigger: {trigger}",
            f"Docker image: {docker_image or '(default)'}",
        )

    def print_execution_complete(
        self,
        status: str,
        duration: Optional[float] = None,
    ) -> None:
        """Print execution completion message."""
        lines = ["\nEXECUTION COMPLETE", f"Status: {status}"]
        if duration is not None:
            lines.append(f"Duration: {duration:.1f}s")
        self._out(*lines)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


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
