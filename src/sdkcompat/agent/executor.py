# agent/executor.py
from __future__ import annotations

import io
import sys
import threading
from pathlib import Path
from typing import Optional

from sdkcompat.config import PipelineConfig
from sdkcompat.notify import Notifier
from sdkcompat.runner import load_workflow, run_pipeline, select_sdks

from .models import ExecutionResult, Lease


class LogCapture:
    """
    Context manager that captures stdout/stderr for later submission to API.

    Logs are captured in a buffer and sent at run completion via complete_lease().
    Console output from every SDK worker thread ends up in the same buffer.
    """

    def __init__(self):
        self.log_buffer = io.StringIO()
        self.original_stdout = sys.stdout
        self.original_stderr = sys.stderr

    def __enter__(self):
        self.original_stdout = sys.stdout
        self.original_stderr = sys.stderr
        sys.stdout = self
        sys.stderr = self
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        sys.stdout = self.original_stdout
        sys.stderr = self.original_stderr

    def write(self, text: str) -> int:
        """Write to buffer."""
        self.log_buffer.write(text)
        return len(text)

    def flush(self) -> None:
        """Flush buffer (no-op, logs are sent at completion)."""
        pass

    def get_logs(self) -> str:
        """Get all captured logs."""
        return self.log_buffer.getvalue()


def execute_lease(
    lease: Lease,
    workflow_path: Path,
    config: Optional[PipelineConfig] = None,
    notifier: Optional[Notifier] = None,
    cancel: Optional[threading.Event] = None,
) -> ExecutionResult:
    """
    Run the pipeline a lease asks for.

    The workflow is reloaded for every lease so edits are picked up without
    restarting the agent. Setting `cancel` stops the SDK jobs in flight.
    """
    log_capture = LogCapture()
    summary: dict = {}
    error: Optional[str] = None

    try:
        with log_capture:
            specs = select_sdks(load_workflow(workflow_path), lease.sdks)
            result = run_pipeline(
                specs,
                trigger=lease.trigger,
                docker_image=lease.docker_image,
                config=config,
                notifier=notifier,
                cancel=cancel,
                workflow_name=workflow_path.name,
            )
            summary = result.to_dict()
            status = result.status
    except Exception as e:
        status = "failed"
        error = f"{type(e).__name__}: {e}"

    logs = log_capture.get_logs()
    if error and error not in logs:
        logs = f"{logs}\nError: {error}" if logs else error

    return ExecutionResult(status=status, logs=logs, summary=summary, error=error)
