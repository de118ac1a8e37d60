# agent/agent.py
from __future__ import annotations

import signal
import threading
import time
from pathlib import Path
from typing import Optional

from sdkcompat.config import PipelineConfig
from sdkcompat.notify import Notifier
from sdkcompat.ui.console import get_console

from .api_client import APIClient, APIError
from .executor import execute_lease
from .models import Lease


class Agent:
    """Polls the control plane for queued pipeline runs and executes them."""

    def __init__(
        self,
        api_url: str,
        agent_id: str,
        workflow_path: Path,
        poll_interval: int = 5,
        config: Optional[PipelineConfig] = None,
        notifier: Optional[Notifier] = None,
    ):
        """
        Initialize agent.

        Args:
            api_url: Base URL of the API
            agent_id: Unique identifier for this agent instance
            workflow_path: Workflow file defining the SDK jobs
            poll_interval: Seconds to wait between polls when no runs are queued
        """
        self.api_client = APIClient(api_url, agent_id)
        self.workflow_path = workflow_path
        self.poll_interval = poll_interval
        self.config = config or PipelineConfig()
        self.notifier = notifier
        self.running = True
        # Shared with the run in progress so a shutdown signal cancels it
        self.cancel = threading.Event()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        get_console().print_info(f"\nReceived signal {signum}, shutting down gracefully...")
        self.running = False
        self.cancel.set()

    def run_once(self) -> bool:
        """Claim and execute at most one run. Returns True if a run was executed."""
        lease = self.api_client.claim_lease()
        if lease is None:
            return False
        get_console().print_lease_acquired(
            run_id=lease.run_id,
            trigger=lease.trigger,
            docker_image=lease.docker_image,
        )
        self._execute_lease(lease)
        return True

    def run(self) -> None:
        """Run the agent loop."""
        console = get_console()
        console.print_agent_started(
            agent_id=self.api_client.agent_id,
            api=self.api_client.base_url,
            poll_interval=self.poll_interval,
        )

        while self.running:
            try:
                if not self.run_once():
                    time.sleep(self.poll_interval)
            except APIError as e:
                console.print_error(
                    "API error",
                    str(e),
                    suggestion="Check API connectivity and retry.",
                )
                time.sleep(self.poll_interval)

        console.print_info("Agent stopped.")

    def _execute_lease(self, lease: Lease) -> None:
        """Execute a single lease and report back."""
        console = get_console()
        start_time = time.time()

        result = execute_lease(lease, self.workflow_path, self.config, self.notifier, cancel=self.cancel)

        try:
            self.api_client.complete_lease(
                lease.run_id,
                result.status,
                result.summary,
                logs=result.logs,
                error=result.error,
            )
        except APIError as e:
            console.print_error(
                "Failed to send completion",
                f"Could not send completion status to API: {e}",
            )

        console.print_execution_complete(
            status=result.status,
            duration=time.time() - start_time,
        )
        if console.debug and result.logs:
            console.print_info(f"\nLogs for run {lease.run_id}:")
            console.print_info("=" * 60)
            console.print_info(result.logs)
            console.print_info("=" * 60)


def run_agent(
    api_url: str,
    agent_id: str,
    workflow_path: Path,
    poll_interval: int = 5,
    config: Optional[PipelineConfig] = None,
    notifier: Optional[Notifier] = None,
) -> None:
    """Run the sdkcompat agent loop until a shutdown signal arrives."""
    agent = Agent(api_url, agent_id, workflow_path, poll_interval, config, notifier)
    agent.install_signal_handlers()
    agent.run()
