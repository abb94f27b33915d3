# agent/agent.py
from __future__ import annotations

import signal
import time
from pathlib import Path
from typing import Optional

from crossci.settings import Settings
from crossci.ui.console import get_console

from .api_client import APIClient, APIError
from .executor import execute_lease
from .models import Lease


class Agent:
    """Polls the control plane for startable jobs and runs them one at a time."""

    def __init__(
        self,
        api_url: str,
        agent_id: str,
        poll_interval: int = 5,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            api_url: Base URL of the API
            agent_id: Unique identifier for this agent instance
            poll_interval: Seconds to wait between polls when no jobs available
        """
        self.settings = settings or Settings()
        self.api_client = APIClient(api_url, agent_id)
        self.poll_interval = poll_interval
        self.work_dir = Path(self.settings.work_dir)
        self.running = True

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        get_console().print_info(f"\nReceived signal {signum}, shutting down gracefully...")
        self.running = False

    def run(self) -> None:
        console = get_console()
        console.print_agent_started(
            agent_id=self.api_client.agent_id,
            api=self.api_client.base_url,
            poll_interval=self.poll_interval,
        )

        while self.running:
            try:
                lease = self.api_client.claim_lease()
                if lease:
                    console.print_lease_acquired(job_name=lease.job_name, run_id=lease.run_id)
                    self._execute_lease(lease)
                else:
                    time.sleep(self.poll_interval)
            except APIError as e:
                console.print_error("API error", str(e), suggestion="Check API connectivity and retry.")
                time.sleep(self.poll_interval)

        console.print_info("Agent stopped.")

    def _execute_lease(self, lease: Lease) -> None:
        console = get_console()
        start_time = time.time()

        result = execute_lease(lease, self.work_dir, self.settings)
        self.api_client.complete_lease(lease.job_id, result.status, result.to_details())

        console.print_execution_complete(status=result.status, duration=time.time() - start_time)
        if console.debug and result.logs:
            console.print_info(f"\nLogs for {lease.job_name}:")
            console.print_info("=" * 60)
            console.print_info(result.logs)
            console.print_info("=" * 60)


def run_agent(api_url: str, agent_id: str, poll_interval: int = 5) -> None:
    Agent(api_url, agent_id, poll_interval).run()
