# agent/api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Optional
from urllib.parse import urljoin

from .models import Lease


class APIError(Exception):
    """Raised when a control-plane request fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class APIClient:
    """HTTP client for the crossci control plane."""

    def __init__(self, base_url: str, agent_id: str):
        """
        Args:
            base_url: Base URL of the API (e.g., "http://localhost:8000")
            agent_id: Unique identifier for this agent instance
        """
        self.base_url = base_url.rstrip("/")
        self.agent_id = agent_id

    def _request(self, method: str, path: str, data: Optional[dict] = None) -> dict:
        """
        Make a JSON request and return the decoded body ({} when empty).

        Raises:
            APIError: HTTP error status, network error or invalid JSON
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        req_data = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            url,
            data=req_data,
            headers={"Content-Type": "application/json"},
            method=method,
        )

        try:
            with urllib.request.urlopen(req) as response:
                if response.status == 204:
                    return {}
                body = response.read().decode("utf-8")
                return json.loads(body) if body else {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}", status=e.code)
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def claim_lease(self) -> Optional[Lease]:
        """Lease the next startable job, or None when the queue is empty."""
        response = self._request("POST", "/leases/claim", data={"agent_id": self.agent_id})
        if not response:
            return None
        try:
            return Lease.from_dict(response)
        except (KeyError, TypeError) as e:
            raise APIError(f"Malformed lease response: {e}")

    def complete_lease(self, job_id: str, status: str, details: dict) -> dict:
        """
        Report the outcome of a leased job.

        Args:
            job_id: ID of the job
            status: "ok" or "failed"
            details: logs, results, error
        """
        if status not in ("ok", "failed"):
            status = "failed"
        return self._request(
            "POST",
            f"/leases/{job_id}/complete",
            data={"agent_id": self.agent_id, "status": status, "details": details},
        )
