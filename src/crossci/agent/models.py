# agent/models.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class Lease:
    """A job leased from the control plane (ClaimedJob response)."""
    job_id: str
    run_id: str
    job_name: str
    payload_json: Dict[str, Any]  # {"repo_url", "ref", "job"}
    lease_expires_at: str  # ISO format timestamp

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Lease:
        return cls(
            job_id=data["job_id"],
            run_id=data["run_id"],
            job_name=data["job_name"],
            payload_json=data["payload_json"],
            lease_expires_at=data["lease_expires_at"],
        )

    @property
    def repo_url(self) -> str:
        return self.payload_json.get("repo_url", "")

    @property
    def ref(self) -> str:
        return self.payload_json.get("ref", "HEAD")

    @property
    def job(self) -> Dict[str, Any]:
        return self.payload_json.get("job", self.payload_json)


@dataclass
class ExecutionResult:
    """Outcome of executing one leased job."""
    status: str  # "ok" | "failed"
    logs: str
    job_results: Dict[str, Any]
    error: Optional[str] = None

    def to_details(self) -> Dict[str, Any]:
        return {
            "logs": self.logs,
            "results": self.job_results,
            "error": self.error,
        }
