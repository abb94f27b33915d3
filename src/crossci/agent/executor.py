# agent/executor.py
from __future__ import annotations

import io
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from crossci.model import FAILED, OK, Job, Step
from crossci.runner import execute_job
from crossci.settings import Settings

from .models import ExecutionResult, Lease


class LogCapture:
    """
    Context manager that captures stdout/stderr for the lease completion call.

    Everything printed while a job runs (console output, errors during
    checkout) ends up in the buffer, even if an exception escapes.
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
        self.log_buffer.write(text)
        return len(text)

    def flush(self) -> None:
        pass

    def get_logs(self) -> str:
        return self.log_buffer.getvalue()


def _git(args: list[str], cwd: Optional[Path] = None) -> None:
    result = subprocess.run(["git", *args], cwd=cwd, check=False, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"git {args[0]} failed: {result.stderr.strip()}")


def checkout(repo_url: str, ref: str, work_dir: Path, job_id: str) -> Path:
    """
    Fresh checkout of `ref` for one job.

    Every job gets its own directory, so no build state is shared
    between jobs leased by the same agent.
    """
    work_dir.mkdir(parents=True, exist_ok=True)
    repo_name = repo_url.rstrip("/").split("/")[-1].replace(".git", "")
    repo_path = work_dir / f"{repo_name}-{job_id}"

    try:
        if not repo_path.exists():
            _git(["clone", repo_url, str(repo_path)])
        else:
            _git(["fetch", "origin"], cwd=repo_path)
        _git(["checkout", ref], cwd=repo_path)
    except FileNotFoundError:
        raise RuntimeError("git command not found. Please install Git.")

    return repo_path


def job_to_dict(job: Job) -> Dict[str, Any]:
    """Serialize a Job for the control plane. Inverse of dict_to_job()."""
    steps = []
    for step in job.steps:
        step_dict: Dict[str, Any] = {"name": step.name, "run": step.run}
        if step.cwd is not None:
            step_dict["cwd"] = step.cwd
        if step.kind is not None:
            step_dict["kind"] = step.kind
        if step.data is not None:
            step_dict["data"] = step.data
        steps.append(step_dict)

    return {
        "name": job.name,
        "steps": steps,
        "needs": list(job.needs),
        "env": dict(job.env),
        "runs_on": job.runs_on,
        "skip_drafts": job.skip_drafts,
        "matrix": dict(job.matrix),
        "template": job.template,
    }


def dict_to_job(job_dict: Dict[str, Any]) -> Job:
    steps = [
        Step(
            name=s["name"],
            run=s.get("run", ""),
            cwd=s.get("cwd"),
            kind=s.get("kind"),
            data=s.get("data"),
        )
        for s in job_dict.get("steps", [])
    ]
    return Job(
        name=job_dict["name"],
        steps=steps,
        needs=list(job_dict.get("needs", [])),
        env=dict(job_dict.get("env", {})),
        runs_on=job_dict.get("runs_on", "ubuntu-latest"),
        skip_drafts=job_dict.get("skip_drafts", True),
        matrix=dict(job_dict.get("matrix", {})),
        template=job_dict.get("template"),
    )


def execute_lease(
    lease: Lease,
    work_dir: Path,
    settings: Optional[Settings] = None,
) -> ExecutionResult:
    """
    Check out the leased ref and run the job on a fresh worker.

    Returns:
        ExecutionResult with status, captured logs and the job result
    """
    log_capture = LogCapture()
    job_results: Dict[str, Any] = {}

    try:
        with log_capture:
            repo_path = checkout(lease.repo_url, lease.ref, work_dir, lease.job_id)
            home = Path(work_dir) / f"home-{lease.job_id}"
            home.mkdir(parents=True, exist_ok=True)
            job = dict_to_job(lease.job)
            result = execute_job(job, repo_path, settings, home=home)
        job_results = {
            "job_name": result.name,
            "status": result.status,
            "reason": result.reason,
            "failure_kind": result.failure_kind,
            "target": result.target,
        }
        status = OK if result.status == OK else FAILED
        error = result.reason or None
        logs = log_capture.get_logs()
    except Exception as e:
        status = FAILED
        error = str(e)
        logs = log_capture.get_logs()
        logs = f"{logs}\nError: {error}" if logs else error
        job_results = {"error": error, "error_type": type(e).__name__}

    return ExecutionResult(status=status, logs=logs, job_results=job_results, error=error)
