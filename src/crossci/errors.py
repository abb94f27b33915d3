# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - per-job failure classification
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str = ""
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ProvisioningFailure(CIError):
    """Toolchain or helper installation failed. Fatal to the job, never retried."""

    def __init__(self, message: str, *, job: str = "", step: str | None = None, details: dict | None = None):
        super().__init__(
            kind="provisioning_failure",
            message=message,
            job=job,
            step=step,
            details=details or {},
        )


@dataclass(eq=False)
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


NATIVE_TEST_FAILURE = "native_test_failure"
TARGET_FAILURE = "target_failure"


def failure_kind(exc: BaseException, *, is_matrix: bool) -> str:
    """Map an exception raised by a job onto the pipeline's error taxonomy."""
    if isinstance(exc, CIError):
        return exc.kind
    return TARGET_FAILURE if is_matrix else NATIVE_TEST_FAILURE
