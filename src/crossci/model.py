# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

OK = "ok"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None

    # None -> plain shell step. Typed steps ("toolchain", "cross") are
    # dispatched by the runner instead of being sent to the shell.
    kind: str | None = None
    data: Dict[str, Any] | None = None


@dataclass(frozen=True)
class Target:
    """
    A cross-compilation target triple, e.g. ``aarch64-unknown-linux-musl``.

    The triple is kept verbatim; ``arch`` and ``libc`` are derived from it.
    """
    triple: str

    @classmethod
    def parse(cls, value: str | Target) -> Target:
        if isinstance(value, Target):
            return value
        value = value.strip()
        if value.count("-") < 2:
            raise ValueError(f"Not a target triple: {value!r}")
        return cls(value)

    @property
    def arch(self) -> str:
        return self.triple.split("-")[0]

    @property
    def libc(self) -> str:
        # last component is the environment/ABI (musl, gnu, musleabi, ...)
        return self.triple.split("-")[-1]

    @property
    def short(self) -> str:
        return f"{self.arch}-{self.libc}"

    def __str__(self) -> str:
        return self.triple


@dataclass
class Job:
    """
    A CI job: steps + dependencies + gating metadata.

    Matrix instances carry the values they were expanded with in `matrix`
    and the name of their template in `template`, so other jobs can
    `needs` the whole group by template name.
    """
    name: str
    steps: list[Step]

    needs: list[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    runs_on: str = "ubuntu-latest"

    # pull_request.draft == false
    skip_drafts: bool = True

    matrix: Dict[str, str] = field(default_factory=dict)
    template: Optional[str] = None

    @property
    def target(self) -> Optional[Target]:
        value = self.matrix.get("target")
        return Target.parse(value) if value else None

    @property
    def is_matrix(self) -> bool:
        return bool(self.matrix)


@dataclass
class JobResult:
    name: str
    status: str                    # ok | failed | skipped
    reason: str = ""
    failure_kind: str | None = None
    duration: float | None = None
    target: Optional[str] = None

    @property
    def started(self) -> bool:
        return self.status != SKIPPED


@dataclass
class Workflow:
    """A named set of jobs plus the triggers that decide whether it runs at all."""
    name: str
    jobs: List[Job]
    triggers: Any = None           # crossci.triggers.Triggers; None -> always runs
    policy: str = "native-gate"
