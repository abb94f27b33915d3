# src/crossci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .model import Job, Step, Target, Workflow
from .triggers import Triggers


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    runs_on: str = "ubuntu-latest",
    skip_drafts: bool = True,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        env={k: str(v) for k, v in (env or {}).items()},
        runs_on=runs_on,
        skip_drafts=skip_drafts,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Matrix expander: one job per value, all sharing a template name.

    Example:
        matrix("target", ["aarch64-unknown-linux-musl", ...]).jobs(
            lambda t: job(f"cross-test ({t})", sh(...), needs=["test"]),
            template="cross-test",
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)
        if not self.values:
            raise ValueError(f"matrix({key!r}) needs at least one value")
        if len(set(map(str, self.values))) != len(self.values):
            raise ValueError(f"matrix({key!r}) has duplicate values: {self.values}")
        if key == "target":
            # fail at definition time, not when the job runs
            for v in self.values:
                Target.parse(str(v))

    def jobs(self, builder: Callable[[Any], Job], *, template: Optional[str] = None) -> List[Job]:
        out: List[Job] = []
        for v in self.values:
            j = builder(v)
            out.append(replace(j, matrix={**j.matrix, self.key: str(v)}, template=template or j.template))
        return out


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helpers
# ---------------------------------------------------------------------

def wf(*jobs: Job | List[Job]) -> List[Job]:
    """
    Flatten jobs (and lists of matrix jobs) into one job list.

        def workflow():
            return wf(job(...), matrix(...).jobs(...))
    """
    out: List[Job] = []
    for j in jobs:
        if isinstance(j, list):
            out.extend(j)
        else:
            out.append(j)
    return out


def pipeline(
    name: str,
    *jobs: Job | List[Job],
    on: Optional[Triggers] = None,
    policy: str = "native-gate",
) -> Workflow:
    """A workflow with triggers. Without `on` it runs for every event."""
    return Workflow(name=name, jobs=wf(*jobs), triggers=on, policy=policy)
