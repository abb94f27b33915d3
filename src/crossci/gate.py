# gate.py
# Dependency gating shared by the local runner and the control plane:
#   - which jobs a job waits for (needs, with matrix templates expanded)
#   - which jobs become ready when one finishes
#   - which jobs are blocked for good when one fails
#   - how per-job results roll up into one run status
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .model import FAILED, OK, SKIPPED, Job


class AggregationPolicy(str, Enum):
    # run is ok when every non-matrix job passed; target failures are reported only
    NATIVE_GATE = "native-gate"
    # every started job must pass
    ALL_TARGETS = "all-targets"


def resolve_needs(jobs: Iterable[Job]) -> Dict[str, Set[str]]:
    """
    Map each job name to the concrete job names it waits for.

    A `needs` entry may name a job directly or a matrix template, in which
    case the job waits for every instance expanded from it.
    """
    jobs = list(jobs)
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ValueError(f"Duplicate job names found: {dupes}")

    groups: Dict[str, Set[str]] = {}
    for j in jobs:
        groups.setdefault(j.name, set()).add(j.name)
        if j.template:
            groups.setdefault(j.template, set()).add(j.name)

    resolved: Dict[str, Set[str]] = {}
    for j in jobs:
        deps: Set[str] = set()
        for need in j.needs:
            if need not in groups:
                raise ValueError(
                    f"Job '{j.name}' needs missing job '{need}'. "
                    f"Known jobs: {sorted(groups)}"
                )
            deps |= groups[need]
        if j.name in deps:
            raise ValueError(f"Job '{j.name}' needs itself")
        resolved[j.name] = deps
    return resolved


def build_graph(jobs: Iterable[Job]) -> Tuple[Dict[str, Job], Dict[str, Set[str]], Dict[str, int]]:
    """
    Returns (by_name, adj, indeg) where adj maps a job to its dependents.

    Raises ValueError on duplicates, missing dependencies or cycles.
    """
    jobs = list(jobs)
    needs = resolve_needs(jobs)
    by_name = {j.name: j for j in jobs}

    adj = dependents(needs)                                     # dep -> dependents
    indeg: Dict[str, int] = {name: len(deps) for name, deps in needs.items()}

    topo_levels(adj, indeg)  # cycle check
    return by_name, adj, indeg


def topo_levels(adj: Mapping[str, Set[str]], indeg: Mapping[str, int]) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages).
    Jobs within a level have no ordering between them.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level: List[str] = []
        for _ in range(len(q)):
            node = q.popleft()
            level.append(node)
            processed += 1
            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ValueError(f"Job graph has a cycle. Stuck jobs: {remaining}")

    return levels


def released_by(
    name: str,
    statuses: Mapping[str, str],
    needs: Mapping[str, Set[str]],
) -> List[str]:
    """
    Jobs that become startable now that `name` finished ok: every one of
    their dependencies is ok and they have no status yet.
    """
    if statuses.get(name) != OK:
        return []
    out = []
    for job, deps in needs.items():
        if name not in deps or job in statuses:
            continue
        if all(statuses.get(d) == OK for d in deps):
            out.append(job)
    return sorted(out)


def blocked_by(name: str, adj: Mapping[str, Set[str]]) -> List[str]:
    """Every job transitively downstream of `name`; none of them may start once it has not passed."""
    seen: Set[str] = set()
    stack = list(adj.get(name, ()))
    while stack:
        n = stack.pop()
        if n in seen:
            continue
        seen.add(n)
        stack.extend(adj.get(n, ()))
    return sorted(seen)


def dependents(needs: Mapping[str, Set[str]]) -> Dict[str, Set[str]]:
    """Invert resolved needs: job -> jobs that wait for it."""
    adj: Dict[str, Set[str]] = {name: set() for name in needs}
    for name, deps in needs.items():
        for d in deps:
            adj.setdefault(d, set()).add(name)
    return adj


def run_status(
    statuses: Mapping[str, str],
    policy: AggregationPolicy | str = AggregationPolicy.NATIVE_GATE,
    matrix_jobs: Iterable[str] = (),
) -> str:
    """
    Roll per-job statuses up into one run status (ok | failed).

    Skipped jobs are ignored; a skip caused by a failed dependency is
    already covered by that dependency's failure. Under NATIVE_GATE a
    failure of a job listed in `matrix_jobs` does not fail the run.
    """
    policy = AggregationPolicy(policy)
    tolerated = set(matrix_jobs) if policy is AggregationPolicy.NATIVE_GATE else set()
    for name, status in statuses.items():
        if status == FAILED and name not in tolerated:
            return FAILED
    return OK


FINISHED = (OK, FAILED, SKIPPED)


@dataclass
class Settlement:
    """What one finished job does to the rest of its run."""
    released: List[str] = field(default_factory=list)     # may start now
    skipped: Dict[str, str] = field(default_factory=dict)  # name -> reason
    run_status: Optional[str] = None                       # None while jobs are pending


def settle(
    name: str,
    statuses: Mapping[str, str],
    needs: Mapping[str, Set[str]],
    policy: AggregationPolicy | str = AggregationPolicy.NATIVE_GATE,
    matrix_jobs: Iterable[str] = (),
) -> Settlement:
    """
    Apply the outcome of `name` (already recorded in `statuses`) to a run.

    `statuses` maps every job of the run to its current status; anything
    other than ok/failed/skipped counts as pending. Released jobs and
    still-pending jobs keep the run open.
    """
    done = {n: s for n, s in statuses.items() if s in FINISHED}
    out = Settlement()

    if done.get(name) == OK:
        out.released = released_by(name, done, needs)
    elif name in done:
        for n in blocked_by(name, dependents(needs)):
            if n not in done:
                out.skipped[n] = f"blocked by {name}"
                done[n] = SKIPPED

    if not out.released and len(done) == len(statuses):
        out.run_status = run_status(done, policy, matrix_jobs)
    return out
