# runner.py
from __future__ import annotations

import os
import re
import runpy
import shutil
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .cross import CrossHelper
from .errors import CIError, StepFailure, failure_kind
from .gate import AggregationPolicy, blocked_by, build_graph, released_by, resolve_needs, run_status
from .model import FAILED, OK, SKIPPED, Job, JobResult, Step, Workflow
from .settings import Settings
from .step_workflows.rust import CROSS, TOOLCHAIN
from .toolchain import ToolchainProvisioner
from .triggers import Decision, Event
from .ui.console import get_console
from .worker import Worker


TOOL_HINTS = {
    "cargo": "Install Rust (rustup) or fix PATH ($HOME/.cargo/bin).",
    "rustc": "Install Rust (rustup) or fix PATH ($HOME/.cargo/bin).",
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "cross": "Add an 'Install Cross' step before running cross.",
    "docker": "cross needs Docker or Podman; install one and ensure the daemon is running.",
    "curl": "Install curl or fix PATH.",
}


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define one of:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...)
      - JOBS = [Job, ...]   (optionally with TRIGGERS = on(...))
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"crossci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    loaded = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        loaded = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        loaded = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        loaded = globals_dict["JOBS"]

    if isinstance(loaded, list) and all(isinstance(j, Job) for j in loaded):
        loaded = Workflow(name=wf_path.stem, jobs=loaded, triggers=globals_dict.get("TRIGGERS"))

    if not isinstance(loaded, Workflow):
        raise TypeError(
            "Workflow file must return/define a Workflow or a List[Job]. "
            "Define workflow() -> Workflow, WORKFLOW = pipeline(...) or JOBS = [Job, ...]."
        )
    return loaded


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------

@dataclass
class Plan:
    decision: Decision
    selected: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)   # name -> reason


def plan_pipeline(workflow: Workflow, event: Optional[Event] = None) -> Plan:
    """
    Decide which jobs may start for `event` without running anything.

    No event means a manual run: triggers are bypassed. Jobs gated on
    drafts are skipped for draft pull requests, and so is everything
    downstream of a skipped job.
    """
    by_name, adj, _indeg = build_graph(workflow.jobs)

    if event is None:
        decision = Decision(True, "manual run")
    elif workflow.triggers is None:
        decision = Decision(True, f"{event.kind} (no trigger filters)")
    else:
        decision = workflow.triggers.evaluate(event)

    plan = Plan(decision=decision)
    if not decision.fired:
        return plan

    for j in workflow.jobs:
        if event is not None and event.is_draft_pr and j.skip_drafts:
            plan.skipped[j.name] = "draft pull request"

    for name in list(plan.skipped):
        for n in blocked_by(name, adj):
            plan.skipped.setdefault(n, f"blocked by {name}")

    plan.selected = [j.name for j in workflow.jobs if j.name not in plan.skipped]
    return plan


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_step(job: Job, step: Step, worker: Worker, settings: Settings) -> None:
    console = get_console()
    data = step.data or {}

    if step.kind == TOOLCHAIN:
        provisioner = ToolchainProvisioner(
            worker,
            channel=data.get("channel", settings.toolchain_channel),
            profile=data.get("profile", settings.toolchain_profile),
            installer_url=settings.rustup_init_url,
        )
        state = provisioner.ensure_toolchain()
        console.print_provisioned(job.name, "toolchain", f"{state.action} ({state.version})")
        return

    if step.kind == CROSS:
        helper = CrossHelper(
            version=data.get("version", settings.cross_version),
            host=data.get("host", settings.cross_host),
        )
        dest = helper.install(worker)
        console.print_provisioned(job.name, "cross", f"{helper.version} -> {dest}")
        return

    if step.kind is not None:
        raise ValueError(f"[{job.name}] step '{step.name}' has unknown kind {step.kind!r}")

    result = worker.run(step.run, shell=True, cwd=step.cwd)
    if console.debug and result.stdout:
        console.print_debug(result.stdout)
    if not result.ok:
        raise StepFailure(
            job=job.name,
            step=step.name,
            cmd=step.run,
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )


def _hint_for(exc: BaseException) -> Optional[str]:
    if isinstance(exc, StepFailure) and exc.exit_code == 127:
        tool = exc.cmd.split()[0] if exc.cmd.split() else ""
        return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
    return None


def job_workspace(job: Job, repo_root: str | Path, base: str | Path) -> Tuple[Path, Path]:
    """
    Private (checkout, home) for one job under `base`.

    The checkout is a copy of `repo_root` without build output, so jobs
    running side by side never write into the same tree.
    """
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", job.name).strip("-") or "job"
    ws = Path(tempfile.mkdtemp(prefix=f"{slug}-", dir=base))
    checkout = ws / "checkout"
    shutil.copytree(
        Path(repo_root),
        checkout,
        symlinks=True,
        ignore=shutil.ignore_patterns("target", ".crossci"),
    )
    home = ws / "home"
    home.mkdir()
    return checkout, home


def execute_job(
    job: Job,
    repo_root: str | Path = ".",
    settings: Optional[Settings] = None,
    *,
    home: str | Path | None = None,
) -> JobResult:
    """
    Run one job on a fresh worker: a linear sequence of blocking steps.

    Never raises for job failures; the outcome is the returned JobResult.
    """
    settings = settings or Settings()
    console = get_console()
    worker = Worker(repo_root, env=dict(os.environ), home=home)
    worker.env.update(job.env)
    target = job.target.triple if job.target else None

    console.print_job_start(job.name)
    start = time.time()
    try:
        for step in job.steps:
            console.print_step(job.name, step.name)
            try:
                _run_step(job, step, worker, settings)
            except CIError as e:
                e.job = e.job or job.name
                e.step = e.step or step.name
                raise
    except Exception as e:
        reason = str(e).split("\n")[0]
        if isinstance(e, StepFailure) and e.stderr:
            reason = f"{reason}\n{e.stderr.strip()}"
        console.print_failure(
            job.name,
            reason,
            exit_code=getattr(e, "exit_code", None),
            hint=_hint_for(e),
        )
        return JobResult(
            name=job.name,
            status=FAILED,
            reason=str(e).split("\n")[0],
            failure_kind=failure_kind(e, is_matrix=job.is_matrix),
            duration=time.time() - start,
            target=target,
        )

    console.print_job_done(job.name, OK)
    return JobResult(name=job.name, status=OK, duration=time.time() - start, target=target)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

@dataclass
class PipelineReport:
    workflow: str
    triggered: bool
    reason: str
    status: str                                   # ok | failed | skipped
    results: Dict[str, JobResult] = field(default_factory=dict)
    started: List[str] = field(default_factory=list)   # in start order

    @property
    def failed(self) -> bool:
        return self.status == FAILED


def run_pipeline(
    workflow: Workflow,
    event: Optional[Event] = None,
    *,
    repo_root: str | Path = ".",
    settings: Optional[Settings] = None,
    max_workers: Optional[int] = None,
    policy: AggregationPolicy | str | None = None,
    fail_fast: bool = False,
    execute: Optional[Callable[[Job], JobResult]] = None,
) -> PipelineReport:
    """
    Evaluate triggers, then run the job graph on a thread pool.

    A job starts only after every job it needs reported ok. A failed job
    blocks its dependents (reported as skipped) and nothing else; sibling
    matrix jobs are independent unless fail_fast is set.

    Each job gets its own copy of `repo_root` and its own toolchain home,
    removed when the run ends.
    """
    settings = settings or Settings()
    policy = AggregationPolicy(policy or settings.aggregation or workflow.policy)
    if execute is None:
        repo_root_p = Path(repo_root).resolve()
        with tempfile.TemporaryDirectory(prefix="crossci-run-") as base:
            def isolated(j: Job) -> JobResult:
                checkout, home = job_workspace(j, repo_root_p, base)
                return execute_job(j, checkout, settings, home=home)

            return _run_graph(workflow, event, settings, max_workers, policy, fail_fast, isolated)
    return _run_graph(workflow, event, settings, max_workers, policy, fail_fast, execute)


def _run_graph(
    workflow: Workflow,
    event: Optional[Event],
    settings: Settings,
    max_workers: Optional[int],
    policy: AggregationPolicy,
    fail_fast: bool,
    execute: Callable[[Job], JobResult],
) -> PipelineReport:
    console = get_console()
    plan = plan_pipeline(workflow, event)
    console.print_trigger(plan.decision.fired, plan.decision.reason)
    if not plan.decision.fired:
        return PipelineReport(
            workflow=workflow.name,
            triggered=False,
            reason=plan.decision.reason,
            status=SKIPPED,
        )

    by_name, adj, _indeg = build_graph(workflow.jobs)
    needs = resolve_needs(workflow.jobs)

    results: Dict[str, JobResult] = {}
    statuses: Dict[str, str] = {}
    for name, reason in plan.skipped.items():
        console.print_plan_job_skipped(name, reason)
        results[name] = JobResult(name=name, status=SKIPPED, reason=reason)
        statuses[name] = SKIPPED

    ready: List[str] = [n for n in plan.selected if not needs[n]]
    queued = set(ready)
    started: List[str] = []
    stop = False

    if max_workers is None:
        max_workers = settings.max_workers
    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    in_flight: Dict = {}

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            # schedule all currently ready
            while ready and not stop:
                name = ready.pop(0)
                started.append(name)
                fut = pool.submit(execute, by_name[name])
                in_flight[fut] = name

            if not in_flight:
                break

            # wait for one completion, then loop to schedule newly-ready jobs
            fut = next(as_completed(list(in_flight.keys())))
            name = in_flight.pop(fut)
            job = by_name[name]

            try:
                result = fut.result()
            except Exception as e:
                result = JobResult(
                    name=name,
                    status=FAILED,
                    reason=str(e).split("\n")[0],
                    failure_kind=failure_kind(e, is_matrix=job.is_matrix),
                    target=job.target.triple if job.target else None,
                )
            results[name] = result
            statuses[name] = result.status

            if result.status == OK:
                for nxt in released_by(name, statuses, needs):
                    if nxt not in queued:
                        queued.add(nxt)
                        ready.append(nxt)
            else:
                for n in blocked_by(name, adj):
                    if n not in results:
                        results[n] = JobResult(name=n, status=SKIPPED, reason=f"blocked by {name}")
                        statuses[n] = SKIPPED
                if fail_fast:
                    stop = True

    for name in plan.selected:
        if name not in results:
            results[name] = JobResult(name=name, status=SKIPPED, reason="fail-fast")
            statuses[name] = SKIPPED

    ordered = {j.name: results[j.name] for j in workflow.jobs if j.name in results}
    return PipelineReport(
        workflow=workflow.name,
        triggered=True,
        reason=plan.decision.reason,
        status=run_status(statuses, policy, matrix_jobs=[j.name for j in workflow.jobs if j.is_matrix]),
        results=ordered,
        started=started,
    )
