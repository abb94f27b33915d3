# cli.py
from __future__ import annotations

import json
import subprocess
import sys
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urljoin

import click

from crossci.agent.executor import job_to_dict
from crossci.cross import CrossHelper
from crossci.errors import CIError
from crossci.gate import AggregationPolicy, resolve_needs
from crossci.git_facts.git import changed_paths, current_branch, get_current_ref, get_remote_url
from crossci.runner import load_workflow, plan_pipeline, run_pipeline
from crossci.settings import Settings
from crossci.toolchain import ToolchainProvisioner
from crossci.triggers import PULL_REQUEST, PUSH, Event
from crossci.ui.console import Console, get_console, set_console
from crossci.worker import Worker


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory: crossci_workflow.py first, then *_workflow.py."""
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / "crossci_workflow.py"
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow file from the --workflow argument or by discovery.

    Raises:
        SystemExit: If no workflow, or more than one candidate, is found
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  crossci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  crossci_workflow.py",
                "  *_workflow.py",
            ],
            suggestion="Create a workflow file:\n  crossci_workflow.py\n\nOr specify a workflow explicitly:\n  crossci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  crossci run --workflow crossci_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def build_event(
    kind: Optional[str],
    branch: Optional[str],
    action: Optional[str],
    draft: bool,
    changed: Tuple[str, ...],
    git_diff: bool,
    compare_ref: str,
) -> Optional[Event]:
    """Event descriptor from CLI flags; None (manual run) when no --event is given."""
    if kind is None:
        return None

    paths = list(changed)
    if not paths and git_diff:
        paths = changed_paths(compare_ref)

    if kind == PUSH:
        if branch is None:
            try:
                branch = current_branch()
            except (subprocess.CalledProcessError, FileNotFoundError):
                branch = "HEAD"
        return Event.push(branch, paths)

    return Event.pull_request(action or "opened", branch or "master", paths, draft=draft)


def _exit_on_error(ctx, e: Exception) -> None:
    console = get_console()
    if isinstance(e, CIError):
        console.print_error(e.kind, e.message, details=[f"{k}={v}" for k, v in e.details.items()])
    else:
        console.print_exception(e)
    sys.exit(1)


def event_options(fn):
    """Options shared by `run`, `plan` and `submit` to describe the triggering event."""
    options = [
        click.option("--event", "event_kind", type=click.Choice([PUSH, PULL_REQUEST]), default=None,
                     help="Evaluate triggers for this event (omit for a manual run)"),
        click.option("--branch", default=None, help="Pushed branch, or PR base branch"),
        click.option("--action", default=None, help="pull_request action (opened, synchronize, ...)"),
        click.option("--draft/--no-draft", default=False, help="The pull request is a draft"),
        click.option("--changed", multiple=True, help="Changed path (repeatable)"),
        click.option("--git-diff/--no-git-diff", default=True, show_default=True,
                     help="Take changed paths from git when --changed is not given"),
        click.option("--compare-ref", default="origin/master", show_default=True, help="Git ref to diff against"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """crossci: native-then-cross-target test pipelines."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help="Workflow file path (defaults to crossci_workflow.py if present)",
)
@event_options
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--policy", type=click.Choice([p.value for p in AggregationPolicy]), default=None,
              help="How job results roll up into the run status (default: the workflow's)")
@click.option("--fail-fast/--no-fail-fast", default=False, help="Stop scheduling new jobs after first failure")
@click.pass_context
def run(ctx, workflow, event_kind, branch, action, draft, changed, git_diff, compare_ref, workers, policy, fail_fast):
    """Run a crossci workflow."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        try:
            repo_url = get_remote_url("origin")
            repo_name = repo_url.rstrip("/").split("/")[-1].replace(".git", "")
        except (subprocess.CalledProcessError, FileNotFoundError):
            repo_name = Path(".").resolve().name

        wf = load_workflow(workflow_path)
        event = build_event(event_kind, branch, action, draft, changed, git_diff, compare_ref)

        console.print_run_started(
            repository=repo_name,
            workflow=workflow_path.name,
            job_count=len(wf.jobs),
        )

        report = run_pipeline(
            wf,
            event,
            repo_root=".",
            settings=Settings(),
            max_workers=workers,
            policy=policy,
            fail_fast=fail_fast,
        )

        if report.triggered:
            console.print_results(report.results, report.status)

        if report.failed:
            sys.exit(1)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _exit_on_error(ctx, e)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path")
@event_options
@click.pass_context
def plan(ctx, workflow, event_kind, branch, action, draft, changed, git_diff, compare_ref):
    """Show which jobs an event would start, without running them."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path)
        event = build_event(event_kind, branch, action, draft, changed, git_diff, compare_ref)
        p = plan_pipeline(wf, event)
    except Exception as e:
        _exit_on_error(ctx, e)
        return

    console.print_trigger(p.decision.fired, p.decision.reason)
    if not p.decision.fired:
        return

    needs = resolve_needs(wf.jobs)
    console.print_header(f"Plan: {wf.name}")
    for name in p.selected:
        deps = sorted(needs[name])
        console.print_plan_job(name, f"after {', '.join(deps)}" if deps else "no dependencies")
    for name, reason in p.skipped.items():
        console.print_plan_job_skipped(name, reason)


@cli.command()
@click.option("--cross/--no-cross", "with_cross", default=False, help="Also install the pinned cross helper")
@click.pass_context
def provision(ctx, with_cross):
    """Ensure a current Rust toolchain on this machine (idempotent)."""
    console = get_console()
    settings = Settings()
    worker = Worker(".")

    try:
        provisioner = ToolchainProvisioner(
            worker,
            channel=settings.toolchain_channel,
            profile=settings.toolchain_profile,
            installer_url=settings.rustup_init_url,
        )
        state = provisioner.ensure_toolchain()
        console.print_info(f"Toolchain {state.action}: {state.version}")
        for tool, version in provisioner.versions().items():
            console.print_info(f"  {tool}: {version}")

        if with_cross:
            helper = CrossHelper(version=settings.cross_version, host=settings.cross_host)
            dest = helper.install(worker)
            console.print_info(f"cross {helper.version} installed at {dest}")
    except Exception as e:
        _exit_on_error(ctx, e)


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@click.option("--agent-id", default=None, help="Unique agent identifier (defaults to hostname)")
@click.option("--poll-interval", default=5, type=int, help="Polling interval in seconds when no jobs available")
@click.pass_context
def agent(ctx, api, agent_id, poll_interval):
    """Run the agent loop: lease jobs from the control plane and execute them."""
    import socket
    from crossci.agent.agent import run_agent

    console = get_console()

    if not agent_id:
        agent_id = socket.gethostname()

    try:
        run_agent(api, agent_id, poll_interval)
    except KeyboardInterrupt:
        console.print_info("\nAgent stopped by user")
        sys.exit(0)
    except Exception as e:
        _exit_on_error(ctx, e)


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@click.option("--workflow", default=None, help="Workflow file path")
@click.option("--repo", default=None, help="Repository URL (defaults to git remote origin URL)")
@click.option("--ref", default=None, help="Git ref/branch/commit (defaults to current branch or HEAD)")
@event_options
@click.pass_context
def submit(ctx, api, workflow, repo, ref, event_kind, branch, action, draft, changed, git_diff, compare_ref):
    """Submit a workflow run to the control plane."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path)
        event = build_event(event_kind, branch, action, draft, changed, git_diff, compare_ref)
        p = plan_pipeline(wf, event)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        sys.exit(1)

    console.print_trigger(p.decision.fired, p.decision.reason)
    if not p.decision.fired or not p.selected:
        console.print_info("Nothing to submit.")
        return

    if not repo:
        try:
            repo = get_remote_url("origin")
            console.print_debug(f"Using repository URL from git remote: {repo}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not get repository URL",
                "No --repo specified and could not get git remote URL.",
                suggestion="Please specify --repo explicitly:\n  crossci submit --api <url> --repo <repo_url>",
            )
            sys.exit(1)

    if not ref:
        try:
            ref = get_current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "Could not get current git ref.",
                suggestion="Please specify --ref explicitly:\n  crossci submit --api <url> --ref <ref>",
            )
            sys.exit(1)

    needs = resolve_needs(wf.jobs)
    selected = set(p.selected)
    api_jobs = []
    for job in wf.jobs:
        if job.name not in selected:
            continue
        api_jobs.append({
            "job_name": job.name,
            "needs": sorted(needs[job.name] & selected),
            "is_matrix": job.is_matrix,
            "payload_json": {"repo_url": repo, "ref": ref, "job": job_to_dict(job)},
        })

    base_url = api.rstrip("/")
    url = urljoin(base_url + "/", "runs")
    request_data = {"repo": repo, "policy": wf.policy, "jobs": api_jobs}
    req = urllib.request.Request(
        url,
        data=json.dumps(request_data).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with urllib.request.urlopen(req) as response:
            result = json.loads(response.read().decode("utf-8") or "{}")
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8") if e.fp else ""
        console.print_error(
            "API request failed",
            f"HTTP {e.code} {e.reason}",
            details=[error_body] if error_body else None,
            suggestion=f"Check the API at {base_url} and verify your request.",
        )
        sys.exit(1)
    except urllib.error.URLError as e:
        console.print_error(
            "Network error",
            f"Could not connect to {base_url}",
            details=[str(e.reason)],
            suggestion="Verify the API URL is correct and the API is running.",
        )
        sys.exit(1)
    except json.JSONDecodeError as e:
        console.print_error(
            "Invalid API response",
            "Could not parse JSON response from API.",
            details=[str(e)],
        )
        sys.exit(1)

    console.print_info(f"\nSubmitted run to {base_url}")
    console.print_info(f"  Run ID: {result.get('run_id')}")
    console.print_info(f"  Job IDs: {', '.join(result.get('job_ids', []))}")


if __name__ == "__main__":
    cli()
