# git.py
# Small wrapper around the Git CLI. The rest of the codebase never calls
# subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def _lines(out: str) -> List[str]:
    return out.splitlines() if out else []


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True if there are modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """Current branch name; "HEAD" when detached."""
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def get_current_ref(cwd: Optional[str | Path] = None) -> str:
    """Branch name if on a branch, otherwise the commit SHA."""
    branch = current_branch(cwd)
    return head_sha(cwd) if branch == "HEAD" else branch


def get_remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """Paths (relative to the repo root) changed between two refs."""
    return _lines(_git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd))


def merge_base(with_ref: str = "origin/master", cwd: Optional[str | Path] = None) -> str:
    """Common ancestor of HEAD and `with_ref`."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def working_tree_changes(cwd: Optional[str | Path] = None) -> List[str]:
    """Unstaged, staged and untracked paths."""
    files = set()
    files.update(_lines(_git(["diff", "--name-only"], cwd=cwd)))
    files.update(_lines(_git(["diff", "--name-only", "--cached"], cwd=cwd)))
    files.update(_lines(_git(["ls-files", "--others", "--exclude-standard"], cwd=cwd)))
    return sorted(files)


def changed_paths(compare_ref: str = "origin/master", cwd: Optional[str | Path] = None) -> List[str]:
    """
    What a push from this checkout would touch.

    Dirty tree: the working tree changes. Clean tree: HEAD against its
    merge-base with `compare_ref`, falling back to HEAD~1, then to every
    tracked file on a first commit.
    """
    if is_dirty(cwd):
        return working_tree_changes(cwd)

    try:
        base = merge_base(compare_ref, cwd=cwd)
    except subprocess.CalledProcessError:
        # no remote configured, unrelated histories, ...
        base = "HEAD~1"

    try:
        return changed_files(base, "HEAD", cwd=cwd)
    except subprocess.CalledProcessError:
        return _lines(_git(["ls-files"], cwd=cwd))
