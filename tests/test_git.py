from __future__ import annotations

import shutil
import subprocess

import pytest

from crossci.git_facts.git import changed_paths, current_branch, get_current_ref

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(repo, *args):
    subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)


@pytest.fixture
def repo(tmp_path):
    _git(tmp_path, "init", "-q", "-b", "master")
    _git(tmp_path, "config", "user.email", "ci@example.com")
    _git(tmp_path, "config", "user.name", "ci")
    (tmp_path / "Cargo.toml").write_text("[package]\n")
    _git(tmp_path, "add", ".")
    _git(tmp_path, "commit", "-q", "-m", "init")
    return tmp_path


def test_first_commit_lists_tracked_files(repo):
    assert changed_paths(cwd=repo) == ["Cargo.toml"]


def test_clean_tree_diffs_against_previous_commit(repo):
    (repo / "src").mkdir()
    (repo / "src" / "lib.rs").write_text("")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "lib")

    assert changed_paths(cwd=repo) == ["src/lib.rs"]


def test_dirty_tree_reports_working_changes(repo):
    (repo / "README.md").write_text("hi")
    assert changed_paths(cwd=repo) == ["README.md"]


def test_branch_and_ref(repo):
    assert current_branch(repo) == "master"
    assert get_current_ref(repo) == "master"
