from __future__ import annotations

import os

import pytest

from crossci.worker import Worker


def test_cargo_bin_defaults_to_home(tmp_path):
    worker = Worker(tmp_path, env={"PATH": "/usr/bin"}, home=tmp_path / "home")
    assert worker.cargo_bin == tmp_path / "home" / ".cargo" / "bin"


def test_cargo_bin_honours_cargo_home(tmp_path):
    worker = Worker(tmp_path, env={"PATH": "/usr/bin", "CARGO_HOME": str(tmp_path / "cargo")})
    assert worker.cargo_bin == tmp_path / "cargo" / "bin"


def test_add_path_prepends_once(tmp_path):
    worker = Worker(tmp_path, env={"PATH": "/usr/bin"})

    worker.add_path("/opt/tool/bin")
    worker.add_path("/opt/tool/bin")

    assert worker.env["PATH"] == os.pathsep.join(["/opt/tool/bin", "/usr/bin"])


def test_workers_do_not_share_environment(tmp_path):
    base = {"PATH": "/usr/bin"}
    a = Worker(tmp_path, env=base)
    b = Worker(tmp_path, env=base)

    a.add_path("/only/in/a")

    assert "/only/in/a" not in b.env["PATH"]
    assert base["PATH"] == "/usr/bin"


def test_run_shell_uses_worker_env_and_cwd(tmp_path):
    (tmp_path / "sub").mkdir()
    worker = Worker(tmp_path, env={**os.environ, "CROSSCI_MARKER": "hello"})

    result = worker.run('echo "$CROSSCI_MARKER" && pwd', shell=True, cwd="sub")

    assert result.ok
    lines = result.stdout.splitlines()
    assert lines[0] == "hello"
    assert lines[1].endswith("sub")


def test_run_reports_exit_code(tmp_path):
    result = Worker(tmp_path).run("exit 3", shell=True)
    assert result.returncode == 3
    assert not result.ok


def test_missing_executable_is_127(tmp_path):
    result = Worker(tmp_path).run(["definitely-not-a-real-tool-xyz", "--version"])
    assert result.returncode == 127


def test_missing_cwd_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Worker(tmp_path).run("true", shell=True, cwd="nope")
