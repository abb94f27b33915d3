from __future__ import annotations

from pathlib import Path

import pytest

from crossci.ui.console import Console, set_console
from crossci.worker import CommandResult

REPO_ROOT = Path(__file__).resolve().parent.parent
RUSTUP_VERSION = "rustup 1.27.1 (54dd3d00f 2024-04-24)"
RUST_VERSION = "1.80.0 (051478957 2024-07-21)"
RUSTC_VERSION = f"rustc {RUST_VERSION}"
NO_DEFAULT_ERROR = (
    "error: rustup could not choose a version of rustc to run, because one wasn't specified explicitly, "
    "and no default is configured."
)


class FakeWorker:
    """Stands in for a Worker: answers rustup/cargo probes from in-memory state."""

    def __init__(self, installed: bool = False, fail_install: bool = False, fail_update: bool = False,
                 broken_after_install: bool = False, has_default: bool = True, broken_toolchain: bool = False,
                 update_to: str | None = None):
        self.env = {"PATH": "/usr/bin", "HOME": "/home/ci"}
        self.installed = installed
        self.fail_install = fail_install
        self.fail_update = fail_update
        self.broken_after_install = broken_after_install
        # rustup answers, but no toolchain has been selected as default
        self.has_default = has_default
        # rustc/cargo never run, whatever rustup does
        self.broken_toolchain = broken_toolchain
        self.rust_version = RUST_VERSION
        self.update_to = update_to
        self.calls: list[str] = []
        self.paths: list[str] = []

    @property
    def cargo_bin(self) -> Path:
        return Path(self.env["HOME"]) / ".cargo" / "bin"

    def add_path(self, directory) -> None:
        self.paths.append(str(directory))

    def run(self, cmd, *, shell=False, cwd=None) -> CommandResult:
        line = cmd if shell else " ".join(cmd)
        self.calls.append(line)

        if line == "rustup --version":
            if self.installed:
                return CommandResult(0, RUSTUP_VERSION)
            return CommandResult(127, "", "No such file or directory: 'rustup'")
        if line == "rustup update":
            if self.fail_update:
                return CommandResult(1, "", "network down")
            if self.update_to:
                self.rust_version = self.update_to
            return CommandResult(0, "stable unchanged")
        if shell and "sh -s -- -y" in line:
            if self.fail_install:
                return CommandResult(6, "", "curl: (6) Could not resolve host: sh.rustup.rs")
            self.installed = not self.broken_after_install
            self.has_default = True
            return CommandResult(0)
        if line in ("cargo --version", "rustc --version"):
            tool = line.split()[0]
            if not self.installed:
                return CommandResult(127)
            if self.broken_toolchain or not self.has_default:
                return CommandResult(1, "", NO_DEFAULT_ERROR)
            return CommandResult(0, f"{tool} {self.rust_version}")
        raise AssertionError(f"unexpected command: {line}")


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def workflow_path() -> Path:
    return REPO_ROOT / "crossci_workflow.py"
