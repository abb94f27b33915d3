# worker.py
from __future__ import annotations

import os
import platform
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        # tools disagree on which stream carries --version
        text = (self.stdout or "").strip() or (self.stderr or "").strip()
        return " ".join(text.split())


class Worker:
    """
    Ephemeral execution environment for exactly one job.

    Each worker owns a private copy of the environment variables. With
    `home` it also gets its own HOME, CARGO_HOME and RUSTUP_HOME, so a
    toolchain installed or updated here is invisible to other workers.
    The checkout at `root` is only private if the caller made it so.
    """

    def __init__(
        self,
        root: str | Path = ".",
        *,
        env: Optional[Dict[str, str]] = None,
        home: str | Path | None = None,
    ):
        self.root = Path(root).resolve()
        self.env: Dict[str, str] = dict(os.environ if env is None else env)
        if home is not None:
            home = Path(home)
            self.env["HOME"] = str(home)
            self.env["CARGO_HOME"] = str(home / ".cargo")
            self.env["RUSTUP_HOME"] = str(home / ".rustup")
            self.add_path(self.cargo_bin)
        self.os = platform.system().lower()
        self.arch = platform.machine()

    @property
    def home(self) -> Path:
        return Path(self.env.get("HOME") or Path.home())

    @property
    def cargo_bin(self) -> Path:
        cargo_home = self.env.get("CARGO_HOME")
        base = Path(cargo_home) if cargo_home else self.home / ".cargo"
        return base / "bin"

    def add_path(self, directory: str | Path) -> None:
        """Prepend a directory to PATH for the rest of this worker's life."""
        directory = str(directory)
        current = self.env.get("PATH", "")
        parts = current.split(os.pathsep) if current else []
        if directory in parts:
            return
        self.env["PATH"] = os.pathsep.join([directory, *parts])

    def run(
        self,
        cmd: str | Sequence[str],
        *,
        shell: bool = False,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run a command to completion. Never raises on a non-zero exit."""
        workdir = (self.root / (cwd or ".")).resolve()
        if not workdir.exists():
            raise FileNotFoundError(f"cwd not found: {workdir}")

        try:
            proc = subprocess.run(
                cmd if shell else list(cmd),
                shell=shell,
                cwd=str(workdir),
                env=self.env,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as e:
            # missing executable; same convention as a shell
            return CommandResult(returncode=127, stderr=str(e))

        return CommandResult(
            returncode=proc.returncode,
            stdout=proc.stdout[-4000:],
            stderr=proc.stderr[-4000:],
        )
