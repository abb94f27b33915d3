# toolchain.py
# Idempotent Rust toolchain provisioning on a single worker:
#   usable toolchain -> rustup update
#   otherwise        -> rustup-init (minimal profile, stable channel) + PATH

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ProvisioningFailure
from .worker import Worker

DEFAULT_RUSTUP_INIT_URL = "https://sh.rustup.rs"

INSTALLED = "installed"
UPDATED = "updated"


@dataclass(frozen=True)
class ToolchainState:
    present: bool                  # rustup answers
    version: Optional[str]         # `rustc --version` of the active toolchain
    action: Optional[str] = None   # installed | updated

    @property
    def usable(self) -> bool:
        return self.present and self.version is not None


def install_command(
    channel: str = "stable",
    profile: str = "minimal",
    installer_url: str = DEFAULT_RUSTUP_INIT_URL,
) -> str:
    return (
        f"curl {shlex.quote(installer_url)} -sSf | sh -s -- -y "
        f"--profile {shlex.quote(profile)} "
        f"--default-toolchain {shlex.quote(channel)}"
    )


class ToolchainProvisioner:
    """Make sure a current Rust toolchain is usable on a worker."""

    def __init__(
        self,
        worker: Worker,
        *,
        channel: str = "stable",
        profile: str = "minimal",
        installer_url: str = DEFAULT_RUSTUP_INIT_URL,
    ):
        self.worker = worker
        self.channel = channel
        self.profile = profile
        self.installer_url = installer_url

    def probe(self) -> ToolchainState:
        if not self.worker.run(["rustup", "--version"]).ok:
            return ToolchainState(present=False, version=None)
        # rustup without a default toolchain still answers; rustc does not
        rustc = self.worker.run(["rustc", "--version"])
        return ToolchainState(present=True, version=rustc.output if rustc.ok and rustc.output else None)

    def install_command(self) -> str:
        return install_command(self.channel, self.profile, self.installer_url)

    def ensure_toolchain(self) -> ToolchainState:
        """
        Update a usable toolchain in place, or install a fresh one.

        Calling this twice is update-or-noop the second time. Any failure
        raises ProvisioningFailure; there is no partially provisioned state.
        The returned version is the active rustc's.
        """
        state = self.probe()

        if state.usable:
            result = self.worker.run(["rustup", "update"])
            action = UPDATED
        else:
            result = self.worker.run(self.install_command(), shell=True)
            action = INSTALLED
            if result.ok:
                self.worker.add_path(self.worker.cargo_bin)

        if not result.ok:
            raise ProvisioningFailure(
                f"rustup {'update' if action == UPDATED else 'install'} failed (exit={result.returncode})",
                details={"stderr": result.stderr.strip()[-500:]},
            )

        after = self.probe()
        cargo = self.worker.run(["cargo", "--version"])
        if not (after.usable and cargo.ok):
            raise ProvisioningFailure(
                "toolchain not usable after provisioning",
                details={
                    "rustup": after.present,
                    "rustc": after.version,
                    "cargo": cargo.output if cargo.ok else None,
                    "cargo_bin": str(self.worker.cargo_bin),
                },
            )
        return ToolchainState(present=True, version=after.version, action=action)

    def versions(self) -> Dict[str, str]:
        """`cargo --version` / `rustc --version` as reported on this worker."""
        out: Dict[str, str] = {}
        for tool in ("cargo", "rustc"):
            result = self.worker.run([tool, "--version"])
            if not result.ok:
                raise ProvisioningFailure(f"{tool} is not available", details={"tool": tool})
            out[tool] = result.output
        return out
