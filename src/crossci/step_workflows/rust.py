# step_workflows/rust.py
from __future__ import annotations

from ..cross import CROSS_VERSION, CrossHelper
from ..dsl import sh
from ..model import Step, Target
from ..toolchain import install_command

TOOLCHAIN = "toolchain"
CROSS = "cross"


# ---------------------------------------------------------------------
# Typed steps (dispatched by the runner, not sent to the shell).
# `run` holds the shell command of a fresh-worker install.
# ---------------------------------------------------------------------

def install_rust(
    name: str = "Install Rust Unix",
    *,
    channel: str = "stable",
    profile: str = "minimal",
) -> Step:
    """Update rustup if present, otherwise install a minimal toolchain."""
    return Step(
        name=name,
        run=install_command(channel, profile),
        kind=TOOLCHAIN,
        data={"channel": channel, "profile": profile},
    )


def install_cross(name: str = "Install Cross", *, version: str = CROSS_VERSION) -> Step:
    """Install the cross helper at an exact release."""
    helper = CrossHelper(version=version)
    return Step(
        name=name,
        run=(
            'mkdir -p "${CARGO_HOME:-$HOME/.cargo}/bin" && '
            f'curl -sSfL {helper.url} | tar xzf - -C "${{CARGO_HOME:-$HOME/.cargo}}/bin" cross'
        ),
        kind=CROSS,
        data={"version": version, "host": helper.host},
    )


# ---------------------------------------------------------------------
# Shell steps
# ---------------------------------------------------------------------

def rust_version(name: str = "Rust version") -> Step:
    return sh(name, "cargo --version && rustc --version")


def cargo_test(name: str = "Test", args: str = "") -> Step:
    return sh(name, f"cargo test {args}".strip())


def cross_test(target: Target | str, name: str | None = None, args: str = "") -> Step:
    target = Target.parse(target)
    cmd = " ".join(CrossHelper().test_command(target))
    return sh(name or f"Test {target}", f"{cmd} {args}".strip())
