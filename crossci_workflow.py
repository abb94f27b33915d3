# crossci_workflow.py
# Native tests first; on success, the same suite once per cross target
# through the pinned `cross` helper.
from __future__ import annotations

from crossci.dsl import job, matrix, pipeline
from crossci.step_workflows.rust import cargo_test, cross_test, install_cross, install_rust, rust_version
from crossci.triggers import on, pull_request, push

WATCHED_PATHS = [
    "crossci_workflow.py",
    "src/**.rs",
    "tests/**",
    "Cargo.toml",
]

TARGETS = [
    "aarch64-unknown-linux-musl",
    "aarch64-unknown-linux-gnu",
    "arm-unknown-linux-musleabi",
]

CROSS_VERSION = "v0.2.4"


def workflow():
    return pipeline(
        "rust",
        job(
            "test",
            install_rust(),
            rust_version(),
            cargo_test(),
        ),
        matrix("target", TARGETS).jobs(
            lambda target: job(
                f"cross-compilation-test ({target})",
                install_rust(),
                install_cross(version=CROSS_VERSION),
                cross_test(target),
                needs=["test"],
            ),
            template="cross-compilation-test",
        ),
        on=on(
            push=push(branches=["master"], paths=WATCHED_PATHS),
            pull_request=pull_request(
                types=["opened", "synchronize", "reopened", "ready_for_review"],
                branches=["**"],
                paths=WATCHED_PATHS,
            ),
        ),
        policy="native-gate",
    )
