from __future__ import annotations

import pytest

from crossci.dsl import job, matrix, pipeline, sh, wf
from crossci.model import Target
from crossci.step_workflows.rust import CROSS, TOOLCHAIN, cross_test, install_cross, install_rust


def test_job_requires_steps():
    with pytest.raises(ValueError, match="at least one step"):
        job("empty")


def test_job_default_cwd_applies_only_to_steps_without_one():
    j = job("j", sh("a", "true"), sh("b", "true", cwd="sub"), cwd="crate")
    assert [s.cwd for s in j.steps] == ["crate", "sub"]


def test_job_env_values_are_strings():
    j = job("j", sh("a", "true"), env={"RUST_BACKTRACE": 1})
    assert j.env == {"RUST_BACKTRACE": "1"}


def test_matrix_expands_one_job_per_target():
    targets = ["aarch64-unknown-linux-musl", "aarch64-unknown-linux-gnu", "arm-unknown-linux-musleabi"]
    jobs = matrix("target", targets).jobs(
        lambda t: job(f"cross ({t})", cross_test(t), needs=["test"]),
        template="cross",
    )

    assert [j.name for j in jobs] == [f"cross ({t})" for t in targets]
    assert all(j.template == "cross" for j in jobs)
    assert all(j.needs == ["test"] for j in jobs)
    assert [j.target.short for j in jobs] == ["aarch64-musl", "aarch64-gnu", "arm-musleabi"]
    assert all(j.is_matrix for j in jobs)


def test_matrix_rejects_bad_target_triple():
    with pytest.raises(ValueError, match="Not a target triple"):
        matrix("target", ["aarch64"])


def test_matrix_rejects_duplicates_and_empty():
    with pytest.raises(ValueError):
        matrix("target", [])
    with pytest.raises(ValueError, match="duplicate"):
        matrix("target", ["arm-unknown-linux-musleabi", "arm-unknown-linux-musleabi"])


def test_wf_flattens_matrix_lists():
    jobs = wf(
        job("a", sh("a", "true")),
        matrix("n", [1, 2]).jobs(lambda n: job(f"b{n}", sh("b", "true"))),
    )
    assert [j.name for j in jobs] == ["a", "b1", "b2"]
    assert jobs[1].matrix == {"n": "1"}


def test_pipeline_keeps_policy():
    wf_ = pipeline("x", job("a", sh("a", "true")), policy="all-targets")
    assert wf_.policy == "all-targets"
    assert wf_.triggers is None


def test_target_parts():
    t = Target.parse("arm-unknown-linux-musleabi")
    assert (t.arch, t.libc, t.short) == ("arm", "musleabi", "arm-musleabi")
    assert Target.parse(t) is t


def test_typed_rust_steps():
    rust = install_rust()
    assert rust.kind == TOOLCHAIN
    assert rust.data == {"channel": "stable", "profile": "minimal"}
    assert rust.run == "curl https://sh.rustup.rs -sSf | sh -s -- -y --profile minimal --default-toolchain stable"

    cross = install_cross()
    assert cross.kind == CROSS
    assert cross.data["version"] == "v0.2.4"
    assert "/download/v0.2.4/cross-x86_64-unknown-linux-musl.tar.gz" in cross.run
    assert '-C "${CARGO_HOME:-$HOME/.cargo}/bin" cross' in cross.run

    step = cross_test("aarch64-unknown-linux-gnu")
    assert step.kind is None
    assert step.name == "Test aarch64-unknown-linux-gnu"
    assert step.run == "cross test --target aarch64-unknown-linux-gnu"
