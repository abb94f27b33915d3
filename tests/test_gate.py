from __future__ import annotations

import pytest

from crossci.dsl import job, matrix, sh, wf
from crossci.gate import (
    AggregationPolicy,
    blocked_by,
    build_graph,
    released_by,
    resolve_needs,
    run_status,
    settle,
    topo_levels,
)

TARGETS = ["aarch64-unknown-linux-musl", "aarch64-unknown-linux-gnu", "arm-unknown-linux-musleabi"]


def _jobs():
    return wf(
        job("test", sh("t", "cargo test")),
        matrix("target", TARGETS).jobs(
            lambda t: job(f"cross ({t})", sh("t", f"cross test --target {t}"), needs=["test"]),
            template="cross",
        ),
        job("publish", sh("p", "true"), needs=["cross"]),
    )


def test_template_name_expands_to_every_instance():
    needs = resolve_needs(_jobs())

    assert needs["test"] == set()
    assert needs["cross (aarch64-unknown-linux-gnu)"] == {"test"}
    assert needs["publish"] == {f"cross ({t})" for t in TARGETS}


def test_levels_put_native_before_every_target():
    _by_name, adj, indeg = build_graph(_jobs())
    levels = topo_levels(adj, indeg)

    assert levels[0] == ["test"]
    assert sorted(levels[1]) == sorted(f"cross ({t})" for t in TARGETS)
    assert levels[2] == ["publish"]


def test_duplicate_names_rejected():
    with pytest.raises(ValueError, match="Duplicate"):
        resolve_needs([job("a", sh("x", "true")), job("a", sh("y", "true"))])


def test_missing_dependency_rejected():
    with pytest.raises(ValueError, match="missing job 'nope'"):
        resolve_needs([job("a", sh("x", "true"), needs=["nope"])])


def test_cycle_rejected():
    jobs = [
        job("a", sh("x", "true"), needs=["b"]),
        job("b", sh("y", "true"), needs=["a"]),
    ]
    with pytest.raises(ValueError, match="cycle"):
        build_graph(jobs)


def test_released_only_when_all_needs_ok():
    needs = resolve_needs(_jobs())
    statuses = {"test": "ok"}

    released = released_by("test", statuses, needs)
    assert released == sorted(f"cross ({t})" for t in TARGETS)

    statuses.update({f"cross ({TARGETS[0]})": "ok", f"cross ({TARGETS[1]})": "ok"})
    assert released_by(f"cross ({TARGETS[1]})", statuses, needs) == []

    statuses[f"cross ({TARGETS[2]})"] = "ok"
    assert released_by(f"cross ({TARGETS[2]})", statuses, needs) == ["publish"]


def test_nothing_released_by_a_failed_job():
    needs = resolve_needs(_jobs())
    assert released_by("test", {"test": "failed"}, needs) == []


def test_failed_native_blocks_everything_downstream():
    _by_name, adj, _indeg = build_graph(_jobs())
    blocked = blocked_by("test", adj)
    assert set(blocked) == {f"cross ({t})" for t in TARGETS} | {"publish"}


def test_failed_target_blocks_only_its_own_dependents():
    _by_name, adj, _indeg = build_graph(_jobs())
    assert blocked_by(f"cross ({TARGETS[0]})", adj) == ["publish"]


def test_native_gate_tolerates_target_failures():
    statuses = {"test": "ok", "cross (a)": "failed", "cross (b)": "ok"}
    assert run_status(statuses, AggregationPolicy.NATIVE_GATE, matrix_jobs=["cross (a)", "cross (b)"]) == "ok"


def test_all_targets_requires_every_target():
    statuses = {"test": "ok", "cross (a)": "failed", "cross (b)": "ok"}
    assert run_status(statuses, "all-targets", matrix_jobs=["cross (a)", "cross (b)"]) == "failed"


def test_native_failure_fails_under_either_policy():
    statuses = {"test": "failed", "cross (a)": "skipped"}
    for policy in AggregationPolicy:
        assert run_status(statuses, policy, matrix_jobs=["cross (a)"]) == "failed"


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        run_status({}, "majority")


# ----------------------------------------------------------------------
# settle: one finished job applied to a run (control-plane bookkeeping)
# ----------------------------------------------------------------------

CROSS = [f"cross ({t})" for t in TARGETS]


def _run(**overrides):
    jobs = _jobs()
    statuses = {j.name: ("queued" if not j.needs else "waiting") for j in jobs}
    statuses.update(overrides)
    return statuses, resolve_needs(jobs), [j.name for j in jobs if j.is_matrix]


def test_native_ok_releases_every_target_and_keeps_run_open():
    statuses, needs, matrix_jobs = _run(test="ok")

    out = settle("test", statuses, needs, matrix_jobs=matrix_jobs)

    assert out.released == sorted(CROSS)
    assert out.skipped == {}
    assert out.run_status is None


def test_native_failure_skips_all_downstream_and_closes_run():
    statuses, needs, matrix_jobs = _run(test="failed")

    out = settle("test", statuses, needs, matrix_jobs=matrix_jobs)

    assert out.released == []
    assert out.skipped == {n: "blocked by test" for n in [*CROSS, "publish"]}
    assert out.run_status == "failed"


def test_leased_siblings_keep_run_open():
    statuses, needs, matrix_jobs = _run(test="ok")
    statuses.update({CROSS[0]: "failed", CROSS[1]: "leased", CROSS[2]: "ok"})

    out = settle(CROSS[0], statuses, needs, matrix_jobs=matrix_jobs)

    assert out.skipped == {"publish": f"blocked by {CROSS[0]}"}
    assert out.run_status is None


def test_last_target_closes_run_under_policy():
    statuses, needs, matrix_jobs = _run(test="ok")
    statuses.update({CROSS[0]: "failed", CROSS[1]: "ok", CROSS[2]: "failed", "publish": "skipped"})

    gate_out = settle(CROSS[2], statuses, needs, "native-gate", matrix_jobs)
    strict_out = settle(CROSS[2], statuses, needs, "all-targets", matrix_jobs)

    assert gate_out.run_status == "ok"
    assert strict_out.run_status == "failed"


def test_released_job_keeps_run_open():
    statuses, needs, matrix_jobs = _run(test="ok")
    statuses.update({c: "ok" for c in CROSS})

    out = settle(CROSS[2], statuses, needs, matrix_jobs=matrix_jobs)

    assert out.released == ["publish"]
    assert out.run_status is None
