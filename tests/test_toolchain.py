from __future__ import annotations

import pytest

from crossci.errors import ProvisioningFailure
from crossci.toolchain import INSTALLED, UPDATED, ToolchainProvisioner

from .conftest import RUST_VERSION, RUSTC_VERSION, FakeWorker


def test_present_toolchain_is_updated_in_place():
    worker = FakeWorker(installed=True)

    state = ToolchainProvisioner(worker).ensure_toolchain()

    assert state.present
    assert state.action == UPDATED
    assert state.version == RUSTC_VERSION
    assert "rustup update" in worker.calls
    assert not any("sh.rustup.rs" in c for c in worker.calls)
    # PATH untouched when rustup was already there
    assert worker.paths == []


def test_absent_toolchain_is_installed_minimal_stable_and_put_on_path():
    worker = FakeWorker(installed=False)

    state = ToolchainProvisioner(worker).ensure_toolchain()

    assert state.action == INSTALLED
    assert state.version == RUSTC_VERSION
    install = [c for c in worker.calls if "sh.rustup.rs" in c]
    assert len(install) == 1
    assert "-y" in install[0]
    assert "--profile minimal" in install[0]
    assert "--default-toolchain stable" in install[0]
    assert worker.paths == [str(worker.cargo_bin)]


def test_ensure_toolchain_twice_is_idempotent():
    worker = FakeWorker(installed=False)
    provisioner = ToolchainProvisioner(worker)

    first = provisioner.ensure_toolchain()
    second = provisioner.ensure_toolchain()

    assert first.version == second.version == RUSTC_VERSION
    assert second.action == UPDATED
    assert sum("sh.rustup.rs" in c for c in worker.calls) == 1


def test_reported_version_follows_the_active_rustc():
    worker = FakeWorker(installed=True, update_to="1.81.0 (eeb90cda1 2024-09-04)")

    state = ToolchainProvisioner(worker).ensure_toolchain()

    assert state.version == "rustc 1.81.0 (eeb90cda1 2024-09-04)"
    assert state.version != f"rustc {RUST_VERSION}"


def test_channel_and_profile_are_configurable():
    worker = FakeWorker(installed=False)

    ToolchainProvisioner(worker, channel="nightly", profile="default").ensure_toolchain()

    install = next(c for c in worker.calls if "sh.rustup.rs" in c)
    assert "--profile default" in install
    assert "--default-toolchain nightly" in install


def test_rustup_without_default_toolchain_gets_a_fresh_install():
    worker = FakeWorker(installed=True, has_default=False)

    state = ToolchainProvisioner(worker).ensure_toolchain()

    assert state.action == INSTALLED
    assert state.version == RUSTC_VERSION
    assert "rustup update" not in worker.calls
    assert sum("sh.rustup.rs" in c for c in worker.calls) == 1


def test_rustup_answering_without_working_rustc_and_cargo_fails():
    worker = FakeWorker(installed=True, broken_toolchain=True)

    with pytest.raises(ProvisioningFailure, match="not usable") as exc:
        ToolchainProvisioner(worker).ensure_toolchain()

    assert exc.value.details["rustup"] is True
    assert exc.value.details["rustc"] is None
    assert exc.value.details["cargo"] is None
    # the toolchain binaries themselves were checked after provisioning
    last_probe = worker.calls[worker.calls.index("rustup --version", 1):]
    assert "rustc --version" in last_probe
    assert "cargo --version" in last_probe


def test_install_failure_is_fatal():
    worker = FakeWorker(installed=False, fail_install=True)

    with pytest.raises(ProvisioningFailure) as exc:
        ToolchainProvisioner(worker).ensure_toolchain()

    assert exc.value.kind == "provisioning_failure"
    assert "Could not resolve host" in exc.value.details["stderr"]
    assert worker.paths == []


def test_update_failure_is_fatal_and_not_retried():
    worker = FakeWorker(installed=True, fail_update=True)

    with pytest.raises(ProvisioningFailure):
        ToolchainProvisioner(worker).ensure_toolchain()

    assert worker.calls.count("rustup update") == 1


def test_unusable_toolchain_after_install_fails():
    worker = FakeWorker(installed=False, broken_after_install=True)

    with pytest.raises(ProvisioningFailure, match="not usable"):
        ToolchainProvisioner(worker).ensure_toolchain()


def test_versions_reports_cargo_and_rustc():
    worker = FakeWorker(installed=True)

    versions = ToolchainProvisioner(worker).versions()

    assert versions == {"cargo": f"cargo {RUST_VERSION}", "rustc": RUSTC_VERSION}


def test_versions_without_toolchain_raises():
    with pytest.raises(ProvisioningFailure, match="cargo is not available"):
        ToolchainProvisioner(FakeWorker(installed=False)).versions()
