from __future__ import annotations

from crossci.settings import Settings


def test_defaults(monkeypatch):
    for name in ("CROSSCI_CROSS_VERSION", "CROSSCI_MAX_WORKERS", "CROSSCI_AGGREGATION", "CROSSCI_TOOLCHAIN_CHANNEL"):
        monkeypatch.delenv(name, raising=False)

    s = Settings()

    assert s.cross_version == "v0.2.4"
    assert s.toolchain_channel == "stable"
    assert s.toolchain_profile == "minimal"
    assert s.max_workers is None
    assert s.aggregation is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CROSSCI_MAX_WORKERS", "3")
    monkeypatch.setenv("CROSSCI_AGGREGATION", "all-targets")
    monkeypatch.setenv("CROSSCI_TOOLCHAIN_CHANNEL", "beta")

    s = Settings()

    assert s.max_workers == 3
    assert s.aggregation == "all-targets"
    assert s.toolchain_channel == "beta"
