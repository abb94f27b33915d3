from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel, Field


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


class Settings(BaseModel):
    """
    Runtime configuration for crossci.

    Every field defaults from a CROSSCI_* environment variable. CLI flags
    override on top.
    """
    # toolchain provisioning
    rustup_init_url: str = Field(default_factory=lambda: os.getenv("CROSSCI_RUSTUP_INIT_URL", "https://sh.rustup.rs"))
    toolchain_channel: str = Field(default_factory=lambda: os.getenv("CROSSCI_TOOLCHAIN_CHANNEL", "stable"))
    toolchain_profile: str = Field(default_factory=lambda: os.getenv("CROSSCI_TOOLCHAIN_PROFILE", "minimal"))

    # cross-build helper
    cross_version: str = Field(default_factory=lambda: os.getenv("CROSSCI_CROSS_VERSION", "v0.2.4"))
    cross_host: str = Field(default_factory=lambda: os.getenv("CROSSCI_CROSS_HOST", "x86_64-unknown-linux-musl"))

    # orchestration
    aggregation: Optional[str] = Field(default_factory=lambda: os.getenv("CROSSCI_AGGREGATION") or None)
    max_workers: Optional[int] = Field(default_factory=lambda: _env_int("CROSSCI_MAX_WORKERS"))

    # agent
    work_dir: str = Field(default_factory=lambda: os.getenv("CROSSCI_WORK_DIR", ".crossci/agent_work"))
