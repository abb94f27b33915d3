# cross.py
from __future__ import annotations

import io
import shutil
import stat
import tarfile
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List

from .errors import ProvisioningFailure
from .model import Target
from .worker import Worker

CROSS_VERSION = "v0.2.4"
CROSS_HOST = "x86_64-unknown-linux-musl"
RELEASE_URL = "https://github.com/cross-rs/cross/releases/download/{version}/cross-{host}.tar.gz"


def _download(url: str) -> bytes:
    with urllib.request.urlopen(url) as response:
        return response.read()


@dataclass(frozen=True)
class CrossHelper:
    """
    The `cross` build helper at an exact release.

    `version` is part of the pipeline definition; it never follows the
    helper's latest release.
    """
    version: str = CROSS_VERSION
    host: str = CROSS_HOST

    @property
    def url(self) -> str:
        return RELEASE_URL.format(version=self.version, host=self.host)

    def install(self, worker: Worker, fetch: Callable[[str], bytes] = _download) -> Path:
        """Fetch the pinned archive and drop the `cross` binary into the worker's cargo bin."""
        try:
            data = fetch(self.url)
        except (urllib.error.URLError, OSError) as e:
            raise ProvisioningFailure(
                f"could not download cross {self.version}",
                details={"url": self.url, "error": str(e)},
            ) from e

        dest_dir = worker.cargo_bin
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / "cross"

        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
                member = next(
                    (m for m in tar.getmembers() if m.isfile() and Path(m.name).name == "cross"),
                    None,
                )
                if member is None:
                    raise ProvisioningFailure(
                        "cross binary missing from release archive",
                        details={"url": self.url},
                    )
                src = tar.extractfile(member)
                if src is None:
                    raise ProvisioningFailure("cross binary unreadable", details={"url": self.url})
                with tempfile.NamedTemporaryFile(dir=dest_dir, delete=False) as tmp:
                    shutil.copyfileobj(src, tmp)
                Path(tmp.name).replace(dest)
        except tarfile.TarError as e:
            raise ProvisioningFailure(
                "invalid cross release archive",
                details={"url": self.url, "error": str(e)},
            ) from e

        dest.chmod(dest.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        worker.add_path(dest_dir)
        return dest

    def test_command(self, target: Target | str) -> List[str]:
        return ["cross", "test", "--target", Target.parse(target).triple]
