"""Install the shared runtime from a local archive."""
from __future__ import annotations

import hashlib
import logging
import shutil
import subprocess
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from packaging.version import InvalidVersion, Version

from ..errors import RuntimeInstallError

LOGGER = logging.getLogger(__name__)

VERSION_FILE = "VERSION"


@dataclass(frozen=True, slots=True)
class RuntimeInstallResult:
    """Metadata describing a completed installation."""

    path: Path
    version: str | None
    installed_at: str
    metadata: dict[str, object]


class RuntimeInstaller:
    """Unpack the runtime archive into the install directory."""

    def __init__(
        self,
        *,
        install_dir: Path,
        archive: Path | None,
        executable: str = "bin/webapp-runtime",
        tar_bin: str = "tar",
    ) -> None:
        """Initialise with the target directory and the archive to unpack."""
        self.install_dir = install_dir.expanduser()
        self.archive = archive.expanduser() if archive is not None else None
        self.executable = executable
        self.tar_bin = tar_bin

    def install(self) -> RuntimeInstallResult:
        """Unpack the archive, replacing any previous installation."""
        archive = self.archive
        if archive is None:
            raise RuntimeInstallError(
                "No runtime archive configured (set runtime.archive).",
                operation="runtime.install",
            )
        if not archive.is_file():
            raise RuntimeInstallError(
                f"Runtime archive not found: {archive}",
                operation="runtime.install",
                target=str(archive),
            )

        parent = self.install_dir.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
            staging_dir = Path(tempfile.mkdtemp(prefix="webappctl-runtime-", dir=str(parent)))
        except OSError as exc:
            raise RuntimeInstallError(
                f"Failed to prepare {parent}: {exc}",
                operation="runtime.install",
                target=str(parent),
            ) from exc

        staging_to_cleanup: Path | None = staging_dir
        try:
            result = self._run_extract_command(
                [self.tar_bin, "-xf", str(archive), "-C", str(staging_dir)]
            )
            if result.returncode != 0:
                message = result.stderr or result.stdout or "tar command failed"
                raise RuntimeInstallError(
                    f"Failed to unpack {archive}: {message.strip()}",
                    operation="runtime.install",
                    target=str(archive),
                )
            if not (staging_dir / self.executable).is_file():
                raise RuntimeInstallError(
                    f"Runtime archive {archive} does not contain {self.executable}.",
                    operation="runtime.install",
                    target=str(archive),
                )
            version = _read_version(staging_dir / VERSION_FILE)
            if self.install_dir.exists():
                shutil.rmtree(self.install_dir)
            shutil.move(str(staging_dir), str(self.install_dir))
            staging_to_cleanup = None
        except OSError as exc:
            raise RuntimeInstallError(
                f"Failed to install runtime into {self.install_dir}: {exc}",
                operation="runtime.install",
                target=str(self.install_dir),
            ) from exc
        finally:
            if staging_to_cleanup and staging_to_cleanup.exists():
                shutil.rmtree(staging_to_cleanup, ignore_errors=True)

        LOGGER.info("Runtime installed into %s", self.install_dir)
        installed_at = datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")
        return RuntimeInstallResult(
            path=self.install_dir,
            version=version,
            installed_at=installed_at,
            metadata={
                "archive": str(archive),
                "sha256": compute_checksum(archive),
                "executable": self.executable,
            },
        )

    def uninstall(self) -> bool:
        """Remove the install directory; return ``False`` when it was absent."""
        if not self.install_dir.exists():
            return False
        try:
            shutil.rmtree(self.install_dir)
        except OSError as exc:
            raise RuntimeInstallError(
                f"Failed to remove {self.install_dir}: {exc}",
                operation="runtime.uninstall",
                target=str(self.install_dir),
            ) from exc
        LOGGER.info("Runtime removed from %s", self.install_dir)
        return True

    def _run_extract_command(self, cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Execute the extraction command (isolated for testing)."""
        try:
            return subprocess.run(  # noqa: S603 - controlled command execution
                list(cmd),
                check=False,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise RuntimeInstallError(
                f"The '{self.tar_bin}' command is required to unpack the runtime.",
                operation="runtime.install",
            ) from exc


def compute_checksum(path: Path) -> str:
    """Return the SHA-256 checksum for *path*."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _read_version(path: Path) -> str | None:
    if not path.is_file():
        return None
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        return None
    try:
        return str(Version(raw))
    except InvalidVersion:
        LOGGER.warning("Runtime reports a non-standard version %r", raw)
        return raw


__all__ = ["RuntimeInstallResult", "RuntimeInstaller", "compute_checksum"]
