"""Start the shared runtime for a site."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import LaunchError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeLauncher:
    """Spawn the runtime binary detached from the CLI process."""

    executable: Path

    def build_command(
        self,
        *,
        site_id: str,
        profile_dir: Path,
        url: str,
        arguments: Sequence[str] = (),
    ) -> list[str]:
        """Return the argv used to launch *url* for *site_id*."""
        return [
            str(self.executable),
            "--profile",
            str(profile_dir),
            "--class",
            f"WebApp-{site_id}",
            *arguments,
            url,
        ]

    def launch(
        self,
        *,
        site_id: str,
        profile_dir: Path,
        url: str,
        arguments: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ) -> int:
        """Start the runtime and return its process id."""
        if not self.executable.is_file():
            raise LaunchError(
                f"Runtime executable not found: {self.executable}",
                operation="site.launch",
                target=str(self.executable),
            )
        cmd = self.build_command(
            site_id=site_id,
            profile_dir=profile_dir,
            url=url,
            arguments=arguments,
        )
        LOGGER.debug("Launching %s", " ".join(cmd))
        try:
            process = subprocess.Popen(  # noqa: S603 - controlled command execution
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=dict(env) if env is not None else None,
                start_new_session=True,
            )
        except OSError as exc:
            raise LaunchError(
                f"Failed to start {self.executable}: {exc}",
                operation="site.launch",
                target=str(self.executable),
            ) from exc
        return process.pid


__all__ = ["RuntimeLauncher"]
