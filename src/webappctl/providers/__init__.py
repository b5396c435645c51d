"""Provider interfaces for webappctl."""
from __future__ import annotations

from .integration import DesktopIntegration
from .launcher import RuntimeLauncher
from .manifest import HttpManifestFetcher, ManifestFetcher, parse_manifest
from .runtime_installer import RuntimeInstaller, RuntimeInstallResult

__all__ = [
    "DesktopIntegration",
    "HttpManifestFetcher",
    "ManifestFetcher",
    "RuntimeInstallResult",
    "RuntimeInstaller",
    "RuntimeLauncher",
    "parse_manifest",
]
