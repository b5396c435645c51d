"""Typed representation of every ``webappctl`` subcommand.

Three field shapes recur:

* required values, always supplied;
* plain optionals (``T | None``) on creation commands, where ``None`` means
  "apply the documented default";
* tri-state :class:`FieldUpdate` values on update commands, which separate
  "leave unchanged", "reset to unset" and "set to a new value".

Commands are built from already validated values. Parsing raw CLI strings
into these types is the job of :mod:`webappctl.constraints`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Generic, TypeVar

from .http_client import TLSOptions
from .identifiers import Identifier

T = TypeVar("T")


class UpdateKind(Enum):
    """Update intent carried by a tri-state field."""

    UNCHANGED = "unchanged"
    RESET = "reset"
    SET = "set"


@dataclass(frozen=True)
class FieldUpdate(Generic[T]):
    """A tri-state update for one record field."""

    kind: UpdateKind = UpdateKind.UNCHANGED
    value: T | None = None

    def __post_init__(self) -> None:
        """Only ``SET`` may carry a value, and it must carry one."""
        if self.kind is UpdateKind.SET and self.value is None:
            raise ValueError("FieldUpdate.set() requires a value.")
        if self.kind is not UpdateKind.SET and self.value is not None:
            raise ValueError(f"FieldUpdate of kind {self.kind.value} cannot carry a value.")

    @classmethod
    def unchanged(cls) -> FieldUpdate[T]:
        """Leave the existing field as it is."""
        return cls(UpdateKind.UNCHANGED)

    @classmethod
    def reset(cls) -> FieldUpdate[T]:
        """Reset the field to its unset/default value."""
        return cls(UpdateKind.RESET)

    @classmethod
    def set(cls, value: T) -> FieldUpdate[T]:
        """Overwrite the field with *value*."""
        return cls(UpdateKind.SET, value)

    @property
    def is_unchanged(self) -> bool:
        """True when the field should be left alone."""
        return self.kind is UpdateKind.UNCHANGED

    def apply(self, current: T | None, default: T | None = None) -> T | None:
        """Return the field value after applying this update to *current*."""
        if self.kind is UpdateKind.UNCHANGED:
            return current
        if self.kind is UpdateKind.RESET:
            return default
        return self.value

    def describe(self) -> object:
        """Return a JSON-friendly description for operation logs."""
        if self.kind is UpdateKind.SET:
            return {"set": self.value}
        return self.kind.value


class LaunchTargetKind(Enum):
    """Where ``site launch`` should point the runtime."""

    NEITHER = "neither"
    URL = "url"
    PROTOCOL = "protocol"


@dataclass(frozen=True)
class LaunchTarget:
    """Launch destination; ``--url`` and ``--protocol`` cannot both be set."""

    kind: LaunchTargetKind = LaunchTargetKind.NEITHER
    url: str | None = None

    def __post_init__(self) -> None:
        """Keep the variants well formed."""
        if self.kind is LaunchTargetKind.URL and self.url is None:
            raise ValueError("A URL launch target requires a URL.")
        if self.kind is LaunchTargetKind.NEITHER and self.url is not None:
            raise ValueError("A default launch target cannot carry a URL.")

    @classmethod
    def neither(cls) -> LaunchTarget:
        """Open the site's start URL."""
        return cls(LaunchTargetKind.NEITHER)

    @classmethod
    def by_url(cls, url: str) -> LaunchTarget:
        """Open a custom URL inside the site."""
        return cls(LaunchTargetKind.URL, url)

    @classmethod
    def by_protocol(cls, url: str | None = None) -> LaunchTarget:
        """Open a protocol handler URL (or the handler's default page)."""
        return cls(LaunchTargetKind.PROTOCOL, url)


# Site commands ----------------------------------------------------------
@dataclass(frozen=True)
class SiteLaunchCommand:
    """Launch an installed site."""

    id: Identifier
    target: LaunchTarget = field(default_factory=LaunchTarget.neither)
    arguments: tuple[str, ...] = ()


@dataclass(frozen=True)
class SiteInstallCommand:
    """Install a site from its manifest URL."""

    manifest_url: str
    document_url: str | None = None
    profile: Identifier | None = None
    start_url: str | None = None
    icon_url: str | None = None
    name: str | None = None
    description: str | None = None
    categories: tuple[str, ...] | None = None
    keywords: tuple[str, ...] | None = None
    system_integration: bool = True
    client: TLSOptions = field(default_factory=TLSOptions)


@dataclass(frozen=True)
class SiteUninstallCommand:
    """Uninstall a site."""

    id: Identifier
    quiet: bool = False
    system_integration: bool = True


@dataclass(frozen=True)
class SiteUpdateCommand:
    """Update an installed site.

    ``categories``, ``keywords`` and the handler lists are plain optionals:
    ``None`` leaves them unchanged and a tuple replaces them. There is no way
    to reset categories or keywords back to the manifest-derived value.
    """

    id: Identifier
    start_url: FieldUpdate[str] = field(default_factory=FieldUpdate.unchanged)
    icon_url: FieldUpdate[str] = field(default_factory=FieldUpdate.unchanged)
    name: FieldUpdate[str] = field(default_factory=FieldUpdate.unchanged)
    description: FieldUpdate[str] = field(default_factory=FieldUpdate.unchanged)
    categories: tuple[str, ...] | None = None
    keywords: tuple[str, ...] | None = None
    enabled_url_handlers: tuple[str, ...] | None = None
    enabled_protocol_handlers: tuple[str, ...] | None = None
    update_manifest: bool = True
    update_icons: bool = True
    system_integration: bool = True
    client: TLSOptions = field(default_factory=TLSOptions)


# Profile commands -------------------------------------------------------
@dataclass(frozen=True)
class ProfileListCommand:
    """List profiles and their sites."""


@dataclass(frozen=True)
class ProfileCreateCommand:
    """Create a profile, optionally seeded from a template directory."""

    name: str | None = None
    description: str | None = None
    template: Path | None = None


@dataclass(frozen=True)
class ProfileRemoveCommand:
    """Remove a profile."""

    id: Identifier
    quiet: bool = False


@dataclass(frozen=True)
class ProfileUpdateCommand:
    """Update a profile's name and description."""

    id: Identifier
    name: FieldUpdate[str] = field(default_factory=FieldUpdate.unchanged)
    description: FieldUpdate[str] = field(default_factory=FieldUpdate.unchanged)


# Runtime commands -------------------------------------------------------
@dataclass(frozen=True)
class RuntimeInstallCommand:
    """Install the shared runtime."""


@dataclass(frozen=True)
class RuntimeUninstallCommand:
    """Uninstall the shared runtime."""


SiteCommand = SiteLaunchCommand | SiteInstallCommand | SiteUninstallCommand | SiteUpdateCommand
ProfileCommand = (
    ProfileListCommand | ProfileCreateCommand | ProfileRemoveCommand | ProfileUpdateCommand
)
RuntimeCommand = RuntimeInstallCommand | RuntimeUninstallCommand
Command = SiteCommand | ProfileCommand | RuntimeCommand
UpdateCommand = SiteUpdateCommand | ProfileUpdateCommand


__all__ = [
    "Command",
    "FieldUpdate",
    "LaunchTarget",
    "LaunchTargetKind",
    "ProfileCommand",
    "ProfileCreateCommand",
    "ProfileListCommand",
    "ProfileRemoveCommand",
    "ProfileUpdateCommand",
    "RuntimeCommand",
    "RuntimeInstallCommand",
    "RuntimeUninstallCommand",
    "SiteCommand",
    "SiteInstallCommand",
    "SiteLaunchCommand",
    "SiteUninstallCommand",
    "SiteUpdateCommand",
    "UpdateCommand",
    "UpdateKind",
]
