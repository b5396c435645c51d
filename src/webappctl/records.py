"""Persisted record types: sites, profiles and the runtime state.

Records are immutable. Updates never mutate a record in place; the update
resolution engine returns a new value that the store persists.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from .errors import StoreError
from .identifiers import DEFAULT_PROFILE_ID, Identifier, IdentifierError
from .validators import default_document_url, url_host


@dataclass(frozen=True)
class ManifestSnapshot:
    """Values taken from the last fetched web app manifest."""

    name: str | None = None
    short_name: str | None = None
    description: str | None = None
    start_url: str | None = None
    scope: str | None = None
    categories: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    icons: tuple[str, ...] = ()
    protocol_handlers: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "short_name": self.short_name,
            "description": self.description,
            "start_url": self.start_url,
            "scope": self.scope,
            "categories": list(self.categories),
            "keywords": list(self.keywords),
            "icons": list(self.icons),
            "protocol_handlers": list(self.protocol_handlers),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ManifestSnapshot:
        """Rebuild a snapshot from its stored mapping."""
        if not isinstance(data, Mapping):
            raise StoreError("Manifest snapshot must be a mapping.")
        return cls(
            name=_optional_str(data.get("name"), "manifest.name"),
            short_name=_optional_str(data.get("short_name"), "manifest.short_name"),
            description=_optional_str(data.get("description"), "manifest.description"),
            start_url=_optional_str(data.get("start_url"), "manifest.start_url"),
            scope=_optional_str(data.get("scope"), "manifest.scope"),
            categories=_str_tuple(data.get("categories"), "manifest.categories") or (),
            keywords=_str_tuple(data.get("keywords"), "manifest.keywords") or (),
            icons=_str_tuple(data.get("icons"), "manifest.icons") or (),
            protocol_handlers=(
                _str_tuple(data.get("protocol_handlers"), "manifest.protocol_handlers") or ()
            ),
        )


@dataclass(frozen=True)
class Site:
    """A managed web app shortcut."""

    id: Identifier
    manifest_url: str
    document_url: str
    profile_id: Identifier = DEFAULT_PROFILE_ID
    start_url: str | None = None
    icon_url: str | None = None
    name: str | None = None
    description: str | None = None
    # ``None`` means "derive from the manifest"; a tuple is used verbatim.
    categories: tuple[str, ...] | None = None
    keywords: tuple[str, ...] | None = None
    enabled_url_handlers: tuple[str, ...] = ()
    enabled_protocol_handlers: tuple[str, ...] = ()
    system_integration: bool = True
    manifest: ManifestSnapshot | None = None

    @classmethod
    def create(
        cls,
        *,
        id: Identifier,
        manifest_url: str,
        document_url: str | None = None,
        **values: object,
    ) -> Site:
        """Build a new site, deriving the document URL when absent."""
        return cls(
            id=id,
            manifest_url=manifest_url,
            document_url=document_url or default_document_url(manifest_url),
            **values,  # type: ignore[arg-type]
        )

    def display_name(self) -> str:
        """Return the name shown to users."""
        if self.name:
            return self.name
        if self.manifest is not None:
            if self.manifest.name:
                return self.manifest.name
            if self.manifest.short_name:
                return self.manifest.short_name
        return url_host(self.document_url) or self.document_url

    def effective_start_url(self) -> str:
        """Return the URL a plain launch opens."""
        if self.start_url:
            return self.start_url
        if self.manifest is not None and self.manifest.start_url:
            return self.manifest.start_url
        return self.document_url

    def effective_categories(self) -> tuple[str, ...]:
        """Resolve the derive-from-manifest rule for categories."""
        if self.categories is not None:
            return self.categories
        return self.manifest.categories if self.manifest is not None else ()

    def effective_keywords(self) -> tuple[str, ...]:
        """Resolve the derive-from-manifest rule for keywords."""
        if self.keywords is not None:
            return self.keywords
        return self.manifest.keywords if self.manifest is not None else ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": str(self.id),
            "profile_id": str(self.profile_id),
            "manifest_url": self.manifest_url,
            "document_url": self.document_url,
            "start_url": self.start_url,
            "icon_url": self.icon_url,
            "name": self.name,
            "description": self.description,
            "categories": list(self.categories) if self.categories is not None else None,
            "keywords": list(self.keywords) if self.keywords is not None else None,
            "enabled_url_handlers": list(self.enabled_url_handlers),
            "enabled_protocol_handlers": list(self.enabled_protocol_handlers),
            "system_integration": self.system_integration,
            "manifest": self.manifest.to_dict() if self.manifest is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Site:
        """Rebuild a site from its stored mapping."""
        if not isinstance(data, Mapping):
            raise StoreError("Site entry must be a mapping.")
        manifest_url = _required_str(data.get("manifest_url"), "site.manifest_url")
        document_url = _optional_str(data.get("document_url"), "site.document_url")
        manifest_raw = data.get("manifest")
        system_integration = data.get("system_integration", True)
        if not isinstance(system_integration, bool):
            raise StoreError("site.system_integration must be a boolean.")
        return cls(
            id=_identifier(data.get("id"), "site.id"),
            profile_id=_identifier(data.get("profile_id", str(DEFAULT_PROFILE_ID)), "site.profile_id"),
            manifest_url=manifest_url,
            document_url=document_url or default_document_url(manifest_url),
            start_url=_optional_str(data.get("start_url"), "site.start_url"),
            icon_url=_optional_str(data.get("icon_url"), "site.icon_url"),
            name=_optional_str(data.get("name"), "site.name"),
            description=_optional_str(data.get("description"), "site.description"),
            categories=_str_tuple(data.get("categories"), "site.categories"),
            keywords=_str_tuple(data.get("keywords"), "site.keywords"),
            enabled_url_handlers=(
                _str_tuple(data.get("enabled_url_handlers"), "site.enabled_url_handlers") or ()
            ),
            enabled_protocol_handlers=(
                _str_tuple(
                    data.get("enabled_protocol_handlers"),
                    "site.enabled_protocol_handlers",
                )
                or ()
            ),
            system_integration=system_integration,
            manifest=ManifestSnapshot.from_dict(manifest_raw) if manifest_raw else None,
        )


@dataclass(frozen=True)
class Profile:
    """An isolated grouping of sites."""

    id: Identifier
    name: str | None = None
    description: str | None = None

    @property
    def is_default(self) -> bool:
        """True for the shared default profile."""
        return self.id == DEFAULT_PROFILE_ID

    def display_name(self) -> str:
        """Return the name shown to users."""
        if self.name:
            return self.name
        return "Default" if self.is_default else str(self.id)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"id": str(self.id), "name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Profile:
        """Rebuild a profile from its stored mapping."""
        if not isinstance(data, Mapping):
            raise StoreError("Profile entry must be a mapping.")
        return cls(
            id=_identifier(data.get("id"), "profile.id"),
            name=_optional_str(data.get("name"), "profile.name"),
            description=_optional_str(data.get("description"), "profile.description"),
        )


DEFAULT_PROFILE = Profile(
    id=DEFAULT_PROFILE_ID,
    name="Default",
    description="Default profile for all web apps",
)


class RuntimeState(Enum):
    """Observable states of the shared runtime."""

    INSTALLED = "installed"
    NOT_INSTALLED = "not-installed"


@dataclass(frozen=True)
class RuntimeRecord:
    """Persisted runtime state."""

    state: RuntimeState = RuntimeState.NOT_INSTALLED
    version: str | None = None
    installed_at: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def installed(self) -> bool:
        """True when the runtime is installed."""
        return self.state is RuntimeState.INSTALLED

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "state": self.state.value,
            "version": self.version,
            "installed_at": self.installed_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RuntimeRecord:
        """Rebuild the runtime record from its stored mapping."""
        if not isinstance(data, Mapping):
            raise StoreError("Runtime entry must be a mapping.")
        raw_state = data.get("state", RuntimeState.NOT_INSTALLED.value)
        try:
            state = RuntimeState(str(raw_state))
        except ValueError as exc:
            raise StoreError(f"Unknown runtime state {raw_state!r}.") from exc
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise StoreError("runtime.metadata must be a mapping.")
        return cls(
            state=state,
            version=_optional_str(data.get("version"), "runtime.version"),
            installed_at=_optional_str(data.get("installed_at"), "runtime.installed_at"),
            metadata=dict(metadata),
        )


def _identifier(value: object, label: str) -> Identifier:
    if not isinstance(value, str):
        raise StoreError(f"{label} must be a string identifier, got {value!r}.")
    try:
        return Identifier.parse(value)
    except IdentifierError as exc:
        raise StoreError(f"{label} is not a valid identifier: {exc}") from exc


def _required_str(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise StoreError(f"{label} must be a non-empty string.")
    return value


def _optional_str(value: object, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise StoreError(f"{label} must be a string or null, got {type(value).__name__}.")
    return value


def _str_tuple(value: object, label: str) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise StoreError(f"{label} must be a list of strings.")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise StoreError(f"{label} must only contain strings, got {item!r}.")
        items.append(item)
    return tuple(items)


__all__ = [
    "DEFAULT_PROFILE",
    "ManifestSnapshot",
    "Profile",
    "RuntimeRecord",
    "RuntimeState",
    "Site",
]
