"""Typed record store backed by the YAML state registry.

The store converts between records and registry mappings and enforces the
few invariants that belong to persistence: identifiers are unique, the
shared default profile always exists and cannot be removed, and a profile
with installed sites cannot be removed. Callers are expected to hold the
relevant locks from :mod:`webappctl.locking` around read-modify-write
sequences.
"""
from __future__ import annotations

import logging
from pathlib import Path

from .errors import (
    ConstraintViolationError,
    DuplicateRecordError,
    ProfileInUseError,
    RecordNotFoundError,
    StoreError,
)
from .identifiers import Identifier
from .records import DEFAULT_PROFILE, Profile, RuntimeRecord, Site
from .state import PROFILES_FILE, SITES_FILE, StateRegistry

LOGGER = logging.getLogger(__name__)


class RecordStore:
    """Persist sites, profiles and the runtime state."""

    def __init__(self, registry: StateRegistry | Path) -> None:
        """Wrap *registry* (or a registry directory)."""
        self.registry = registry if isinstance(registry, StateRegistry) else StateRegistry(registry)

    # Sites ------------------------------------------------------------
    def list_sites(self) -> list[Site]:
        """Return every installed site in registration order."""
        return [Site.from_dict(entry) for entry in self.registry.read_entries(SITES_FILE)]

    def find_site(self, identifier: Identifier) -> Site | None:
        """Return the site with *identifier*, or ``None``."""
        entry = self.registry.get_entry(SITES_FILE, str(identifier))
        return Site.from_dict(entry) if entry is not None else None

    def get_site(self, identifier: Identifier) -> Site:
        """Return the site with *identifier* or raise :class:`RecordNotFoundError`."""
        site = self.find_site(identifier)
        if site is None:
            raise RecordNotFoundError("site", str(identifier))
        return site

    def insert_site(self, site: Site) -> None:
        """Persist a newly installed site."""
        if self.find_site(site.id) is not None:
            raise DuplicateRecordError(
                f"Site '{site.id}' already exists.",
                operation="store.insert",
                target=str(site.id),
            )
        self.registry.upsert_entry(SITES_FILE, site.to_dict())
        LOGGER.debug("Inserted site %s", site.id)

    def replace_site(self, site: Site) -> None:
        """Overwrite an existing site with its updated value."""
        self.get_site(site.id)
        self.registry.upsert_entry(SITES_FILE, site.to_dict())
        LOGGER.debug("Replaced site %s", site.id)

    def remove_site(self, identifier: Identifier) -> Site:
        """Delete the site with *identifier* and return the removed record."""
        site = self.get_site(identifier)
        self.registry.remove_entry(SITES_FILE, str(identifier))
        LOGGER.debug("Removed site %s", identifier)
        return site

    def sites_for_profile(self, profile_id: Identifier) -> list[Site]:
        """Return the sites installed into *profile_id*."""
        return [site for site in self.list_sites() if site.profile_id == profile_id]

    # Profiles ---------------------------------------------------------
    def list_profiles(self) -> list[Profile]:
        """Return every profile, the shared default profile first."""
        entries = self.registry.read_entries(PROFILES_FILE)
        profiles = [Profile.from_dict(entry) for entry in entries]
        if not any(profile.is_default for profile in profiles):
            profiles.insert(0, DEFAULT_PROFILE)
        default = [profile for profile in profiles if profile.is_default]
        others = [profile for profile in profiles if not profile.is_default]
        return default + others

    def find_profile(self, identifier: Identifier) -> Profile | None:
        """Return the profile with *identifier*, or ``None``."""
        for profile in self.list_profiles():
            if profile.id == identifier:
                return profile
        return None

    def get_profile(self, identifier: Identifier) -> Profile:
        """Return the profile with *identifier* or raise :class:`RecordNotFoundError`."""
        profile = self.find_profile(identifier)
        if profile is None:
            raise RecordNotFoundError("profile", str(identifier))
        return profile

    def insert_profile(self, profile: Profile) -> None:
        """Persist a newly created profile."""
        if self.find_profile(profile.id) is not None:
            raise DuplicateRecordError(
                f"Profile '{profile.id}' already exists.",
                operation="store.insert",
                target=str(profile.id),
            )
        self._seed_default()
        self.registry.upsert_entry(PROFILES_FILE, profile.to_dict())
        LOGGER.debug("Inserted profile %s", profile.id)

    def replace_profile(self, profile: Profile) -> None:
        """Overwrite an existing profile with its updated value."""
        self.get_profile(profile.id)
        self._seed_default()
        self.registry.upsert_entry(PROFILES_FILE, profile.to_dict())
        LOGGER.debug("Replaced profile %s", profile.id)

    def remove_profile(self, identifier: Identifier) -> Profile:
        """Delete the profile with *identifier* and return the removed record."""
        profile = self.get_profile(identifier)
        if profile.is_default:
            raise ConstraintViolationError(("id",), "The shared default profile cannot be removed.")
        in_use = self.sites_for_profile(identifier)
        if in_use:
            raise ProfileInUseError(str(identifier), [str(site.id) for site in in_use])
        self.registry.remove_entry(PROFILES_FILE, str(identifier))
        LOGGER.debug("Removed profile %s", identifier)
        return profile

    def _seed_default(self) -> None:
        # Only called from profile writes, which run under the global lock.
        entries = self.registry.read_entries(PROFILES_FILE)
        if any(entry.get("id") == str(DEFAULT_PROFILE.id) for entry in entries):
            return
        self.registry.write_entries(PROFILES_FILE, [DEFAULT_PROFILE.to_dict(), *entries])
        LOGGER.debug("Seeded default profile")

    # Runtime ----------------------------------------------------------
    def get_runtime(self) -> RuntimeRecord:
        """Return the persisted runtime state (not installed when missing)."""
        data = self.registry.read_runtime()
        if not data:
            return RuntimeRecord()
        return RuntimeRecord.from_dict(data)

    def set_runtime(self, record: RuntimeRecord) -> None:
        """Persist the runtime state."""
        if not isinstance(record, RuntimeRecord):
            raise StoreError(f"Expected a RuntimeRecord, got {type(record).__name__}.")
        self.registry.write_runtime(record.to_dict())


__all__ = ["RecordStore"]
