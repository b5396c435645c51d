"""Helpers for interacting with the webappctl state registry.

The registry directory (``~/.local/share/webappctl/registry`` by default)
stores YAML artifacts: ``sites.yml``, ``profiles.yml`` and ``runtime.yml``.
This module reads and writes those files using atomic operations; it knows
nothing about record semantics beyond "a list of mappings keyed by ``id``".
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..errors import StoreError

SITES_FILE = "sites.yml"
PROFILES_FILE = "profiles.yml"
RUNTIME_FILE = "runtime.yml"

# Registry file -> top-level list key.
_COLLECTIONS = {SITES_FILE: "sites", PROFILES_FILE: "profiles"}


class StateRegistryError(StoreError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StateRegistryError(
                f"Failed to create registry directory {self.root}: {exc}",
                operation="registry.mkdir",
                target=str(self.root),
            ) from exc

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise StateRegistryError(
                f"Failed to parse registry file {path}: {exc}",
                operation="registry.read",
                target=str(path),
            ) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise StateRegistryError(
                f"Failed to read registry file {path}: {exc}",
                operation="registry.read",
                target=str(path),
            ) from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        try:
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        except OSError as exc:
            raise StateRegistryError(
                f"Failed to write registry file {path}: {exc}",
                operation="registry.write",
                target=str(path),
            ) from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        except OSError as exc:
            raise StateRegistryError(
                f"Failed to write registry file {path}: {exc}",
                operation="registry.write",
                target=str(path),
            ) from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # Collections ------------------------------------------------------
    def read_entries(self, name: str) -> list[dict[str, Any]]:
        """Return the list of mappings stored in collection file *name*."""
        key = _collection_key(name)
        value = self.read(name, default={key: []})
        if not isinstance(value, Mapping):
            raise StateRegistryError(
                f"Registry file {self.path_for(name)} must contain a mapping.",
                operation="registry.read",
                target=str(self.path_for(name)),
            )
        raw_entries = value.get(key) or []
        if not isinstance(raw_entries, list):
            raise StateRegistryError(
                f"'{key}' in {self.path_for(name)} must be a list.",
                operation="registry.read",
                target=str(self.path_for(name)),
            )
        entries: list[dict[str, Any]] = []
        for item in raw_entries:
            if not isinstance(item, Mapping):
                raise StateRegistryError(
                    f"Entries in {self.path_for(name)} must be mappings.",
                    operation="registry.read",
                    target=str(self.path_for(name)),
                )
            entries.append(dict(item))
        return entries

    def write_entries(self, name: str, entries: Iterable[Mapping[str, object]]) -> None:
        """Persist *entries* to collection file *name*."""
        key = _collection_key(name)
        self.write(name, {key: [dict(entry) for entry in entries]})

    def get_entry(self, name: str, identifier: str) -> dict[str, Any] | None:
        """Return the entry whose ``id`` is *identifier*, if registered."""
        for entry in self.read_entries(name):
            if entry.get("id") == identifier:
                return entry
        return None

    def upsert_entry(self, name: str, entry: Mapping[str, object]) -> bool:
        """Insert or replace *entry* by ``id``; return ``True`` when replaced."""
        identifier = entry.get("id")
        if not isinstance(identifier, str) or not identifier:
            raise StateRegistryError("Registry entries require a string 'id'.")
        entries = self.read_entries(name)
        replaced = False
        for index, existing in enumerate(entries):
            if existing.get("id") == identifier:
                entries[index] = dict(entry)
                replaced = True
                break
        if not replaced:
            entries.append(dict(entry))
        self.write_entries(name, entries)
        return replaced

    def remove_entry(self, name: str, identifier: str) -> None:
        """Remove the entry whose ``id`` is *identifier*."""
        entries = self.read_entries(name)
        remaining = [entry for entry in entries if entry.get("id") != identifier]
        if len(remaining) == len(entries):
            raise StateRegistryError(
                f"Entry '{identifier}' not found in {name}",
                operation="registry.remove",
                target=identifier,
            )
        self.write_entries(name, remaining)

    # Runtime ----------------------------------------------------------
    def read_runtime(self) -> Mapping[str, object]:
        """Return the contents of ``runtime.yml`` (empty mapping if missing)."""
        value = self.read(RUNTIME_FILE, default={})
        if not isinstance(value, Mapping):
            raise StateRegistryError(
                f"Registry file {self.path_for(RUNTIME_FILE)} must contain a mapping.",
                operation="registry.read",
                target=str(self.path_for(RUNTIME_FILE)),
            )
        return value

    def write_runtime(self, payload: Mapping[str, object]) -> None:
        """Persist the runtime mapping to ``runtime.yml``."""
        self.write(RUNTIME_FILE, payload)


def _collection_key(name: str) -> str:
    try:
        return _COLLECTIONS[name]
    except KeyError:
        raise StateRegistryError(f"Unknown registry collection '{name}'.") from None


__all__ = [
    "PROFILES_FILE",
    "RUNTIME_FILE",
    "SITES_FILE",
    "StateRegistry",
    "StateRegistryError",
]
