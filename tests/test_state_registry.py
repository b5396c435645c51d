"""State registry helpers tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from webappctl.errors import StoreError
from webappctl.state import PROFILES_FILE, SITES_FILE, StateRegistry, StateRegistryError


def test_read_missing_files_returns_default(tmp_path: Path) -> None:
    """Missing files return the provided default structure."""
    registry = StateRegistry(tmp_path)

    result = registry.read(SITES_FILE, default={"sites": []})

    assert result == {"sites": []}
    assert registry.read_entries(SITES_FILE) == []
    assert registry.read_runtime() == {}


def test_write_and_read_roundtrip(tmp_path: Path) -> None:
    """Writing a registry file and reading it back succeeds."""
    registry = StateRegistry(tmp_path)
    payload = {"sites": [{"id": "01HZX0000000000000000000AB"}]}

    registry.write(SITES_FILE, payload)

    path = tmp_path / SITES_FILE
    assert path.exists()
    assert (path.stat().st_mode & 0o777) == 0o640
    assert not list(tmp_path.glob(".sites.yml.*"))

    loaded = registry.read(SITES_FILE)
    assert loaded == payload


def test_invalid_yaml_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a StateRegistryError, which is a store error."""
    registry = StateRegistry(tmp_path)
    (tmp_path / SITES_FILE).write_text("sites: [unclosed\n", encoding="utf-8")

    with pytest.raises(StateRegistryError) as excinfo:
        registry.read(SITES_FILE)

    assert isinstance(excinfo.value, StoreError)


def test_undecodable_file_raises(tmp_path: Path) -> None:
    """Bytes that are not UTF-8 surface as a registry read error."""
    registry = StateRegistry(tmp_path)
    (tmp_path / PROFILES_FILE).write_bytes(b"\xff\xfe")

    with pytest.raises(StateRegistryError, match="Failed to read") as excinfo:
        registry.read_entries(PROFILES_FILE)

    assert excinfo.value.operation == "registry.read"
    assert excinfo.value.target == str(tmp_path / PROFILES_FILE)


def test_non_list_collection_raises(tmp_path: Path) -> None:
    """A collection key holding a scalar is rejected."""
    registry = StateRegistry(tmp_path)
    registry.write(PROFILES_FILE, {"profiles": "oops"})

    with pytest.raises(StateRegistryError, match="must be a list"):
        registry.read_entries(PROFILES_FILE)


def test_upsert_get_and_remove_entries(tmp_path: Path) -> None:
    """Entries are keyed by ``id`` and keep their registration order."""
    registry = StateRegistry(tmp_path)

    assert registry.upsert_entry(PROFILES_FILE, {"id": "a", "name": "first"}) is False
    assert registry.upsert_entry(PROFILES_FILE, {"id": "b", "name": "second"}) is False
    assert registry.upsert_entry(PROFILES_FILE, {"id": "a", "name": "renamed"}) is True

    entries = registry.read_entries(PROFILES_FILE)
    assert [entry["id"] for entry in entries] == ["a", "b"]
    assert registry.get_entry(PROFILES_FILE, "a") == {"id": "a", "name": "renamed"}

    registry.remove_entry(PROFILES_FILE, "a")
    assert registry.get_entry(PROFILES_FILE, "a") is None

    with pytest.raises(StateRegistryError, match="not found"):
        registry.remove_entry(PROFILES_FILE, "a")


def test_unknown_collection_raises(tmp_path: Path) -> None:
    """Only known collection files can be read as entry lists."""
    registry = StateRegistry(tmp_path)

    with pytest.raises(StateRegistryError, match="Unknown registry collection"):
        registry.read_entries("ports.yml")


def test_runtime_roundtrip(tmp_path: Path) -> None:
    """The runtime file stores a single mapping."""
    registry = StateRegistry(tmp_path)

    registry.write_runtime({"state": "installed", "version": "1.0"})

    assert registry.read_runtime() == {"state": "installed", "version": "1.0"}
