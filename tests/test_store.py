"""Tests for the typed record store."""
from __future__ import annotations

from pathlib import Path

import pytest

from webappctl.errors import (
    ConstraintViolationError,
    DuplicateRecordError,
    ProfileInUseError,
    RecordNotFoundError,
    StoreError,
)
from webappctl.exit_codes import ExitCode
from webappctl.identifiers import DEFAULT_PROFILE_ID, Identifier
from webappctl.records import (
    DEFAULT_PROFILE,
    ManifestSnapshot,
    Profile,
    RuntimeRecord,
    RuntimeState,
    Site,
)
from webappctl.state import PROFILES_FILE, RUNTIME_FILE, SITES_FILE
from webappctl.store import RecordStore

SITE_ID = Identifier.parse("01HZX0000000000000000000AB")
PROFILE_ID = Identifier.parse("01HZX0000000000000000000PR")


def _site(profile_id: Identifier = DEFAULT_PROFILE_ID) -> Site:
    return Site.create(
        id=SITE_ID,
        manifest_url="https://example.com/manifest.json",
        profile_id=profile_id,
        keywords=(),
        manifest=ManifestSnapshot(name="Example", categories=("news",)),
    )


def test_default_profile_is_listed_without_writing(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)

    profiles = store.list_profiles()

    assert profiles == [DEFAULT_PROFILE]
    assert not (tmp_path / "profiles.yml").exists()
    assert store.get_profile(DEFAULT_PROFILE_ID).display_name() == "Default"


def test_default_profile_is_persisted_by_first_profile_write(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_profile(Profile(id=PROFILE_ID, name="Work"))

    entries = store.registry.read_entries(PROFILES_FILE)

    assert [entry["id"] for entry in entries] == [str(DEFAULT_PROFILE_ID), str(PROFILE_ID)]

    store.replace_profile(Profile(id=PROFILE_ID, name="Office"))
    assert len(store.registry.read_entries(PROFILES_FILE)) == 2


def test_site_roundtrip_preserves_derived_and_explicit_lists(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    site = _site()

    store.insert_site(site)
    loaded = store.get_site(SITE_ID)

    assert loaded == site
    assert loaded.categories is None
    assert loaded.effective_categories() == ("news",)
    assert loaded.keywords == ()
    assert loaded.display_name() == "Example"


def test_duplicate_site_is_rejected(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_site(_site())

    with pytest.raises(DuplicateRecordError) as excinfo:
        store.insert_site(_site())

    assert excinfo.value.exit_code is ExitCode.COLLABORATOR


def test_missing_records_raise_not_found(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)

    with pytest.raises(RecordNotFoundError) as excinfo:
        store.get_site(SITE_ID)
    assert excinfo.value.exit_code is ExitCode.NOT_FOUND

    with pytest.raises(RecordNotFoundError):
        store.remove_site(SITE_ID)
    with pytest.raises(RecordNotFoundError):
        store.replace_profile(Profile(id=PROFILE_ID))


def test_profile_in_use_cannot_be_removed(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_profile(Profile(id=PROFILE_ID, name="Work"))
    store.insert_site(_site(PROFILE_ID))

    with pytest.raises(ProfileInUseError) as excinfo:
        store.remove_profile(PROFILE_ID)
    assert excinfo.value.site_ids == (str(SITE_ID),)

    store.remove_site(SITE_ID)
    removed = store.remove_profile(PROFILE_ID)
    assert removed.name == "Work"
    assert store.find_profile(PROFILE_ID) is None


def test_default_profile_cannot_be_removed(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)

    with pytest.raises(ConstraintViolationError) as excinfo:
        store.remove_profile(DEFAULT_PROFILE_ID)

    assert excinfo.value.exit_code is ExitCode.VALIDATION


def test_profiles_list_default_first(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.insert_profile(Profile(id=PROFILE_ID, name="Work"))

    assert [profile.id for profile in store.list_profiles()] == [DEFAULT_PROFILE_ID, PROFILE_ID]


def test_runtime_defaults_to_not_installed(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    assert store.get_runtime() == RuntimeRecord()

    record = RuntimeRecord(
        state=RuntimeState.INSTALLED,
        version="1.2.3",
        installed_at="2024-05-01T00:00:00Z",
        metadata={"sha256": "abc"},
    )
    store.set_runtime(record)

    assert store.get_runtime() == record
    assert store.get_runtime().installed


def test_corrupt_site_entry_is_a_store_error(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.registry.write(SITES_FILE, {"sites": [{"id": "bogus", "manifest_url": "x"}]})

    with pytest.raises(StoreError, match="not a valid identifier"):
        store.list_sites()


def test_corrupt_runtime_file_is_a_store_error(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    (tmp_path / RUNTIME_FILE).write_text("- not\n- a mapping\n", encoding="utf-8")

    with pytest.raises(StoreError, match="must contain a mapping") as excinfo:
        store.get_runtime()

    assert excinfo.value.exit_code is ExitCode.COLLABORATOR
