"""Update resolution laws."""
from __future__ import annotations

from dataclasses import replace

import pytest

from webappctl.commands import FieldUpdate, ProfileUpdateCommand, SiteUpdateCommand
from webappctl.errors import ResolutionError
from webappctl.identifiers import Identifier
from webappctl.records import Profile, Site
from webappctl.resolution import resolve_profile_update, resolve_site_update, resolve_update

SITE_ID = Identifier.parse("01HZX0000000000000000000AB")
OTHER_ID = Identifier.parse("01HZX0000000000000000000AC")


def _site() -> Site:
    return Site.create(
        id=SITE_ID,
        manifest_url="https://example.com/app/manifest.json",
        start_url="https://example.com/app/start",
        name="Mail",
        description="Inbox",
        categories=("office",),
        enabled_url_handlers=("https://example.com/app/",),
    )


def test_all_unchanged_is_identity() -> None:
    site = _site()

    assert resolve_site_update(site, SiteUpdateCommand(id=SITE_ID)) == site


def test_reset_clears_field_and_set_overwrites() -> None:
    site = _site()
    command = SiteUpdateCommand(
        id=SITE_ID,
        start_url=FieldUpdate.reset(),
        name=FieldUpdate.set("Webmail"),
    )

    updated = resolve_site_update(site, command)

    assert updated.start_url is None
    assert updated.name == "Webmail"
    assert updated.description == "Inbox"
    assert updated.effective_start_url() == "https://example.com/app/"


def test_point_update_only_touches_named_field() -> None:
    site = _site()

    updated = resolve_site_update(site, SiteUpdateCommand(id=SITE_ID, keywords=("mail",)))

    assert updated.keywords == ("mail",)
    assert updated.categories == ("office",)
    assert updated.enabled_url_handlers == site.enabled_url_handlers


def test_explicit_empty_list_replaces_value() -> None:
    site = _site()

    updated = resolve_site_update(site, SiteUpdateCommand(id=SITE_ID, categories=()))

    assert updated.categories == ()
    assert updated.effective_categories() == ()


def test_resolution_is_idempotent() -> None:
    site = _site()
    command = SiteUpdateCommand(
        id=SITE_ID,
        icon_url=FieldUpdate.set("https://example.com/icon.png"),
        description=FieldUpdate.reset(),
    )

    once = resolve_site_update(site, command)

    assert resolve_site_update(once, command) == once


def test_id_mismatch_is_rejected() -> None:
    with pytest.raises(ResolutionError) as excinfo:
        resolve_site_update(_site(), SiteUpdateCommand(id=OTHER_ID))

    assert excinfo.value.fields == ("id",)


def test_profile_resolution_and_dispatch() -> None:
    profile = Profile(id=OTHER_ID, name="Work", description="Office apps")
    command = ProfileUpdateCommand(id=OTHER_ID, name=FieldUpdate.reset())

    updated = resolve_update(profile, command)

    assert updated == resolve_profile_update(profile, command)
    assert updated.name is None
    assert updated.description == "Office apps"
    assert updated.display_name() == str(OTHER_ID)

    with pytest.raises(ResolutionError):
        resolve_update(profile, SiteUpdateCommand(id=OTHER_ID))  # type: ignore[arg-type]


def _bare_site() -> Site:
    return Site.create(id=SITE_ID, manifest_url="https://example.com/app/manifest.json")


def _records(kind: str) -> tuple[list[Site | Profile], type, Identifier]:
    if kind == "site":
        full = replace(_site(), icon_url="https://example.com/app/icon.png")
        return [full, _bare_site()], SiteUpdateCommand, SITE_ID
    profiles: list[Site | Profile] = [
        Profile(id=OTHER_ID, name="Work", description="Office apps"),
        Profile(id=OTHER_ID),
    ]
    return profiles, ProfileUpdateCommand, OTHER_ID


@pytest.mark.parametrize(
    ("kind", "field_name"),
    [
        ("site", "start_url"),
        ("site", "icon_url"),
        ("site", "name"),
        ("site", "description"),
        ("profile", "name"),
        ("profile", "description"),
    ],
)
def test_tristate_laws_hold_for_every_field(kind: str, field_name: str) -> None:
    records, command_type, record_id = _records(kind)
    value = "https://example.com/app/other" if field_name.endswith("url") else "Other"
    reset_command = command_type(id=record_id, **{field_name: FieldUpdate.reset()})
    set_command = command_type(id=record_id, **{field_name: FieldUpdate.set(value)})

    for record in records:
        unchanged = resolve_update(record, command_type(id=record_id))
        assert getattr(unchanged, field_name) == getattr(record, field_name)
        assert unchanged == record

        reset = resolve_update(record, reset_command)
        assert getattr(reset, field_name) is None
        assert reset == replace(record, **{field_name: None})

        updated = resolve_update(record, set_command)
        assert getattr(updated, field_name) == value
        assert updated == replace(record, **{field_name: value})

        for command in (reset_command, set_command):
            once = resolve_update(record, command)
            assert resolve_update(once, command) == once
