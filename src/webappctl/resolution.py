"""Merge update commands into existing records.

Resolution is a pure function of ``(existing record, command)``: it performs
no I/O, so the caller can validate first and persist the returned record in
a single write. Tri-state fields follow :meth:`FieldUpdate.apply`; plain
optional list fields replace the stored value only when present; every other
field is carried over unchanged.
"""
from __future__ import annotations

from dataclasses import replace
from typing import overload

from .commands import FieldUpdate, ProfileUpdateCommand, SiteUpdateCommand, UpdateCommand
from .errors import ResolutionError
from .records import Profile, Site


def resolve_site_update(site: Site, command: SiteUpdateCommand) -> Site:
    """Return *site* with *command* applied."""
    if not isinstance(command, SiteUpdateCommand):
        raise ResolutionError(("command",), "A site can only be resolved with a site update.")
    _ensure_same_record(site.id, command.id, "site")
    return replace(
        site,
        start_url=_apply(command.start_url, site.start_url),
        icon_url=_apply(command.icon_url, site.icon_url),
        name=_apply(command.name, site.name),
        description=_apply(command.description, site.description),
        categories=site.categories if command.categories is None else command.categories,
        keywords=site.keywords if command.keywords is None else command.keywords,
        enabled_url_handlers=(
            site.enabled_url_handlers
            if command.enabled_url_handlers is None
            else command.enabled_url_handlers
        ),
        enabled_protocol_handlers=(
            site.enabled_protocol_handlers
            if command.enabled_protocol_handlers is None
            else command.enabled_protocol_handlers
        ),
    )


def resolve_profile_update(profile: Profile, command: ProfileUpdateCommand) -> Profile:
    """Return *profile* with *command* applied."""
    if not isinstance(command, ProfileUpdateCommand):
        raise ResolutionError(
            ("command",),
            "A profile can only be resolved with a profile update.",
        )
    _ensure_same_record(profile.id, command.id, "profile")
    return replace(
        profile,
        name=_apply(command.name, profile.name),
        description=_apply(command.description, profile.description),
    )


@overload
def resolve_update(record: Site, command: SiteUpdateCommand) -> Site: ...


@overload
def resolve_update(record: Profile, command: ProfileUpdateCommand) -> Profile: ...


def resolve_update(record: Site | Profile, command: UpdateCommand) -> Site | Profile:
    """Dispatch to the resolver matching *record*."""
    if isinstance(record, Site):
        return resolve_site_update(record, command)  # type: ignore[arg-type]
    if isinstance(record, Profile):
        return resolve_profile_update(record, command)  # type: ignore[arg-type]
    raise ResolutionError(("record",), f"Cannot resolve updates for {type(record).__name__}.")


def _apply(update: FieldUpdate[str], current: str | None) -> str | None:
    # Every tri-state field resets to "unset".
    return update.apply(current, None)


def _ensure_same_record(record_id: object, command_id: object, kind: str) -> None:
    if record_id != command_id:
        raise ResolutionError(
            ("id",),
            f"Update targets {kind} '{command_id}' but the record is '{record_id}'.",
        )


__all__ = ["resolve_profile_update", "resolve_site_update", "resolve_update"]
