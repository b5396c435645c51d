"""Map raw CLI arguments into commands and enforce intra-command constraints.

Builders run before any record lookup. They either return a fully validated
command or raise on the first problem: :class:`MalformedInputError` when an
argument cannot be parsed, :class:`ConstraintViolationError` when valid
arguments conflict. Nothing downstream ever sees a partially validated
command.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import fields
from pathlib import Path
from typing import TypeVar

from .commands import (
    Command,
    FieldUpdate,
    LaunchTarget,
    LaunchTargetKind,
    ProfileCreateCommand,
    ProfileRemoveCommand,
    ProfileUpdateCommand,
    SiteInstallCommand,
    SiteLaunchCommand,
    SiteUninstallCommand,
    SiteUpdateCommand,
    UpdateKind,
)
from .errors import ConstraintViolationError, MalformedInputError
from .http_client import TLSOptions
from .identifiers import Identifier
from .validators import (
    DEFAULT_URL_SCHEMES,
    parse_identifier_arg,
    parse_optional_url,
    parse_path,
    parse_protocol_handlers,
    parse_string_list,
    parse_text,
    parse_url,
    parse_url_handlers,
)

T = TypeVar("T")

# A bare ``--protocol`` arrives as this value once the CLI layer has
# normalised optional-value flags.
PROTOCOL_WITHOUT_URL = ""


def parse_tristate(
    raw: str | None,
    parser: Callable[[str], T],
) -> FieldUpdate[T]:
    """Turn an optional-value flag into a :class:`FieldUpdate`.

    ``None`` (flag omitted) is unchanged, an empty value (``--name`` or
    ``--name=``) resets, anything else is parsed and set.
    """
    if raw is None:
        return FieldUpdate.unchanged()
    if not raw.strip():
        return FieldUpdate.reset()
    return FieldUpdate.set(parser(raw))


def launch_target(
    url: str | None,
    protocol: str | None,
    *,
    schemes: Iterable[str] = DEFAULT_URL_SCHEMES,
) -> LaunchTarget:
    """Resolve the mutually exclusive ``--url`` / ``--protocol`` flags."""
    if url is not None and protocol is not None:
        raise ConstraintViolationError(
            ("--url", "--protocol"),
            "The --url and --protocol options cannot be used together.",
        )
    if url is not None:
        return LaunchTarget.by_url(parse_url(url, field="--url", schemes=schemes))
    if protocol is not None:
        if protocol.strip() == PROTOCOL_WITHOUT_URL:
            return LaunchTarget.by_protocol()
        return LaunchTarget.by_protocol(parse_url(protocol, field="--protocol", schemes=None))
    return LaunchTarget.neither()


def build_site_launch(
    *,
    id: str,
    url: str | None = None,
    protocol: str | None = None,
    arguments: Sequence[str] = (),
    schemes: Iterable[str] = DEFAULT_URL_SCHEMES,
) -> SiteLaunchCommand:
    """Build a ``site launch`` command."""
    target = launch_target(url, protocol, schemes=schemes)
    return SiteLaunchCommand(
        id=parse_identifier_arg(id, field="ID"),
        target=target,
        arguments=tuple(arguments),
    )


def build_site_install(
    *,
    manifest_url: str,
    document_url: str | None = None,
    profile: str | None = None,
    start_url: str | None = None,
    icon_url: str | None = None,
    name: str | None = None,
    description: str | None = None,
    categories: Iterable[str] | None = None,
    keywords: Iterable[str] | None = None,
    system_integration: bool = True,
    client: TLSOptions | None = None,
    schemes: Iterable[str] = DEFAULT_URL_SCHEMES,
) -> SiteInstallCommand:
    """Build a ``site install`` command."""
    return SiteInstallCommand(
        manifest_url=parse_url(manifest_url, field="MANIFEST_URL", schemes=schemes),
        document_url=parse_optional_url(document_url, field="--document-url", schemes=schemes),
        profile=(
            parse_identifier_arg(profile, field="--profile") if profile is not None else None
        ),
        start_url=parse_optional_url(start_url, field="--start-url", schemes=schemes),
        icon_url=parse_optional_url(icon_url, field="--icon-url", schemes=schemes),
        name=parse_text(name, field="--name") if name is not None else None,
        description=(
            parse_text(description, field="--description") if description is not None else None
        ),
        categories=parse_string_list(categories, field="--categories"),
        keywords=parse_string_list(keywords, field="--keywords"),
        system_integration=system_integration,
        client=client or TLSOptions(),
    )


def build_site_uninstall(
    *,
    id: str,
    quiet: bool = False,
    system_integration: bool = True,
) -> SiteUninstallCommand:
    """Build a ``site uninstall`` command."""
    return SiteUninstallCommand(
        id=parse_identifier_arg(id, field="ID"),
        quiet=quiet,
        system_integration=system_integration,
    )


def build_site_update(
    *,
    id: str,
    start_url: str | None = None,
    icon_url: str | None = None,
    name: str | None = None,
    description: str | None = None,
    categories: Iterable[str] | None = None,
    keywords: Iterable[str] | None = None,
    enabled_url_handlers: Iterable[str] | None = None,
    enabled_protocol_handlers: Iterable[str] | None = None,
    update_manifest: bool = True,
    update_icons: bool = True,
    system_integration: bool = True,
    client: TLSOptions | None = None,
    schemes: Iterable[str] = DEFAULT_URL_SCHEMES,
) -> SiteUpdateCommand:
    """Build a ``site update`` command."""
    allowed = tuple(schemes)
    return SiteUpdateCommand(
        id=parse_identifier_arg(id, field="ID"),
        start_url=parse_tristate(
            start_url,
            lambda value: parse_url(value, field="--start-url", schemes=allowed),
        ),
        icon_url=parse_tristate(
            icon_url,
            lambda value: parse_url(value, field="--icon-url", schemes=allowed),
        ),
        name=parse_tristate(name, str.strip),
        description=parse_tristate(description, str.strip),
        categories=parse_string_list(categories, field="--categories"),
        keywords=parse_string_list(keywords, field="--keywords"),
        enabled_url_handlers=parse_url_handlers(
            enabled_url_handlers,
            field="--enabled-url-handlers",
        ),
        enabled_protocol_handlers=parse_protocol_handlers(
            enabled_protocol_handlers,
            field="--enabled-protocol-handlers",
        ),
        update_manifest=update_manifest,
        update_icons=update_icons,
        system_integration=system_integration,
        client=client or TLSOptions(),
    )


def build_profile_create(
    *,
    name: str | None = None,
    description: str | None = None,
    template: str | Path | None = None,
) -> ProfileCreateCommand:
    """Build a ``profile create`` command."""
    return ProfileCreateCommand(
        name=parse_text(name, field="--name") if name is not None else None,
        description=(
            parse_text(description, field="--description") if description is not None else None
        ),
        template=(
            parse_path(template, field="--template", kind="dir") if template is not None else None
        ),
    )


def build_profile_remove(*, id: str, quiet: bool = False) -> ProfileRemoveCommand:
    """Build a ``profile remove`` command."""
    return ProfileRemoveCommand(id=parse_identifier_arg(id, field="ID"), quiet=quiet)


def build_profile_update(
    *,
    id: str,
    name: str | None = None,
    description: str | None = None,
) -> ProfileUpdateCommand:
    """Build a ``profile update`` command."""
    return ProfileUpdateCommand(
        id=parse_identifier_arg(id, field="ID"),
        name=parse_tristate(name, str.strip),
        description=parse_tristate(description, str.strip),
    )


# Re-validation of directly constructed commands -------------------------
_URL_FIELDS = {"manifest_url", "document_url", "start_url", "icon_url"}
_TEXT_FIELDS = {"name", "description"}


def check_command(
    command: Command,
    *,
    schemes: Iterable[str] = DEFAULT_URL_SCHEMES,
) -> Command:
    """Validate a command built without the ``build_*`` helpers.

    Library callers may construct commands directly; this applies the same
    rules the builders enforce and returns the command unchanged.
    """
    allowed = tuple(schemes)
    for item in fields(command):  # type: ignore[arg-type]
        value = getattr(command, item.name)
        flag = _flag_name(item.name)
        if item.name in {"id", "profile"}:
            if value is not None and not isinstance(value, Identifier):
                raise MalformedInputError(flag, f"Expected an identifier, got {value!r}.")
        elif item.name in _URL_FIELDS:
            _check_url_value(value, flag, allowed)
        elif item.name in _TEXT_FIELDS:
            _check_text_value(value, flag)
        elif item.name == "enabled_url_handlers" and value is not None:
            parse_url_handlers(value, field=flag)
        elif item.name == "enabled_protocol_handlers" and value is not None:
            checked = parse_protocol_handlers(value, field=flag)
            if checked != tuple(value):
                raise MalformedInputError(flag, "Protocol schemes must be lower-case and unique.")
        elif item.name == "target" and isinstance(value, LaunchTarget):
            if value.kind is LaunchTargetKind.URL and value.url is not None:
                parse_url(value.url, field="--url", schemes=allowed)
            elif value.kind is LaunchTargetKind.PROTOCOL and value.url is not None:
                parse_url(value.url, field="--protocol", schemes=None)
    return command


def _check_url_value(value: object, flag: str, schemes: tuple[str, ...]) -> None:
    if isinstance(value, FieldUpdate):
        if value.kind is UpdateKind.SET:
            parse_url(str(value.value), field=flag, schemes=schemes)
        return
    if value is not None:
        parse_url(str(value), field=flag, schemes=schemes)


def _check_text_value(value: object, flag: str) -> None:
    if isinstance(value, FieldUpdate):
        if value.kind is UpdateKind.SET:
            parse_text(str(value.value), field=flag)
        return
    if value is not None:
        parse_text(str(value), field=flag)


def _flag_name(field_name: str) -> str:
    if field_name == "id":
        return "ID"
    if field_name == "manifest_url":
        return "MANIFEST_URL"
    return "--" + field_name.replace("_", "-")


__all__ = [
    "build_profile_create",
    "build_profile_remove",
    "build_profile_update",
    "build_site_install",
    "build_site_launch",
    "build_site_uninstall",
    "build_site_update",
    "check_command",
    "launch_target",
    "parse_tristate",
]
