"""Typer-powered command line interface for ``webappctl``.

Every subcommand follows the same shape: map raw arguments into a command
(validation happens here, before any record is read), hand it to the
:class:`~webappctl.service.CommandService`, then render the outcome and
record it in the structured operation log. Errors carry their own exit code.
"""
from __future__ import annotations

import json
import shutil
import textwrap
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table
from typer.core import TyperCommand

from . import get_version
from .commands import Command, ProfileListCommand, RuntimeInstallCommand, RuntimeUninstallCommand
from .config import AppConfig, load_config
from .constraints import (
    build_profile_create,
    build_profile_remove,
    build_profile_update,
    build_site_install,
    build_site_launch,
    build_site_uninstall,
    build_site_update,
    parse_tristate,
)
from .errors import CollaboratorError, WebappctlError
from .exit_codes import ExitCode
from .http_client import TLSOptions
from .locking import LockManager
from .logging import OperationScope, StructuredLogger
from .providers import DesktopIntegration, HttpManifestFetcher, RuntimeInstaller, RuntimeLauncher
from .records import Profile, Site
from .service import CommandService, Outcome
from .state import StateRegistry
from .store import RecordStore
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to webappctl's YAML config file.",
)

TLS_DER_OPTION = typer.Option(
    None,
    "--tls-root-certificates-der",
    help="Trust an extra root certificate in DER form (repeatable).",
)
TLS_PEM_OPTION = typer.Option(
    None,
    "--tls-root-certificates-pem",
    help="Trust extra root certificates from a PEM bundle (repeatable).",
)
TLS_INVALID_CERTS_OPTION = typer.Option(
    False,
    "--tls-danger-accept-invalid-certs",
    help="DANGER: accept any TLS certificate when fetching the manifest.",
)
TLS_INVALID_HOSTNAMES_OPTION = typer.Option(
    False,
    "--tls-danger-accept-invalid-hostnames",
    help="DANGER: accept certificates issued for other hosts.",
)
NO_SYSTEM_INTEGRATION_OPTION = typer.Option(
    False,
    "--no-system-integration",
    help="Skip creating, refreshing or removing the desktop entry.",
)
QUIET_OPTION = typer.Option(
    False,
    "--quiet",
    "-q",
    help="Do not ask for confirmation.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)


def _normalise_optional_values(args: Sequence[str], flags: frozenset[str]) -> list[str]:
    """Rewrite a bare optional-value flag into its empty ``--flag=`` form.

    A flag counts as bare when it is the last token or the next token starts
    with ``-``. Tokens after ``--`` are left alone.
    """
    result: list[str] = []
    for index, token in enumerate(args):
        if token == "--":
            result.extend(args[index:])
            break
        if token in flags:
            following = args[index + 1] if index + 1 < len(args) else None
            if following is None or following.startswith("-"):
                result.append(f"{token}=")
                continue
        result.append(token)
    return result


def optional_value_command(*flags: str) -> type[TyperCommand]:
    """Return a command class whose *flags* accept ``--flag[=<value>]``."""
    names = frozenset(flags)

    class OptionalValueCommand(TyperCommand):
        def parse_args(self, ctx: typer.Context, args: list[str]) -> list[str]:
            return super().parse_args(ctx, _normalise_optional_values(args, names))

    return OptionalValueCommand


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage installed web apps, their profiles and the shared runtime.

        Sites are web app shortcuts bound to a manifest; profiles group sites
        into isolated contexts; the runtime is the shared browser component
        that launches them.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    store: RecordStore
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    service: CommandService


def _confirm(prompt: str) -> bool:
    return typer.confirm(prompt, default=False)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    config = load_config(config_file=config_file, overrides=overrides)
    registry = StateRegistry(config.registry_dir)
    registry.ensure_root()
    store = RecordStore(registry)
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    integration = (
        DesktopIntegration(
            templates=templates,
            applications_dir=config.integration.applications_dir,
            exec_command=shutil.which("webappctl") or "webappctl",
        )
        if config.integration.enabled
        else None
    )
    service = CommandService(
        store=store,
        locks=locks,
        fetcher=HttpManifestFetcher(
            timeout=config.http.timeout,
            user_agent=config.http.user_agent,
        ),
        integration=integration,
        installer=RuntimeInstaller(
            install_dir=config.runtime.install_dir,
            archive=config.runtime.archive,
            executable=config.runtime.executable,
        ),
        launcher=RuntimeLauncher(executable=config.runtime.executable_path),
        profiles_dir=config.profiles_dir,
        confirm=_confirm,
        lock_timeout=config.lock_timeout,
        schemes=config.urls.allowed_schemes,
    )
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        store=store,
        locks=locks,
        logger=logger,
        templates=templates,
        service=service,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.find_root().obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx.find_root(), None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the webappctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    try:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
    except WebappctlError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(exc.exit_code)) from exc

    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"webappctl {get_version()}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


def _execute(
    ctx: typer.Context,
    name: str,
    build: Callable[[RuntimeContext], Command],
    *,
    args: Mapping[str, object],
    target: Mapping[str, object],
    render: Callable[[Outcome], None] | None = None,
) -> Outcome:
    """Build, run, render and log a single command."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(name, args=args, target=target) as op:
        try:
            command = build(runtime)
            outcome = runtime.service.execute(command)
        except CollaboratorError as exc:
            _command_error(
                op,
                str(exc),
                rc=exc.exit_code,
                context={"operation": exc.operation, "target": exc.target},
            )
        except WebappctlError as exc:
            _command_error(op, str(exc), rc=exc.exit_code)

        op.set_lock_wait_ms(outcome.lock_wait_ms)
        for step in outcome.steps:
            op.add_step(step)
        for warning in outcome.warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")

        if render is not None:
            render(outcome)
        elif outcome.aborted:
            console.print(f"[yellow]{outcome.message}[/yellow]")
        elif outcome.changed:
            console.print(f"[green]{outcome.message}[/green]")
        else:
            console.print(outcome.message)

        context = {"aborted": True} if outcome.aborted else None
        if outcome.warnings:
            op.warning(
                outcome.message,
                warnings=outcome.warnings,
                changed=int(outcome.changed),
                context=context,
            )
        else:
            op.success(outcome.message, changed=int(outcome.changed), context=context)
    return outcome


def _tristate_arg(raw: str | None) -> object:
    return parse_tristate(raw, str).describe()


def _tls_options(
    der: list[str] | None,
    pem: list[str] | None,
    accept_invalid_certs: bool,
    accept_invalid_hostnames: bool,
) -> TLSOptions:
    return TLSOptions.from_args(
        der=der,
        pem=pem,
        accept_invalid_certs=accept_invalid_certs,
        accept_invalid_hostnames=accept_invalid_hostnames,
    )


site_app = typer.Typer(help="Install, launch, update and uninstall sites.")
profile_app = typer.Typer(help="Manage profiles that group sites.")
runtime_app = typer.Typer(help="Install or remove the shared runtime.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(site_app, name="site")
app.add_typer(profile_app, name="profile")
app.add_typer(runtime_app, name="runtime")
app.add_typer(config_app, name="config")


# Sites ------------------------------------------------------------------
@site_app.command("launch", cls=optional_value_command("--protocol"))
def site_launch(
    ctx: typer.Context,
    site_id: str = typer.Argument(..., metavar="ID", help="Identifier of the site."),
    url: str | None = typer.Option(
        None,
        "--url",
        help="Open this URL instead of the start URL.",
    ),
    protocol: str | None = typer.Option(
        None,
        "--protocol",
        help="Launch as a protocol handler, optionally with the handler URL.",
    ),
    arguments: list[str] | None = typer.Argument(
        None,
        metavar="[ARGS]...",
        help="Extra arguments passed to the runtime (after --).",
    ),
) -> None:
    """Launch an installed site."""
    _execute(
        ctx,
        "site launch",
        lambda runtime: build_site_launch(
            id=site_id,
            url=url,
            protocol=protocol,
            arguments=arguments or (),
            schemes=runtime.config.urls.allowed_schemes,
        ),
        args={"url": url, "protocol": protocol, "arguments": arguments or []},
        target={"kind": "site", "id": site_id},
    )


@site_app.command("install")
def site_install(
    ctx: typer.Context,
    manifest_url: str = typer.Argument(..., metavar="MANIFEST_URL", help="Web app manifest URL."),
    document_url: str | None = typer.Option(
        None,
        "--document-url",
        help="Document the manifest belongs to (defaults to the manifest's directory).",
    ),
    profile: str | None = typer.Option(
        None,
        "--profile",
        help="Profile to install into (defaults to the shared profile).",
    ),
    start_url: str | None = typer.Option(None, "--start-url", help="Override the start URL."),
    icon_url: str | None = typer.Option(None, "--icon-url", help="Override the icon URL."),
    name: str | None = typer.Option(None, "--name", help="Override the site name."),
    description: str | None = typer.Option(
        None,
        "--description",
        help="Override the site description.",
    ),
    categories: list[str] | None = typer.Option(
        None,
        "--categories",
        help="Categories (comma separated or repeated); empty value for none.",
    ),
    keywords: list[str] | None = typer.Option(
        None,
        "--keywords",
        help="Keywords (comma separated or repeated); empty value for none.",
    ),
    no_system_integration: bool = NO_SYSTEM_INTEGRATION_OPTION,
    tls_der: list[str] | None = TLS_DER_OPTION,
    tls_pem: list[str] | None = TLS_PEM_OPTION,
    tls_invalid_certs: bool = TLS_INVALID_CERTS_OPTION,
    tls_invalid_hostnames: bool = TLS_INVALID_HOSTNAMES_OPTION,
) -> None:
    """Install a site from its web app manifest."""

    def build(runtime: RuntimeContext) -> Command:
        return build_site_install(
            manifest_url=manifest_url,
            document_url=document_url,
            profile=profile,
            start_url=start_url,
            icon_url=icon_url,
            name=name,
            description=description,
            categories=categories,
            keywords=keywords,
            system_integration=not no_system_integration,
            client=_tls_options(tls_der, tls_pem, tls_invalid_certs, tls_invalid_hostnames),
            schemes=runtime.config.urls.allowed_schemes,
        )

    def render(outcome: Outcome) -> None:
        site = outcome.site
        console.print(f"[green]{outcome.message}[/green]")
        if site is not None:
            console.print(str(site.id))

    _execute(
        ctx,
        "site install",
        build,
        args={
            "manifest_url": manifest_url,
            "profile": profile,
            "system_integration": not no_system_integration,
            "tls_danger": tls_invalid_certs or tls_invalid_hostnames,
        },
        target={"kind": "site", "manifest_url": manifest_url},
        render=render,
    )


@site_app.command("uninstall")
def site_uninstall(
    ctx: typer.Context,
    site_id: str = typer.Argument(..., metavar="ID", help="Identifier of the site."),
    quiet: bool = QUIET_OPTION,
    no_system_integration: bool = NO_SYSTEM_INTEGRATION_OPTION,
) -> None:
    """Uninstall a site."""
    _execute(
        ctx,
        "site uninstall",
        lambda runtime: build_site_uninstall(
            id=site_id,
            quiet=quiet,
            system_integration=not no_system_integration,
        ),
        args={"quiet": quiet, "system_integration": not no_system_integration},
        target={"kind": "site", "id": site_id},
    )


@site_app.command(
    "update",
    cls=optional_value_command("--start-url", "--icon-url", "--name", "--description"),
)
def site_update(
    ctx: typer.Context,
    site_id: str = typer.Argument(..., metavar="ID", help="Identifier of the site."),
    start_url: str | None = typer.Option(
        None,
        "--start-url",
        help="Set the start URL; give it without a value to reset.",
    ),
    icon_url: str | None = typer.Option(
        None,
        "--icon-url",
        help="Set the icon URL; give it without a value to reset.",
    ),
    name: str | None = typer.Option(
        None,
        "--name",
        help="Set the name; give it without a value to reset.",
    ),
    description: str | None = typer.Option(
        None,
        "--description",
        help="Set the description; give it without a value to reset.",
    ),
    categories: list[str] | None = typer.Option(
        None,
        "--categories",
        help="Replace the categories (comma separated or repeated).",
    ),
    keywords: list[str] | None = typer.Option(
        None,
        "--keywords",
        help="Replace the keywords (comma separated or repeated).",
    ),
    enabled_url_handlers: list[str] | None = typer.Option(
        None,
        "--enabled-url-handlers",
        help="Replace the enabled URL handler scopes.",
    ),
    enabled_protocol_handlers: list[str] | None = typer.Option(
        None,
        "--enabled-protocol-handlers",
        help="Replace the enabled protocol handler schemes.",
    ),
    no_manifest_updates: bool = typer.Option(
        False,
        "--no-manifest-updates",
        help="Do not refresh the stored manifest.",
    ),
    no_icon_updates: bool = typer.Option(
        False,
        "--no-icon-updates",
        help="Keep the icon of the existing desktop entry.",
    ),
    no_system_integration: bool = NO_SYSTEM_INTEGRATION_OPTION,
    tls_der: list[str] | None = TLS_DER_OPTION,
    tls_pem: list[str] | None = TLS_PEM_OPTION,
    tls_invalid_certs: bool = TLS_INVALID_CERTS_OPTION,
    tls_invalid_hostnames: bool = TLS_INVALID_HOSTNAMES_OPTION,
) -> None:
    """Update an installed site."""

    def build(runtime: RuntimeContext) -> Command:
        return build_site_update(
            id=site_id,
            start_url=start_url,
            icon_url=icon_url,
            name=name,
            description=description,
            categories=categories,
            keywords=keywords,
            enabled_url_handlers=enabled_url_handlers,
            enabled_protocol_handlers=enabled_protocol_handlers,
            update_manifest=not no_manifest_updates,
            update_icons=not no_icon_updates,
            system_integration=not no_system_integration,
            client=_tls_options(tls_der, tls_pem, tls_invalid_certs, tls_invalid_hostnames),
            schemes=runtime.config.urls.allowed_schemes,
        )

    _execute(
        ctx,
        "site update",
        build,
        args={
            "start_url": _tristate_arg(start_url),
            "icon_url": _tristate_arg(icon_url),
            "name": _tristate_arg(name),
            "description": _tristate_arg(description),
            "categories": categories,
            "keywords": keywords,
            "update_manifest": not no_manifest_updates,
            "update_icons": not no_icon_updates,
            "system_integration": not no_system_integration,
        },
        target={"kind": "site", "id": site_id},
    )


# Profiles ---------------------------------------------------------------
def _site_summary(site: Site) -> dict[str, object]:
    return {
        "id": str(site.id),
        "name": site.display_name(),
        "start_url": site.effective_start_url(),
        "manifest_url": site.manifest_url,
    }


def _profile_summary(profile: Profile, sites: Sequence[Site]) -> dict[str, object]:
    return {
        "id": str(profile.id),
        "name": profile.name,
        "description": profile.description,
        "default": profile.is_default,
        "sites": [_site_summary(site) for site in sites],
    }


@profile_app.command("list")
def profile_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List profiles and the sites installed into them."""

    def render(outcome: Outcome) -> None:
        if json_output:
            console.print_json(
                data={
                    "profiles": [
                        _profile_summary(profile, sites) for profile, sites in outcome.profiles
                    ]
                }
            )
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Profile", style="bold")
        table.add_column("ID")
        table.add_column("Sites")
        for profile, sites in outcome.profiles:
            rendered_sites = "\n".join(f"{site.display_name()} ({site.id})" for site in sites)
            table.add_row(profile.display_name(), str(profile.id), rendered_sites or "(none)")
        console.print(table)

    _execute(
        ctx,
        "profile list",
        lambda runtime: ProfileListCommand(),
        args={"json": json_output},
        target={"kind": "profile", "scope": "registry"},
        render=render,
    )


@profile_app.command("create")
def profile_create(
    ctx: typer.Context,
    name: str | None = typer.Option(None, "--name", help="Name of the profile."),
    description: str | None = typer.Option(
        None,
        "--description",
        help="Description of the profile.",
    ),
    template: str | None = typer.Option(
        None,
        "--template",
        help="Directory copied verbatim into the new profile.",
    ),
) -> None:
    """Create a profile."""

    def render(outcome: Outcome) -> None:
        console.print(f"[green]{outcome.message}[/green]")
        if outcome.profile is not None:
            console.print(str(outcome.profile.id))

    _execute(
        ctx,
        "profile create",
        lambda runtime: build_profile_create(
            name=name,
            description=description,
            template=template,
        ),
        args={"name": name, "description": description, "template": template},
        target={"kind": "profile"},
        render=render,
    )


@profile_app.command("remove")
def profile_remove(
    ctx: typer.Context,
    profile_id: str = typer.Argument(..., metavar="ID", help="Identifier of the profile."),
    quiet: bool = QUIET_OPTION,
) -> None:
    """Remove a profile that has no installed sites."""
    _execute(
        ctx,
        "profile remove",
        lambda runtime: build_profile_remove(id=profile_id, quiet=quiet),
        args={"quiet": quiet},
        target={"kind": "profile", "id": profile_id},
    )


@profile_app.command("update", cls=optional_value_command("--name", "--description"))
def profile_update(
    ctx: typer.Context,
    profile_id: str = typer.Argument(..., metavar="ID", help="Identifier of the profile."),
    name: str | None = typer.Option(
        None,
        "--name",
        help="Set the name; give it without a value to reset.",
    ),
    description: str | None = typer.Option(
        None,
        "--description",
        help="Set the description; give it without a value to reset.",
    ),
) -> None:
    """Update a profile's name or description."""
    _execute(
        ctx,
        "profile update",
        lambda runtime: build_profile_update(id=profile_id, name=name, description=description),
        args={"name": _tristate_arg(name), "description": _tristate_arg(description)},
        target={"kind": "profile", "id": profile_id},
    )


# Runtime ----------------------------------------------------------------
@runtime_app.command("install")
def runtime_install(ctx: typer.Context) -> None:
    """Install (or reinstall) the shared runtime."""
    _execute(
        ctx,
        "runtime install",
        lambda runtime: RuntimeInstallCommand(),
        args={},
        target={"kind": "runtime"},
    )


@runtime_app.command("uninstall")
def runtime_uninstall(ctx: typer.Context) -> None:
    """Uninstall the shared runtime."""
    _execute(
        ctx,
        "runtime uninstall",
        lambda runtime: RuntimeUninstallCommand(),
        args={},
        target={"kind": "runtime"},
    )


# Config -----------------------------------------------------------------
@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main", "optional_value_command"]
