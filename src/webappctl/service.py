"""Execute validated commands against the record store and collaborators.

Each ``CommandService`` method handles exactly one command. Read-modify-write
sequences run while holding the global lock and the lock of every record they
touch; network access for a fresh install happens before any lock is taken.
"""
from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path

from .commands import (
    Command,
    LaunchTargetKind,
    ProfileCreateCommand,
    ProfileListCommand,
    ProfileRemoveCommand,
    ProfileUpdateCommand,
    RuntimeInstallCommand,
    RuntimeUninstallCommand,
    SiteInstallCommand,
    SiteLaunchCommand,
    SiteUninstallCommand,
    SiteUpdateCommand,
)
from .constraints import check_command
from .errors import (
    CollaboratorError,
    ConstraintViolationError,
    RuntimeNotInstalledError,
    StoreError,
)
from .http_client import CertificateLoader, build_client_config
from .identifiers import DEFAULT_PROFILE_ID, Identifier, IdentifierGenerator, identifier_warnings
from .locking import LockManager
from .providers import (
    DesktopIntegration,
    ManifestFetcher,
    RuntimeInstaller,
    RuntimeLauncher,
)
from .records import Profile, RuntimeRecord, RuntimeState, Site
from .resolution import resolve_profile_update, resolve_site_update
from .store import RecordStore
from .validators import DEFAULT_URL_SCHEMES

LOGGER = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


@dataclass
class Outcome:
    """What a command did, for rendering and operation logging."""

    message: str
    changed: bool = False
    aborted: bool = False
    warnings: list[str] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)
    lock_wait_ms: int = 0
    site: Site | None = None
    profile: Profile | None = None
    runtime: RuntimeRecord | None = None
    profiles: list[tuple[Profile, list[Site]]] = field(default_factory=list)
    pid: int | None = None


@dataclass
class CommandService:
    """Run commands with injected collaborators."""

    store: RecordStore
    locks: LockManager
    fetcher: ManifestFetcher
    integration: DesktopIntegration | None
    installer: RuntimeInstaller
    launcher: RuntimeLauncher
    profiles_dir: Path
    generator: IdentifierGenerator = field(default_factory=IdentifierGenerator)
    certificate_loader: CertificateLoader | None = None
    confirm: Confirm | None = None
    lock_timeout: float | None = None
    schemes: tuple[str, ...] = tuple(sorted(DEFAULT_URL_SCHEMES))

    def execute(self, command: Command) -> Outcome:
        """Validate *command* and dispatch it to its handler."""
        check_command(command, schemes=self.schemes)
        handler = self._handlers().get(type(command))
        if handler is None:
            raise ConstraintViolationError(
                ("command",),
                f"Unsupported command {type(command).__name__}.",
            )
        warnings: list[str] = []
        identifier = getattr(command, "id", None)
        if isinstance(identifier, Identifier):
            warnings.extend(identifier_warnings(identifier))
        outcome = handler(command)
        outcome.warnings[:0] = warnings
        return outcome

    def _handlers(self) -> dict[type, Callable[..., Outcome]]:
        return {
            SiteLaunchCommand: self.launch_site,
            SiteInstallCommand: self.install_site,
            SiteUninstallCommand: self.uninstall_site,
            SiteUpdateCommand: self.update_site,
            ProfileListCommand: self.list_profiles,
            ProfileCreateCommand: self.create_profile,
            ProfileRemoveCommand: self.remove_profile,
            ProfileUpdateCommand: self.update_profile,
            RuntimeInstallCommand: self.install_runtime,
            RuntimeUninstallCommand: self.uninstall_runtime,
        }

    # Sites ------------------------------------------------------------
    def launch_site(self, command: SiteLaunchCommand) -> Outcome:
        """Start the runtime for an installed site."""
        site = self.store.get_site(command.id)
        if not self.store.get_runtime().installed:
            raise RuntimeNotInstalledError()

        target = command.target
        if target.kind is LaunchTargetKind.NEITHER or target.url is None:
            url = site.effective_start_url()
        else:
            url = target.url

        profile_dir = self.profile_path(site.profile_id)
        _ensure_directory(profile_dir, operation="site.launch")
        pid = self.launcher.launch(
            site_id=str(site.id),
            profile_dir=profile_dir,
            url=url,
            arguments=command.arguments,
        )
        return Outcome(
            message=f"Launched {site.display_name()} ({url}).",
            site=site,
            pid=pid,
            steps=[f"launch:{url}"],
        )

    def install_site(self, command: SiteInstallCommand) -> Outcome:
        """Fetch the manifest, create the site and integrate it."""
        profile_id = command.profile or DEFAULT_PROFILE_ID
        self.store.get_profile(profile_id)
        client = build_client_config(command.client, loader=self.certificate_loader)
        snapshot = self.fetcher.fetch(command.manifest_url, client=client)
        steps = ["manifest:fetched"]

        site_id = self.generator.new()
        site = Site.create(
            id=site_id,
            manifest_url=command.manifest_url,
            document_url=command.document_url,
            profile_id=profile_id,
            start_url=command.start_url,
            icon_url=command.icon_url,
            name=command.name,
            description=command.description,
            categories=command.categories,
            keywords=command.keywords,
            system_integration=command.system_integration,
            manifest=snapshot,
        )

        with self.locks.mutate_records("site", [str(site_id)], timeout=self.lock_timeout) as bundle:
            self.store.get_profile(profile_id)
            integrated = False
            if self._integration_enabled(command.system_integration):
                self.integration.install(site)  # type: ignore[union-attr]
                integrated = True
                steps.append("integration:installed")
            try:
                self.store.insert_site(site)
            except StoreError:
                if integrated:
                    self.integration.remove(site)  # type: ignore[union-attr]
                raise
            steps.append("store:inserted")

        return Outcome(
            message=f"Site {site.display_name()} installed as {site.id}.",
            changed=True,
            warnings=list(client.warnings),
            steps=steps,
            lock_wait_ms=bundle.wait_ms,
            site=site,
        )

    def uninstall_site(self, command: SiteUninstallCommand) -> Outcome:
        """Remove a site, its integration and its record."""
        site = self.store.get_site(command.id)
        if not command.quiet and not self._confirmed(
            f"Uninstall site {site.display_name()} ({site.id})?"
        ):
            return Outcome(message="Uninstall cancelled.", aborted=True, site=site)

        steps: list[str] = []
        with self.locks.mutate_records("site", [str(site.id)], timeout=self.lock_timeout) as bundle:
            site = self.store.get_site(command.id)
            if self._integration_enabled(command.system_integration):
                self.integration.remove(site)  # type: ignore[union-attr]
                steps.append("integration:removed")
            self.store.remove_site(site.id)
            steps.append("store:removed")

        return Outcome(
            message=f"Site {site.display_name()} uninstalled.",
            changed=True,
            steps=steps,
            lock_wait_ms=bundle.wait_ms,
            site=site,
        )

    def update_site(self, command: SiteUpdateCommand) -> Outcome:
        """Resolve *command* against the stored site and persist the result."""
        client = build_client_config(command.client, loader=self.certificate_loader)
        steps: list[str] = []
        with self.locks.mutate_records("site", [str(command.id)], timeout=self.lock_timeout) as bundle:
            current = self.store.get_site(command.id)
            updated = resolve_site_update(current, command)
            if command.update_manifest:
                snapshot = self.fetcher.fetch(current.manifest_url, client=client)
                updated = replace(updated, manifest=snapshot)
                steps.append("manifest:refreshed")
            changed = updated != current
            if changed:
                self.store.replace_site(updated)
                steps.append("store:replaced")
            if current.system_integration and self._integration_enabled(
                command.system_integration
            ):
                try:
                    self.integration.install(  # type: ignore[union-attr]
                        updated,
                        update_icons=command.update_icons,
                    )
                except CollaboratorError:
                    if changed:
                        self.store.replace_site(current)
                    raise
                steps.append("integration:refreshed")

        message = (
            f"Site {updated.display_name()} updated."
            if changed
            else f"Site {updated.display_name()} already up to date."
        )
        return Outcome(
            message=message,
            changed=changed,
            warnings=list(client.warnings),
            steps=steps,
            lock_wait_ms=bundle.wait_ms,
            site=updated,
        )

    # Profiles ---------------------------------------------------------
    def list_profiles(self, command: ProfileListCommand) -> Outcome:
        """Return every profile with the sites installed into it."""
        sites = self.store.list_sites()
        grouped = [
            (profile, [site for site in sites if site.profile_id == profile.id])
            for profile in self.store.list_profiles()
        ]
        return Outcome(message=f"{len(grouped)} profile(s).", profiles=grouped)

    def create_profile(self, command: ProfileCreateCommand) -> Outcome:
        """Create a profile and its directory, seeded from the template."""
        profile = Profile(
            id=self.generator.new(),
            name=command.name,
            description=command.description,
        )
        directory = self.profile_path(profile.id)
        steps: list[str] = []
        with self.locks.mutate_records(
            "profile", [str(profile.id)], timeout=self.lock_timeout
        ) as bundle:
            if command.template is not None:
                _copy_template(command.template, directory)
                steps.append(f"template:{command.template}")
            else:
                _ensure_directory(directory, operation="profile.create")
            try:
                self.store.insert_profile(profile)
            except StoreError:
                shutil.rmtree(directory, ignore_errors=True)
                raise
            steps.append("store:inserted")

        return Outcome(
            message=f"Profile {profile.display_name()} created as {profile.id}.",
            changed=True,
            steps=steps,
            lock_wait_ms=bundle.wait_ms,
            profile=profile,
        )

    def remove_profile(self, command: ProfileRemoveCommand) -> Outcome:
        """Remove an unused profile and its directory."""
        profile = self.store.get_profile(command.id)
        if profile.is_default:
            raise ConstraintViolationError(("id",), "The shared default profile cannot be removed.")
        if not command.quiet and not self._confirmed(
            f"Remove profile {profile.display_name()} ({profile.id})?"
        ):
            return Outcome(message="Removal cancelled.", aborted=True, profile=profile)

        with self.locks.mutate_records(
            "profile", [str(profile.id)], timeout=self.lock_timeout
        ) as bundle:
            self.store.remove_profile(profile.id)
            directory = self.profile_path(profile.id)
            if directory.exists():
                try:
                    shutil.rmtree(directory)
                except OSError as exc:
                    raise CollaboratorError(
                        f"Failed to remove profile directory {directory}: {exc}",
                        operation="profile.remove",
                        target=str(directory),
                    ) from exc

        return Outcome(
            message=f"Profile {profile.display_name()} removed.",
            changed=True,
            steps=["store:removed"],
            lock_wait_ms=bundle.wait_ms,
            profile=profile,
        )

    def update_profile(self, command: ProfileUpdateCommand) -> Outcome:
        """Resolve *command* against the stored profile and persist the result."""
        with self.locks.mutate_records(
            "profile", [str(command.id)], timeout=self.lock_timeout
        ) as bundle:
            current = self.store.get_profile(command.id)
            updated = resolve_profile_update(current, command)
            changed = updated != current
            if changed:
                self.store.replace_profile(updated)

        message = (
            f"Profile {updated.display_name()} updated."
            if changed
            else f"Profile {updated.display_name()} already up to date."
        )
        return Outcome(
            message=message,
            changed=changed,
            steps=["store:replaced"] if changed else [],
            lock_wait_ms=bundle.wait_ms,
            profile=updated,
        )

    # Runtime ----------------------------------------------------------
    def install_runtime(self, command: RuntimeInstallCommand) -> Outcome:
        """Install (or reinstall) the shared runtime."""
        with self.locks.global_lock(timeout=self.lock_timeout) as handle:
            result = self.installer.install()
            record = RuntimeRecord(
                state=RuntimeState.INSTALLED,
                version=result.version,
                installed_at=result.installed_at,
                metadata=dict(result.metadata),
            )
            self.store.set_runtime(record)

        version = f" {record.version}" if record.version else ""
        return Outcome(
            message=f"Runtime{version} installed into {result.path}.",
            changed=True,
            steps=["runtime:installed", "store:updated"],
            lock_wait_ms=handle.wait_ms,
            runtime=record,
        )

    def uninstall_runtime(self, command: RuntimeUninstallCommand) -> Outcome:
        """Uninstall the shared runtime; a no-op when it is not installed."""
        with self.locks.global_lock(timeout=self.lock_timeout) as handle:
            record = self.store.get_runtime()
            if not record.installed:
                return Outcome(
                    message="Runtime is not installed; nothing to do.",
                    lock_wait_ms=handle.wait_ms,
                    runtime=record,
                )
            self.installer.uninstall()
            record = RuntimeRecord()
            self.store.set_runtime(record)

        return Outcome(
            message="Runtime uninstalled.",
            changed=True,
            steps=["runtime:removed", "store:updated"],
            lock_wait_ms=handle.wait_ms,
            runtime=record,
        )

    # ------------------------------------------------------------------
    def profile_path(self, profile_id: Identifier) -> Path:
        """Return the data directory of *profile_id*."""
        return self.profiles_dir / str(profile_id)

    def _integration_enabled(self, requested: bool) -> bool:
        return requested and self.integration is not None

    def _confirmed(self, prompt: str) -> bool:
        if self.confirm is None:
            return True
        return self.confirm(prompt)


def _ensure_directory(path: Path, *, operation: str) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CollaboratorError(
            f"Failed to create {path}: {exc}",
            operation=operation,
            target=str(path),
        ) from exc


def _copy_template(template: Path, destination: Path) -> None:
    try:
        shutil.copytree(template, destination, symlinks=True)
    except (OSError, shutil.Error) as exc:
        shutil.rmtree(destination, ignore_errors=True)
        raise CollaboratorError(
            f"Failed to copy template {template} to {destination}: {exc}",
            operation="profile.create",
            target=str(destination),
        ) from exc


__all__ = ["CommandService", "Confirm", "Outcome"]
