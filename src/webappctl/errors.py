"""Error hierarchy shared by the command core and its collaborators.

Every error carries the :class:`~webappctl.exit_codes.ExitCode` the CLI
terminates with, so callers never need to translate exception types into
process status themselves.
"""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode


class WebappctlError(RuntimeError):
    """Base class for all errors surfaced to the CLI."""

    exit_code: ExitCode = ExitCode.COLLABORATOR


# Validation -------------------------------------------------------------
class MalformedInputError(WebappctlError, ValueError):
    """Raised when an argument cannot be parsed into its typed form."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, field: str, message: str) -> None:
        """Record the offending *field* alongside the message."""
        self.field = field
        self.reason = message
        super().__init__(f"Invalid value for {field}: {message}")


class ConstraintViolationError(WebappctlError):
    """Raised when structurally valid fields conflict with each other."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, fields: Sequence[str], message: str) -> None:
        """Record every implicated field alongside the message."""
        self.fields = tuple(fields)
        super().__init__(message)


class ResolutionError(ConstraintViolationError):
    """Raised when an update command cannot be applied to a record."""


class ProfileInUseError(ConstraintViolationError):
    """Raised when removing a profile that still has sites installed."""

    def __init__(self, profile_id: str, site_ids: Sequence[str]) -> None:
        """Record the profile and the sites that reference it."""
        self.profile_id = profile_id
        self.site_ids = tuple(site_ids)
        joined = ", ".join(self.site_ids)
        super().__init__(
            ("id",),
            f"Profile '{profile_id}' still has installed sites: {joined}.",
        )


# Lookups ----------------------------------------------------------------
class RecordNotFoundError(WebappctlError, LookupError):
    """Raised when a referenced record does not exist in the store."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, kind: str, identifier: str) -> None:
        """Record which kind of record was looked up and by which id."""
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} '{identifier}' does not exist.")


class RuntimeNotInstalledError(RecordNotFoundError):
    """Raised when an operation needs the runtime but it is not installed."""

    def __init__(self) -> None:
        """Initialise with a fixed message."""
        self.kind = "runtime"
        self.identifier = "runtime"
        WebappctlError.__init__(
            self,
            "Runtime is not installed. Run `webappctl runtime install` first.",
        )


# Collaborators ----------------------------------------------------------
class CollaboratorError(WebappctlError):
    """Raised when an external dependency (store, network, filesystem) fails."""

    exit_code = ExitCode.COLLABORATOR

    def __init__(self, message: str, *, operation: str = "", target: str = "") -> None:
        """Keep the operation and target so the failure stays actionable."""
        self.operation = operation
        self.target = target
        super().__init__(message)


class StoreError(CollaboratorError):
    """Raised when the record store cannot be read or written."""


class DuplicateRecordError(StoreError):
    """Raised when inserting a record whose identifier already exists."""


class LockTimeoutError(CollaboratorError):
    """Raised when a lock could not be acquired within the timeout."""


class ManifestError(CollaboratorError):
    """Raised when the web app manifest cannot be fetched or parsed."""


class CertificateLoadError(CollaboratorError):
    """Raised when a root certificate file cannot be loaded."""


class IntegrationError(CollaboratorError):
    """Raised when OS-level integration fails."""


class RuntimeInstallError(CollaboratorError):
    """Raised when installing or uninstalling the runtime fails."""


class LaunchError(CollaboratorError):
    """Raised when the runtime process cannot be started."""


__all__ = [
    "CertificateLoadError",
    "CollaboratorError",
    "ConstraintViolationError",
    "DuplicateRecordError",
    "IntegrationError",
    "LaunchError",
    "LockTimeoutError",
    "MalformedInputError",
    "ManifestError",
    "ProfileInUseError",
    "RecordNotFoundError",
    "ResolutionError",
    "RuntimeInstallError",
    "RuntimeNotInstalledError",
    "StoreError",
    "WebappctlError",
]
