"""Configuration loader for webappctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``~/.config/webappctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``WEBAPPCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export WEBAPPCTL_LOCK_TIMEOUT=5
    export WEBAPPCTL_INTEGRATION__ENABLED=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
import re
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from . import __version__
from .errors import WebappctlError
from .exit_codes import ExitCode

ENV_PREFIX = "WEBAPPCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

_SCHEME_RE = re.compile(r"[a-z][a-z0-9+.-]*")


class ConfigError(WebappctlError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.VALIDATION


@dataclass(frozen=True)
class UrlConfig:
    """URL validation settings."""

    allowed_schemes: tuple[str, ...] = ("http", "https")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"allowed_schemes": list(self.allowed_schemes)}


@dataclass(frozen=True)
class RuntimeConfig:
    """Where the shared runtime is installed from and to."""

    install_dir: Path
    archive: Path | None = None
    executable: str = "bin/webapp-runtime"

    @property
    def executable_path(self) -> Path:
        """Absolute path of the runtime binary."""
        return self.install_dir / self.executable

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "install_dir": str(self.install_dir),
            "archive": str(self.archive) if self.archive is not None else None,
            "executable": self.executable,
        }


@dataclass(frozen=True)
class IntegrationConfig:
    """Desktop integration settings."""

    enabled: bool = True
    applications_dir: Path = Path("~/.local/share/applications").expanduser()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"enabled": self.enabled, "applications_dir": str(self.applications_dir)}


@dataclass(frozen=True)
class HttpConfig:
    """Manifest fetcher settings."""

    timeout: float = 30.0
    user_agent: str = f"webappctl/{__version__}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"timeout": self.timeout, "user_agent": self.user_agent}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for webappctl."""

    config_file: Path
    data_dir: Path
    registry_dir: Path
    profiles_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path
    lock_timeout: float
    urls: UrlConfig
    runtime: RuntimeConfig
    integration: IntegrationConfig
    http: HttpConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "data_dir": str(self.data_dir),
            "registry_dir": str(self.registry_dir),
            "profiles_dir": str(self.profiles_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir),
            "lock_timeout": self.lock_timeout,
            "urls": self.urls.to_dict(),
            "runtime": self.runtime.to_dict(),
            "integration": self.integration.to_dict(),
            "http": self.http.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/webappctl/config.yml",
    "data_dir": "~/.local/share/webappctl",
    # The following directories are derived from data_dir when absent.
    "registry_dir": None,
    "profiles_dir": None,
    "logs_dir": None,
    "runtime_dir": None,
    "templates_dir": "~/.config/webappctl/templates",
    "lock_timeout": 30.0,
    "urls": {
        "allowed_schemes": ["http", "https"],
    },
    "runtime": {
        "install_dir": None,
        "archive": None,
        "executable": "bin/webapp-runtime",
    },
    "integration": {
        "enabled": True,
        "applications_dir": "~/.local/share/applications",
    },
    "http": {
        "timeout": 30.0,
        "user_agent": f"webappctl/{__version__}",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "urls": {"allowed_schemes"},
    "runtime": {"install_dir", "archive", "executable"},
    "integration": {"enabled", "applications_dir"},
    "http": {"timeout", "user_agent"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    urls = _as_dict(raw.get("urls"), "urls")
    schemes_raw = urls.get("allowed_schemes")
    if schemes_raw is not None:
        schemes = _as_sequence(schemes_raw, "urls.allowed_schemes")
        if not schemes:
            raise ConfigError("urls.allowed_schemes must list at least one scheme.")
        for index, scheme in enumerate(schemes):
            if not isinstance(scheme, str) or not _SCHEME_RE.fullmatch(scheme.lower()):
                raise ConfigError(
                    f"urls.allowed_schemes[{index}] is not a valid URL scheme: {scheme!r}."
                )

    http = _as_dict(raw.get("http"), "http")
    if http.get("timeout") is not None:
        _expect_positive_float(http["timeout"], "http.timeout", default=30.0)

    integration = _as_dict(raw.get("integration"), "integration")
    enabled = integration.get("enabled")
    if enabled is not None and not isinstance(enabled, bool):
        raise ConfigError(f"integration.enabled must be a boolean. Got {enabled!r}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    data_dir = _to_path(raw.get("data_dir"))
    registry_dir = _derived_path(raw.get("registry_dir"), data_dir / "registry")
    profiles_dir = _derived_path(raw.get("profiles_dir"), data_dir / "profiles")
    logs_dir = _derived_path(raw.get("logs_dir"), data_dir / "logs")
    runtime_dir = _derived_path(raw.get("runtime_dir"), data_dir / "run")
    templates_dir = _to_path(raw.get("templates_dir"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    urls_mapping = _as_dict(raw.get("urls"), "urls")
    schemes = tuple(
        str(item).lower()
        for item in _as_sequence(
            urls_mapping.get("allowed_schemes", ["http", "https"]),
            "urls.allowed_schemes",
        )
    )

    runtime_mapping = _as_dict(raw.get("runtime"), "runtime")
    archive_value = runtime_mapping.get("archive")
    runtime = RuntimeConfig(
        install_dir=_derived_path(runtime_mapping.get("install_dir"), data_dir / "runtime"),
        archive=_to_path(archive_value) if archive_value else None,
        executable=str(runtime_mapping.get("executable") or "bin/webapp-runtime"),
    )

    integration_mapping = _as_dict(raw.get("integration"), "integration")
    integration = IntegrationConfig(
        enabled=bool(integration_mapping.get("enabled", True)),
        applications_dir=_to_path(
            integration_mapping.get("applications_dir", "~/.local/share/applications")
        ),
    )

    http_mapping = _as_dict(raw.get("http"), "http")
    http = HttpConfig(
        timeout=_expect_positive_float(http_mapping.get("timeout"), "http.timeout", default=30.0),
        user_agent=str(http_mapping.get("user_agent") or f"webappctl/{__version__}"),
    )

    return AppConfig(
        config_file=config_file,
        data_dir=data_dir,
        registry_dir=registry_dir,
        profiles_dir=profiles_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        templates_dir=templates_dir,
        lock_timeout=lock_timeout,
        urls=UrlConfig(allowed_schemes=schemes),
        runtime=runtime,
        integration=integration,
        http=http,
    )


def _derived_path(value: object | None, fallback: Path) -> Path:
    return _to_path(value) if value else fallback


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "HttpConfig",
    "IntegrationConfig",
    "RuntimeConfig",
    "UrlConfig",
    "load_config",
]
