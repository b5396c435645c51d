"""Parsers that turn raw CLI strings into typed values.

Every function raises :class:`~webappctl.errors.MalformedInputError` naming
the offending flag or argument, so callers can report failures without
knowing which parser produced them.
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import urljoin, urlsplit, urlunsplit

from .errors import MalformedInputError
from .identifiers import Identifier, IdentifierError

DEFAULT_URL_SCHEMES: frozenset[str] = frozenset({"http", "https"})
HOST_REQUIRED_SCHEMES: frozenset[str] = frozenset({"http", "https", "ftp", "ws", "wss"})

_SCHEME_RE = re.compile(r"[a-z][a-z0-9+.-]*")
_FORBIDDEN_URL_CHARS = re.compile(r"[\s\x00-\x1f\x7f]")


def parse_url(
    value: str,
    *,
    field: str,
    schemes: Iterable[str] | None = DEFAULT_URL_SCHEMES,
) -> str:
    """Validate *value* as an absolute URL and return its normalised form.

    ``schemes=None`` accepts any syntactically valid scheme.
    """
    if not isinstance(value, str):
        raise MalformedInputError(field, "URL must be a string.")
    candidate = value.strip()
    if not candidate:
        raise MalformedInputError(field, "URL must be a non-empty string.")
    if _FORBIDDEN_URL_CHARS.search(candidate):
        raise MalformedInputError(field, "URL must not contain whitespace or control characters.")

    try:
        parts = urlsplit(candidate)
        # Accessing ``port`` validates the numeric range.
        parts.port  # noqa: B018
    except ValueError as exc:
        raise MalformedInputError(field, f"{candidate!r} is not a valid URL ({exc}).") from exc

    scheme = parts.scheme.lower()
    if not scheme or not _SCHEME_RE.fullmatch(scheme):
        raise MalformedInputError(field, f"{candidate!r} is not an absolute URL.")
    if schemes is not None:
        allowed = {item.lower() for item in schemes}
        if scheme not in allowed:
            joined = ", ".join(sorted(allowed))
            raise MalformedInputError(
                field,
                f"URL scheme '{scheme}' is not allowed (allowed: {joined}).",
            )
    if scheme in HOST_REQUIRED_SCHEMES and not parts.hostname:
        raise MalformedInputError(field, f"{candidate!r} is missing a host.")

    netloc = parts.netloc
    if parts.hostname:
        netloc = _lowercase_host(parts.netloc)
    path = parts.path
    if scheme in HOST_REQUIRED_SCHEMES and not path:
        path = "/"
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def _lowercase_host(netloc: str) -> str:
    userinfo, at, hostport = netloc.rpartition("@")
    return f"{userinfo}{at}{hostport.lower()}"


def default_document_url(manifest_url: str) -> str:
    """Return the document URL derived from *manifest_url* (its directory)."""
    return urljoin(manifest_url, ".")


def url_host(url: str) -> str:
    """Return the host portion of *url* (empty string when absent)."""
    return urlsplit(url).hostname or ""


def parse_optional_url(
    value: str | None,
    *,
    field: str,
    schemes: Iterable[str] | None = DEFAULT_URL_SCHEMES,
) -> str | None:
    """Parse *value* when present, returning ``None`` for absent values."""
    if value is None:
        return None
    return parse_url(value, field=field, schemes=schemes)


def parse_identifier_arg(value: str, *, field: str) -> Identifier:
    """Parse an identifier argument, converting errors to malformed input."""
    try:
        return Identifier.parse(value)
    except IdentifierError as exc:
        raise MalformedInputError(field, str(exc)) from exc


def parse_path(
    value: str | Path,
    *,
    field: str,
    must_exist: bool = True,
    kind: str = "any",
) -> Path:
    """Validate a filesystem path argument.

    *kind* is ``"file"``, ``"dir"`` or ``"any"`` and only applies when
    *must_exist* is true.
    """
    if kind not in {"file", "dir", "any"}:
        raise ValueError(f"Unsupported path kind {kind!r}.")
    text = str(value).strip()
    if not text:
        raise MalformedInputError(field, "Path must be a non-empty string.")
    path = Path(text).expanduser()
    if not must_exist:
        return path
    if not path.exists():
        raise MalformedInputError(field, f"Path '{path}' does not exist.")
    if kind == "file" and not path.is_file():
        raise MalformedInputError(field, f"Path '{path}' is not a file.")
    if kind == "dir" and not path.is_dir():
        raise MalformedInputError(field, f"Path '{path}' is not a directory.")
    return path


def parse_string_list(
    values: Iterable[str] | None,
    *,
    field: str,
) -> tuple[str, ...] | None:
    """Flatten repeated and comma-separated values into a tuple.

    ``None`` or zero occurrences mean the option was absent. Any occurrence,
    even an empty string, yields a tuple, so ``--categories=""`` produces the
    explicit empty list. Order and duplicates are kept as given.
    """
    if values is None:
        return None
    raw = list(values)
    if not raw:
        return None
    items: list[str] = []
    for entry in raw:
        if not isinstance(entry, str):
            raise MalformedInputError(field, f"Expected text values, got {entry!r}.")
        for part in entry.split(","):
            stripped = part.strip()
            if stripped:
                items.append(stripped)
    return tuple(items)


def parse_url_handlers(
    values: Iterable[str] | None,
    *,
    field: str,
) -> tuple[str, ...] | None:
    """Parse URL handler scopes (absolute http/https URLs)."""
    items = parse_string_list(values, field=field)
    if items is None:
        return None
    return tuple(
        dict.fromkeys(parse_url(item, field=field, schemes=DEFAULT_URL_SCHEMES) for item in items)
    )


def parse_protocol_handlers(
    values: Iterable[str] | None,
    *,
    field: str,
) -> tuple[str, ...] | None:
    """Parse protocol handler schemes such as ``web+coffee`` or ``mailto``."""
    items = parse_string_list(values, field=field)
    if items is None:
        return None
    schemes: list[str] = []
    for item in items:
        scheme = item.lower().removesuffix(":")
        if not _SCHEME_RE.fullmatch(scheme):
            raise MalformedInputError(field, f"'{item}' is not a valid protocol scheme.")
        if scheme not in schemes:
            schemes.append(scheme)
    return tuple(schemes)


def parse_text(value: str, *, field: str) -> str:
    """Return *value* stripped, rejecting empty text."""
    stripped = value.strip()
    if not stripped:
        raise MalformedInputError(field, "Value must be a non-empty string.")
    return stripped


__all__ = [
    "DEFAULT_URL_SCHEMES",
    "default_document_url",
    "parse_identifier_arg",
    "parse_optional_url",
    "parse_path",
    "parse_protocol_handlers",
    "parse_string_list",
    "parse_text",
    "parse_url",
    "parse_url_handlers",
    "url_host",
]
