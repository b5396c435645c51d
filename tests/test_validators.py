"""Tests for CLI value parsers."""
from __future__ import annotations

from pathlib import Path

import pytest

from webappctl.errors import MalformedInputError
from webappctl.exit_codes import ExitCode
from webappctl.validators import (
    default_document_url,
    parse_identifier_arg,
    parse_path,
    parse_protocol_handlers,
    parse_string_list,
    parse_url,
    parse_url_handlers,
)


def test_parse_url_normalises_scheme_and_host() -> None:
    assert parse_url("HTTPS://Example.COM", field="--url") == "https://example.com/"
    assert (
        parse_url("https://user@Example.com:8443/app?x=1#top", field="--url")
        == "https://user@example.com:8443/app?x=1#top"
    )


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("", "non-empty"),
        ("example.com/app", "not an absolute URL"),
        ("ftp://example.com/", "not allowed"),
        ("https:///path", "missing a host"),
        ("https://exa mple.com/", "whitespace"),
        ("https://example.com:99999/", "not a valid URL"),
    ],
)
def test_parse_url_rejects_invalid_values(value: str, message: str) -> None:
    with pytest.raises(MalformedInputError, match=message) as excinfo:
        parse_url(value, field="--start-url")

    assert excinfo.value.field == "--start-url"
    assert excinfo.value.exit_code is ExitCode.VALIDATION


def test_parse_url_accepts_any_scheme_when_unrestricted() -> None:
    assert parse_url("web+coffee:latte", field="--protocol", schemes=None) == "web+coffee:latte"


def test_default_document_url_is_manifest_directory() -> None:
    assert (
        default_document_url("https://example.com/app/manifest.json")
        == "https://example.com/app/"
    )


def test_parse_identifier_arg_wraps_errors() -> None:
    with pytest.raises(MalformedInputError) as excinfo:
        parse_identifier_arg("nope", field="ID")

    assert excinfo.value.field == "ID"


def test_parse_string_list_distinguishes_absent_and_empty() -> None:
    assert parse_string_list(None, field="--categories") is None
    assert parse_string_list([], field="--categories") is None
    assert parse_string_list([""], field="--categories") == ()
    assert parse_string_list(["a, b", "c", "a"], field="--categories") == ("a", "b", "c", "a")


def test_parse_url_handlers_deduplicates() -> None:
    handlers = parse_url_handlers(
        ["https://example.com/a", "https://EXAMPLE.com/a"],
        field="--enabled-url-handlers",
    )

    assert handlers == ("https://example.com/a",)


def test_parse_protocol_handlers_lowercases_and_validates() -> None:
    assert parse_protocol_handlers(
        ["Web+Coffee:", "mailto", "mailto"],
        field="--enabled-protocol-handlers",
    ) == ("web+coffee", "mailto")

    with pytest.raises(MalformedInputError, match="not a valid protocol scheme"):
        parse_protocol_handlers(["1bad"], field="--enabled-protocol-handlers")


def test_parse_path_checks_kind(tmp_path: Path) -> None:
    file_path = tmp_path / "cert.pem"
    file_path.write_text("data")

    assert parse_path(str(file_path), field="--cert", kind="file") == file_path
    with pytest.raises(MalformedInputError, match="not a directory"):
        parse_path(file_path, field="--template", kind="dir")
    with pytest.raises(MalformedInputError, match="does not exist"):
        parse_path(tmp_path / "missing", field="--template")
    assert parse_path(tmp_path / "missing", field="--x", must_exist=False) == tmp_path / "missing"
