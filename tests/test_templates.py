"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest

from webappctl.errors import IntegrationError
from webappctl.templates import TemplateEngine

ENTRY = "desktop/entry.desktop.j2"


def _context(**overrides: object) -> dict[str, object]:
    context: dict[str, object] = {
        "site_id": "01HZX0000000000000000000AB",
        "profile_id": "0" * 26,
        "name": "Mail",
        "comment": None,
        "icon": None,
        "exec_command": "/usr/bin/webappctl",
        "start_url": "https://example.com/",
        "categories": (),
        "keywords": (),
        "mime_types": [],
    }
    context.update(overrides)
    return context


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        ENTRY,
        _context(categories=("Office", "Email"), mime_types=["x-scheme-handler/mailto"]),
    )

    lines = output.splitlines()
    assert lines[0] == "[Desktop Entry]"
    assert "Name=Mail" in lines
    assert "Categories=Office;Email;" in lines
    assert "MimeType=x-scheme-handler/mailto;" in lines
    assert (
        "Exec=/usr/bin/webappctl site launch 01HZX0000000000000000000AB --protocol %u" in lines
    )
    assert not any(line.startswith("Icon=") for line in lines)
    assert "" not in lines


def test_desktop_values_are_escaped() -> None:
    """Values cannot break out of their line or list item."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        ENTRY,
        _context(name="Mail\nExec=evil", keywords=("a;b",)),
    )

    assert "Name=Mail\\nExec=evil" in output.splitlines()
    assert "Keywords=a\\;b;" in output.splitlines()


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "applications" / "entry.desktop"

    changed = engine.render_to_path(ENTRY, destination, _context(), mode=0o600)

    assert changed is True
    assert oct(destination.stat().st_mode & 0o777) == "0o600"

    # Second render with same content should be a no-op.
    assert engine.render_to_path(ENTRY, destination, _context(), mode=0o600) is False


def test_render_to_path_replaces_undecodable_file(tmp_path: Path) -> None:
    """A destination holding non-UTF-8 bytes is rewritten, not read as text."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "entry.desktop"
    destination.write_bytes(b"\xff\xfe")

    assert engine.render_to_path(ENTRY, destination, _context()) is True
    assert "Name=Mail" in destination.read_text(encoding="utf-8").splitlines()


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "desktop" / "entry.desktop.j2"
    override_template.parent.mkdir(parents=True)
    override_template.write_text("override {{ name }}", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    assert engine.render_to_string(ENTRY, _context()) == "override Mail"


def test_missing_variable_raises_integration_error() -> None:
    """StrictUndefined surfaces missing context as an integration failure."""
    engine = TemplateEngine.with_overrides(None)
    context = _context()
    del context["site_id"]

    with pytest.raises(IntegrationError, match="Failed to render"):
        engine.render_to_string(ENTRY, context)
