"""Template rendering for files webappctl writes outside its data directory.

Built-in templates ship inside this package; a user template directory can
shadow any of them by providing a file with the same relative name.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
)

from ..errors import IntegrationError


@dataclass(frozen=True)
class TemplateEngine:
    """Render Jinja2 templates with strict variable handling."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine searching *override_dir* before built-in templates."""
        loaders = []
        if override_dir is not None:
            loaders.append(FileSystemLoader(str(Path(override_dir).expanduser())))
        loaders.append(PackageLoader("webappctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        environment.filters["desktop_escape"] = _desktop_escape
        environment.filters["desktop_list"] = _desktop_list
        return cls(environment=environment)

    def render_to_string(self, name: str, context: Mapping[str, object]) -> str:
        """Render template *name* with *context*."""
        try:
            return self.environment.get_template(name).render(**dict(context))
        except TemplateError as exc:
            raise IntegrationError(
                f"Failed to render template {name}: {exc}",
                operation="template.render",
                target=name,
            ) from exc

    def render_to_path(
        self,
        name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *name* into *destination*; return ``False`` when unchanged."""
        content = self.render_to_string(name, context)
        try:
            if destination.exists() and destination.read_bytes() == content.encode("utf-8"):
                os.chmod(destination, mode)
                return False
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(destination.parent), prefix=f".{destination.name}.")
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.chmod(tmp_path, mode)
                os.replace(tmp_path, destination)
            finally:
                tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            raise IntegrationError(
                f"Failed to write {destination}: {exc}",
                operation="template.write",
                target=str(destination),
            ) from exc
        return True


def _desktop_escape(value: object) -> str:
    # Desktop entry string values cannot span lines.
    text = str(value)
    return (
        text.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def _desktop_list(values: object) -> str:
    items = [_desktop_escape(item).replace(";", "\\;") for item in values or ()]  # type: ignore[attr-defined]
    return "".join(f"{item};" for item in items)


__all__ = ["TemplateEngine"]
