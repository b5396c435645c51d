"""Desktop integration: one freedesktop ``.desktop`` entry per site."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..errors import IntegrationError
from ..records import Site
from ..templates import TemplateEngine

LOGGER = logging.getLogger(__name__)

TEMPLATE_NAME = "desktop/entry.desktop.j2"


@dataclass(slots=True)
class DesktopIntegration:
    """Render and remove desktop entries for installed sites."""

    templates: TemplateEngine
    applications_dir: Path = Path("~/.local/share/applications").expanduser()
    exec_command: str = "webappctl"

    def entry_name(self, site: Site) -> str:
        """Return the desktop entry file name for *site*."""
        return f"webappctl-{site.id}.desktop"

    def entry_path(self, site: Site) -> Path:
        """Return the full path of the desktop entry for *site*."""
        return self.applications_dir / self.entry_name(site)

    def install(self, site: Site, *, update_icons: bool = True) -> bool:
        """Write the desktop entry for *site*; return ``True`` when it changed.

        With ``update_icons`` disabled the ``Icon`` value already on disk is
        kept.
        """
        path = self.entry_path(site)
        icon = self._resolve_icon(site) if update_icons else self._existing_icon(path)
        context = {
            "site_id": str(site.id),
            "profile_id": str(site.profile_id),
            "name": site.display_name(),
            "comment": site.description or (site.manifest.description if site.manifest else None),
            "icon": icon,
            "exec_command": self.exec_command,
            "start_url": site.effective_start_url(),
            "categories": site.effective_categories(),
            "keywords": site.effective_keywords(),
            "mime_types": [
                f"x-scheme-handler/{protocol}" for protocol in site.enabled_protocol_handlers
            ],
        }
        changed = self.templates.render_to_path(TEMPLATE_NAME, path, context, mode=0o644)
        LOGGER.debug("Desktop entry %s %s", path, "written" if changed else "unchanged")
        return changed

    def remove(self, site: Site) -> bool:
        """Remove the desktop entry for *site*; return ``False`` when absent."""
        path = self.entry_path(site)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise IntegrationError(
                f"Failed to remove desktop entry {path}: {exc}",
                operation="integration.remove",
                target=str(path),
            ) from exc
        LOGGER.debug("Desktop entry %s removed", path)
        return True

    # ------------------------------------------------------------------
    @staticmethod
    def _resolve_icon(site: Site) -> str | None:
        if site.icon_url:
            return site.icon_url
        if site.manifest is not None and site.manifest.icons:
            return site.manifest.icons[0]
        return None

    @staticmethod
    def _existing_icon(path: Path) -> str | None:
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise IntegrationError(
                f"Failed to read desktop entry {path}: {exc}",
                operation="integration.read",
                target=str(path),
            ) from exc
        for line in lines:
            if line.startswith("Icon="):
                return line.removeprefix("Icon=")
        return None


__all__ = ["DesktopIntegration"]
