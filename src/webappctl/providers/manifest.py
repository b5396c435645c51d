"""Fetch and minimally parse web app manifests."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol
from urllib.parse import urljoin

import httpx

from .. import __version__
from ..errors import ManifestError
from ..http_client import ClientConfiguration
from ..records import ManifestSnapshot

LOGGER = logging.getLogger(__name__)


class ManifestFetcher(Protocol):
    """Collaborator that turns a manifest URL into a snapshot."""

    def fetch(self, url: str, *, client: ClientConfiguration) -> ManifestSnapshot:
        """Fetch and parse the manifest at *url*."""


class HttpManifestFetcher:
    """Fetch manifests with :mod:`httpx`."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str = f"webappctl/{__version__}",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialise with request settings; *transport* is for tests."""
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport

    def fetch(self, url: str, *, client: ClientConfiguration) -> ManifestSnapshot:
        """Fetch and parse the manifest at *url*."""
        LOGGER.debug("Fetching manifest %s", url)
        try:
            with httpx.Client(
                verify=client.ssl_context(),
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent, "Accept": "application/manifest+json, application/json"},
                follow_redirects=True,
                transport=self.transport,
            ) as http:
                response = http.get(url)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ManifestError(
                f"Manifest request to {url} failed with HTTP {exc.response.status_code}.",
                operation="manifest.fetch",
                target=url,
            ) from exc
        except httpx.HTTPError as exc:
            raise ManifestError(
                f"Failed to fetch manifest {url}: {exc}",
                operation="manifest.fetch",
                target=url,
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ManifestError(
                f"Manifest {url} is not valid JSON: {exc}",
                operation="manifest.parse",
                target=url,
            ) from exc
        return parse_manifest(payload, base_url=str(response.url))


def parse_manifest(payload: object, *, base_url: str) -> ManifestSnapshot:
    """Extract the fields webappctl uses from a manifest document.

    Relative URLs are resolved against *base_url*. Members with an
    unexpected type are ignored, as browsers do.
    """
    if not isinstance(payload, Mapping):
        raise ManifestError(
            "Manifest must be a JSON object.",
            operation="manifest.parse",
            target=base_url,
        )
    start_url = _string(payload.get("start_url"))
    scope = _string(payload.get("scope"))
    icons: list[str] = []
    for icon in _list(payload.get("icons")):
        if isinstance(icon, Mapping):
            src = _string(icon.get("src"))
            if src:
                icons.append(urljoin(base_url, src))
    protocols: list[str] = []
    for handler in _list(payload.get("protocol_handlers")):
        if isinstance(handler, Mapping):
            protocol = _string(handler.get("protocol"))
            if protocol and protocol.lower() not in protocols:
                protocols.append(protocol.lower())
    return ManifestSnapshot(
        name=_string(payload.get("name")),
        short_name=_string(payload.get("short_name")),
        description=_string(payload.get("description")),
        start_url=urljoin(base_url, start_url) if start_url else None,
        scope=urljoin(base_url, scope) if scope else None,
        categories=tuple(item.lower() for item in _strings(payload.get("categories"))),
        keywords=tuple(_strings(payload.get("keywords"))),
        icons=tuple(icons),
        protocol_handlers=tuple(protocols),
    )


def _string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _list(value: object) -> list[object]:
    return list(value) if isinstance(value, list) else []


def _strings(value: object) -> list[str]:
    return [item.strip() for item in _list(value) if isinstance(item, str) and item.strip()]


__all__ = ["HttpManifestFetcher", "ManifestFetcher", "parse_manifest"]
