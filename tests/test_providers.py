"""Tests for the manifest, integration, runtime and launcher providers."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path

import httpx
import pytest

from webappctl.errors import IntegrationError, LaunchError, ManifestError, RuntimeInstallError
from webappctl.http_client import ClientConfiguration
from webappctl.identifiers import Identifier
from webappctl.providers import (
    DesktopIntegration,
    HttpManifestFetcher,
    RuntimeInstaller,
    RuntimeLauncher,
    parse_manifest,
)
from webappctl.providers.runtime_installer import compute_checksum
from webappctl.records import ManifestSnapshot, Site
from webappctl.templates import TemplateEngine

SITE_ID = Identifier.parse("01HZX0000000000000000000AB")
MANIFEST_URL = "https://example.com/app/manifest.json"


# Manifest ---------------------------------------------------------------
def test_parse_manifest_resolves_relative_urls() -> None:
    snapshot = parse_manifest(
        {
            "name": " Example Mail ",
            "start_url": "./inbox",
            "scope": "/app/",
            "categories": ["Productivity", 7],
            "keywords": "not-a-list",
            "icons": [{"src": "icons/192.png"}, {"sizes": "any"}, "bogus"],
            "protocol_handlers": [
                {"protocol": "MAILTO", "url": "/compose?to=%s"},
                {"protocol": "mailto"},
            ],
        },
        base_url=MANIFEST_URL,
    )

    assert snapshot.name == "Example Mail"
    assert snapshot.start_url == "https://example.com/app/inbox"
    assert snapshot.scope == "https://example.com/app/"
    assert snapshot.categories == ("productivity",)
    assert snapshot.keywords == ()
    assert snapshot.icons == ("https://example.com/app/icons/192.png",)
    assert snapshot.protocol_handlers == ("mailto",)


def test_parse_manifest_rejects_non_object() -> None:
    with pytest.raises(ManifestError, match="JSON object"):
        parse_manifest(["not", "an", "object"], base_url=MANIFEST_URL)


def test_http_fetcher_sends_user_agent_and_parses() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"name": "Example", "start_url": "/"})

    fetcher = HttpManifestFetcher(user_agent="webappctl-test", transport=httpx.MockTransport(handler))

    snapshot = fetcher.fetch(MANIFEST_URL, client=ClientConfiguration())

    assert snapshot.name == "Example"
    assert snapshot.start_url == "https://example.com/"
    assert seen[0].headers["User-Agent"] == "webappctl-test"


@pytest.mark.parametrize(
    ("response", "message"),
    [
        (httpx.Response(404), "HTTP 404"),
        (httpx.Response(200, text="<html>"), "not valid JSON"),
    ],
)
def test_http_fetcher_failures_raise_manifest_error(
    response: httpx.Response,
    message: str,
) -> None:
    fetcher = HttpManifestFetcher(transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(ManifestError, match=message) as excinfo:
        fetcher.fetch(MANIFEST_URL, client=ClientConfiguration())

    assert excinfo.value.target == MANIFEST_URL


def test_http_fetcher_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = HttpManifestFetcher(transport=httpx.MockTransport(handler))

    with pytest.raises(ManifestError, match="connection refused"):
        fetcher.fetch(MANIFEST_URL, client=ClientConfiguration())


# Desktop integration ----------------------------------------------------
def _site(**values: object) -> Site:
    return Site.create(
        id=SITE_ID,
        manifest_url=MANIFEST_URL,
        manifest=ManifestSnapshot(
            name="Example",
            icons=("https://example.com/app/icon.png",),
            categories=("office",),
        ),
        **values,
    )


def test_integration_install_and_remove(tmp_path: Path) -> None:
    integration = DesktopIntegration(
        templates=TemplateEngine.with_overrides(None),
        applications_dir=tmp_path / "applications",
        exec_command="/usr/bin/webappctl",
    )
    site = _site(enabled_protocol_handlers=("mailto",))

    assert integration.install(site) is True
    path = integration.entry_path(site)
    assert path.name == f"webappctl-{SITE_ID}.desktop"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert "Name=Example" in lines
    assert "Icon=https://example.com/app/icon.png" in lines
    assert "Categories=office;" in lines
    assert "MimeType=x-scheme-handler/mailto;" in lines
    assert f"X-WebApp-Profile={'0' * 26}" in lines

    assert integration.install(site) is False
    assert integration.remove(site) is True
    assert integration.remove(site) is False


def test_integration_keeps_icon_when_not_updating_icons(tmp_path: Path) -> None:
    integration = DesktopIntegration(
        templates=TemplateEngine.with_overrides(None),
        applications_dir=tmp_path,
    )
    integration.install(_site())

    changed = integration.install(
        _site(icon_url="https://cdn.example.com/new.png", name="Renamed"),
        update_icons=False,
    )

    assert changed is True
    lines = integration.entry_path(_site()).read_text(encoding="utf-8").splitlines()
    assert "Name=Renamed" in lines
    assert "Icon=https://example.com/app/icon.png" in lines


def test_integration_reports_undecodable_existing_entry(tmp_path: Path) -> None:
    integration = DesktopIntegration(
        templates=TemplateEngine.with_overrides(None),
        applications_dir=tmp_path,
    )
    integration.entry_path(_site()).write_bytes(b"\xff\xfe")

    with pytest.raises(IntegrationError, match="Failed to read desktop entry") as excinfo:
        integration.install(_site(), update_icons=False)

    assert excinfo.value.operation == "integration.read"


# Runtime installer ------------------------------------------------------
def _fake_extract(executable: str, version: str | None):
    def fake_run(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
        staging_dir = Path(cmd[-1])
        binary = staging_dir / executable
        binary.parent.mkdir(parents=True, exist_ok=True)
        binary.write_text("#!/bin/sh\n", encoding="utf-8")
        if version is not None:
            (staging_dir / "VERSION").write_text(version, encoding="utf-8")
        return subprocess.CompletedProcess(list(cmd), 0, stdout="", stderr="")

    return fake_run


def test_runtime_install_unpacks_and_replaces(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    archive = tmp_path / "runtime.tar.gz"
    archive.write_bytes(b"archive-bytes")
    install_dir = tmp_path / "data" / "runtime"
    install_dir.mkdir(parents=True)
    (install_dir / "stale.txt").write_text("old")
    installer = RuntimeInstaller(install_dir=install_dir, archive=archive)
    monkeypatch.setattr(installer, "_run_extract_command", _fake_extract("bin/webapp-runtime", "1.02.0\n"))

    result = installer.install()

    assert result.path == install_dir
    assert result.version == "1.2.0"
    assert result.installed_at.endswith("Z")
    assert result.metadata["sha256"] == compute_checksum(archive)
    assert (install_dir / "bin" / "webapp-runtime").is_file()
    assert not (install_dir / "stale.txt").exists()
    assert [path.name for path in install_dir.parent.iterdir()] == ["runtime"]

    assert installer.uninstall() is True
    assert installer.uninstall() is False


def test_runtime_install_keeps_nonstandard_version(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    archive = tmp_path / "runtime.tar"
    archive.write_bytes(b"x")
    installer = RuntimeInstaller(install_dir=tmp_path / "runtime", archive=archive)
    monkeypatch.setattr(installer, "_run_extract_command", _fake_extract("bin/webapp-runtime", "nightly"))

    assert installer.install().version == "nightly"


def test_runtime_install_requires_executable_and_cleans_up(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    archive = tmp_path / "runtime.tar"
    archive.write_bytes(b"x")
    root = tmp_path / "data"
    installer = RuntimeInstaller(install_dir=root / "runtime", archive=archive)
    monkeypatch.setattr(installer, "_run_extract_command", _fake_extract("bin/other", None))

    with pytest.raises(RuntimeInstallError, match="does not contain"):
        installer.install()

    assert list(root.iterdir()) == []


def test_runtime_install_reports_tar_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    archive = tmp_path / "runtime.tar"
    archive.write_bytes(b"x")
    installer = RuntimeInstaller(install_dir=tmp_path / "runtime", archive=archive)

    def failing(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(list(cmd), 2, stdout="", stderr="tar: bad archive\n")

    monkeypatch.setattr(installer, "_run_extract_command", failing)

    with pytest.raises(RuntimeInstallError, match="tar: bad archive"):
        installer.install()


def test_runtime_install_without_archive(tmp_path: Path) -> None:
    with pytest.raises(RuntimeInstallError, match="No runtime archive"):
        RuntimeInstaller(install_dir=tmp_path / "runtime", archive=None).install()
    with pytest.raises(RuntimeInstallError, match="not found"):
        RuntimeInstaller(install_dir=tmp_path / "runtime", archive=tmp_path / "nope.tar").install()


# Launcher ---------------------------------------------------------------
def test_launcher_builds_command(tmp_path: Path) -> None:
    launcher = RuntimeLauncher(tmp_path / "bin" / "webapp-runtime")

    cmd = launcher.build_command(
        site_id=str(SITE_ID),
        profile_dir=tmp_path / "profiles" / "p",
        url="https://example.com/",
        arguments=["--kiosk"],
    )

    assert cmd == [
        str(tmp_path / "bin" / "webapp-runtime"),
        "--profile",
        str(tmp_path / "profiles" / "p"),
        "--class",
        f"WebApp-{SITE_ID}",
        "--kiosk",
        "https://example.com/",
    ]


def test_launcher_requires_executable(tmp_path: Path) -> None:
    launcher = RuntimeLauncher(tmp_path / "missing")

    with pytest.raises(LaunchError, match="not found"):
        launcher.launch(site_id=str(SITE_ID), profile_dir=tmp_path, url="https://example.com/")


def test_launcher_spawns_detached_process(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    executable = tmp_path / "runtime"
    executable.write_text("#!/bin/sh\n")
    calls: list[dict[str, object]] = []

    class FakePopen:
        pid = 4242

        def __init__(self, cmd: list[str], **kwargs: object) -> None:
            calls.append({"cmd": cmd, **kwargs})

    monkeypatch.setattr(subprocess, "Popen", FakePopen)

    pid = RuntimeLauncher(executable).launch(
        site_id=str(SITE_ID),
        profile_dir=tmp_path,
        url="https://example.com/",
    )

    assert pid == 4242
    assert calls[0]["start_new_session"] is True
    assert calls[0]["cmd"][-1] == "https://example.com/"  # type: ignore[index]
