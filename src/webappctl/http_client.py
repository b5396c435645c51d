"""HTTP client configuration assembled from the shared TLS flags.

The core only aggregates what the user asked for: extra trusted roots (each
read by a :class:`CertificateLoader`) and the two danger overrides. Reading
and parsing certificate files belongs to the loader; establishing
connections belongs to the manifest fetcher, which receives the resulting
:class:`ClientConfiguration`.
"""
from __future__ import annotations

import logging
import ssl
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .errors import CertificateLoadError
from .validators import parse_path

LOGGER = logging.getLogger(__name__)

DANGER_INVALID_CERTS_WARNING = (
    "TLS certificate verification is disabled (--tls-danger-accept-invalid-certs); "
    "connections can be intercepted."
)
DANGER_INVALID_HOSTNAMES_WARNING = (
    "TLS hostname verification is disabled (--tls-danger-accept-invalid-hostnames); "
    "certificates for other hosts will be accepted."
)


@dataclass(frozen=True)
class TLSOptions:
    """Raw TLS flags shared by ``site install`` and ``site update``."""

    root_certificates_der: tuple[Path, ...] = ()
    root_certificates_pem: tuple[Path, ...] = ()
    danger_accept_invalid_certs: bool = False
    danger_accept_invalid_hostnames: bool = False

    @classmethod
    def from_args(
        cls,
        *,
        der: Iterable[str | Path] | None = None,
        pem: Iterable[str | Path] | None = None,
        accept_invalid_certs: bool = False,
        accept_invalid_hostnames: bool = False,
    ) -> TLSOptions:
        """Validate certificate paths and build the options value."""
        return cls(
            root_certificates_der=tuple(
                parse_path(item, field="--tls-root-certificates-der", kind="file")
                for item in der or ()
            ),
            root_certificates_pem=tuple(
                parse_path(item, field="--tls-root-certificates-pem", kind="file")
                for item in pem or ()
            ),
            danger_accept_invalid_certs=accept_invalid_certs,
            danger_accept_invalid_hostnames=accept_invalid_hostnames,
        )

    @property
    def is_dangerous(self) -> bool:
        """True when either danger override is set."""
        return self.danger_accept_invalid_certs or self.danger_accept_invalid_hostnames


class CertificateLoader(Protocol):
    """Collaborator that reads certificate files."""

    def load_der(self, path: Path) -> list[x509.Certificate]:
        """Return the certificate stored in DER form at *path*."""

    def load_pem(self, path: Path) -> list[x509.Certificate]:
        """Return every certificate stored in PEM form at *path*."""


class FileCertificateLoader:
    """Load certificates from disk with ``cryptography``."""

    def load_der(self, path: Path) -> list[x509.Certificate]:
        """Return the certificate stored in DER form at *path*."""
        data = self._read(path)
        try:
            return [x509.load_der_x509_certificate(data)]
        except ValueError as exc:
            raise CertificateLoadError(
                f"Failed to parse DER certificate {path}: {exc}",
                operation="certificate.load_der",
                target=str(path),
            ) from exc

    def load_pem(self, path: Path) -> list[x509.Certificate]:
        """Return every certificate stored in PEM form at *path*."""
        data = self._read(path)
        try:
            certificates = x509.load_pem_x509_certificates(data)
        except ValueError as exc:
            raise CertificateLoadError(
                f"Failed to parse PEM certificates {path}: {exc}",
                operation="certificate.load_pem",
                target=str(path),
            ) from exc
        return list(certificates)

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise CertificateLoadError(
                f"Failed to read certificate {path}: {exc}",
                operation="certificate.read",
                target=str(path),
            ) from exc


@dataclass(frozen=True)
class ClientConfiguration:
    """Aggregated HTTP client settings handed to the manifest fetcher."""

    root_certificates: tuple[x509.Certificate, ...] = ()
    accept_invalid_certs: bool = False
    accept_invalid_hostnames: bool = False
    warnings: tuple[str, ...] = field(default=())

    def ssl_context(self) -> ssl.SSLContext:
        """Return an SSL context honouring extra roots and danger overrides."""
        context = ssl.create_default_context()
        if self.root_certificates:
            pem_bundle = "".join(
                certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")
                for certificate in self.root_certificates
            )
            context.load_verify_locations(cadata=pem_bundle)
        if self.accept_invalid_hostnames or self.accept_invalid_certs:
            context.check_hostname = False
        if self.accept_invalid_certs:
            context.verify_mode = ssl.CERT_NONE
        return context


def build_client_config(
    options: TLSOptions,
    *,
    loader: CertificateLoader | None = None,
) -> ClientConfiguration:
    """Aggregate *options* into a :class:`ClientConfiguration`."""
    active_loader = loader or FileCertificateLoader()
    certificates: list[x509.Certificate] = []
    for path in options.root_certificates_der:
        certificates.extend(active_loader.load_der(path))
    for path in options.root_certificates_pem:
        certificates.extend(active_loader.load_pem(path))

    warnings: list[str] = []
    if options.danger_accept_invalid_certs:
        warnings.append(DANGER_INVALID_CERTS_WARNING)
    if options.danger_accept_invalid_hostnames:
        warnings.append(DANGER_INVALID_HOSTNAMES_WARNING)
    for warning in warnings:
        LOGGER.warning(warning)

    return ClientConfiguration(
        root_certificates=tuple(certificates),
        accept_invalid_certs=options.danger_accept_invalid_certs,
        accept_invalid_hostnames=options.danger_accept_invalid_hostnames,
        warnings=tuple(warnings),
    )


__all__ = [
    "CertificateLoader",
    "ClientConfiguration",
    "FileCertificateLoader",
    "TLSOptions",
    "build_client_config",
]
