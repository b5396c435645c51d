"""Tests for TLS option aggregation."""
from __future__ import annotations

import datetime as dt
import ssl
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from webappctl.errors import CertificateLoadError, MalformedInputError
from webappctl.http_client import (
    DANGER_INVALID_CERTS_WARNING,
    DANGER_INVALID_HOSTNAMES_WARNING,
    TLSOptions,
    build_client_config,
)


def _self_signed(common_name: str) -> x509.Certificate:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = dt.datetime.now(dt.UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(days=1))
        .not_valid_after(now + dt.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )


def test_from_args_validates_paths(tmp_path: Path) -> None:
    with pytest.raises(MalformedInputError) as excinfo:
        TLSOptions.from_args(pem=[str(tmp_path / "missing.pem")])

    assert excinfo.value.field == "--tls-root-certificates-pem"


def test_build_client_config_loads_der_and_pem(tmp_path: Path) -> None:
    der_cert = _self_signed("der.example")
    pem_certs = [_self_signed("one.example"), _self_signed("two.example")]
    der_path = tmp_path / "root.der"
    der_path.write_bytes(der_cert.public_bytes(serialization.Encoding.DER))
    pem_path = tmp_path / "roots.pem"
    pem_path.write_bytes(
        b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in pem_certs)
    )

    options = TLSOptions.from_args(der=[str(der_path)], pem=[str(pem_path)])
    config = build_client_config(options)

    assert len(config.root_certificates) == 3
    assert config.warnings == ()
    context = config.ssl_context()
    assert context.verify_mode == ssl.CERT_REQUIRED
    assert context.check_hostname is True


def test_danger_flags_produce_warnings_and_relax_context() -> None:
    options = TLSOptions(danger_accept_invalid_certs=True, danger_accept_invalid_hostnames=True)

    config = build_client_config(options)

    assert options.is_dangerous
    assert config.warnings == (DANGER_INVALID_CERTS_WARNING, DANGER_INVALID_HOSTNAMES_WARNING)
    context = config.ssl_context()
    assert context.check_hostname is False
    assert context.verify_mode == ssl.CERT_NONE


def test_hostname_override_keeps_certificate_verification() -> None:
    config = build_client_config(TLSOptions(danger_accept_invalid_hostnames=True))

    context = config.ssl_context()

    assert context.check_hostname is False
    assert context.verify_mode == ssl.CERT_REQUIRED


def test_unparseable_certificate_is_a_collaborator_failure(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.pem"
    bogus.write_text("not a certificate")

    with pytest.raises(CertificateLoadError) as excinfo:
        build_client_config(TLSOptions.from_args(pem=[str(bogus)]))

    assert excinfo.value.target == str(bogus)


def test_custom_loader_is_used(tmp_path: Path) -> None:
    cert = _self_signed("custom.example")
    seen: list[Path] = []

    class RecordingLoader:
        def load_der(self, path: Path) -> list[x509.Certificate]:
            seen.append(path)
            return [cert]

        def load_pem(self, path: Path) -> list[x509.Certificate]:
            seen.append(path)
            return []

    path = tmp_path / "root.der"
    path.write_bytes(b"ignored")

    config = build_client_config(
        TLSOptions.from_args(der=[str(path)]),
        loader=RecordingLoader(),
    )

    assert seen == [path]
    assert config.root_certificates == (cert,)
