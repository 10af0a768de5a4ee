"""Ephemeral self-signed TLS certificates.

A certificate generated here lives only in memory for the lifetime of the
process; the next start produces a new one. Externally supplied certificate
and key files never pass through this module, uvicorn loads those itself.
"""
from __future__ import annotations

import ipaddress
import os
import ssl
import tempfile
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

__all__ = [
    "VALIDITY",
    "KEY_SIZE",
    "CertificateError",
    "ServerCertificate",
    "generate_self_signed",
    "next_serial_number",
]

VALIDITY = timedelta(days=7)
KEY_SIZE = 2048

_serial_lock = threading.Lock()
_last_serial = 0


class CertificateError(RuntimeError):
    """Raised when a key pair or certificate cannot be produced."""


@dataclass(frozen=True)
class ServerCertificate:
    """A private key and the certificate presented with it."""

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate

    @property
    def not_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    @property
    def serial_number(self) -> int:
        return self.certificate.serial_number

    @property
    def common_name(self) -> str:
        attrs = self.certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        return str(attrs[0].value) if attrs else ""

    def certificate_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def private_key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def ssl_context(self) -> ssl.SSLContext:
        """Build a server-side SSLContext presenting this certificate.

        The ssl module only loads chains from files, so the PEM material is
        written to an owner-only temporary directory that is gone again by
        the time this returns.
        """
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        with tempfile.TemporaryDirectory(prefix="fileserver-tls-") as tmp:
            cert_path = os.path.join(tmp, "cert.pem")
            key_path = os.path.join(tmp, "cert.key")
            for path, data in ((cert_path, self.certificate_pem()), (key_path, self.private_key_pem())):
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
            try:
                ctx.load_cert_chain(certfile=cert_path, keyfile=key_path)
            except ssl.SSLError as e:
                raise CertificateError(f"failed to load generated certificate: {e}") from e
        return ctx


def next_serial_number() -> int:
    """Return a serial derived from the clock, strictly increasing per process.

    Two generations within the same clock tick still get distinct serials.
    """
    global _last_serial
    with _serial_lock:
        serial = max(time.time_ns(), _last_serial + 1)
        _last_serial = serial
    return serial


def _subject_alt_names(common_name: str, host: str | None) -> x509.SubjectAlternativeName:
    names: list[x509.GeneralName] = [x509.DNSName(common_name)]
    if host:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            if host != common_name:
                names.append(x509.DNSName(host))
    return x509.SubjectAlternativeName(names)


def generate_self_signed(
    common_name: str,
    organization: str,
    *,
    host: str | None = None,
    validity: timedelta = VALIDITY,
    is_ca: bool = True,
    now: datetime | None = None,
) -> ServerCertificate:
    """Generate a fresh RSA key and a certificate signed by that same key.

    The certificate is valid from `now` for `validity` and is scoped to
    server authentication. `is_ca` marks it as its own certificate
    authority (and adds certificate signing to the key usage); pass False
    to issue a plain leaf.

    Raises:
        CertificateError: key generation or certificate construction failed.
    """
    now = (now or datetime.now(UTC)).replace(microsecond=0)

    try:
        key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    except (ValueError, TypeError) as e:
        raise CertificateError(f"failed to generate key: {e}") from e

    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "fileserver"),
        ]
    )

    try:
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(next_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + validity)
            .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=is_ca,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .add_extension(_subject_alt_names(common_name, host), critical=False)
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise CertificateError(f"failed to create certificate: {e}") from e

    return ServerCertificate(private_key=key, certificate=cert)
