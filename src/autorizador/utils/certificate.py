from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)


def load_pfx(pfx_path: str, password: str) -> tuple[bytes, bytes]:
    """Load a .pfx/.p12 file and return (private_key_pem, cert_chain_pem).

    The signer certificate comes first in the returned PEM, followed by any
    CA certificates bundled in the file.
    """
    pfx_data = Path(pfx_path).read_bytes()
    private_key, certificate, chain = pkcs12.load_key_and_certificates(pfx_data, password.encode())

    if private_key is None or certificate is None:
        raise ValueError("Certificado o clave privada ausente en el archivo .pfx")

    key_pem = private_key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=NoEncryption(),
    )
    cert_pem = certificate.public_bytes(Encoding.PEM)
    for ca in chain or []:
        cert_pem += ca.public_bytes(Encoding.PEM)

    return key_pem, cert_pem


def certificate_info(cert_pem: bytes) -> dict:
    """Describe the signer (first) certificate of a PEM bundle."""
    certificate = x509.load_pem_x509_certificates(cert_pem)[0]
    now = datetime.now(UTC)
    return {
        "subject": certificate.subject.rfc4514_string(),
        "issuer": certificate.issuer.rfc4514_string(),
        "not_before": certificate.not_valid_before_utc,
        "not_after": certificate.not_valid_after_utc,
        "valid": certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc,
        "serial": certificate.serial_number,
    }
