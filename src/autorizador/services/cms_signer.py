from __future__ import annotations

import base64
import logging

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from autorizador.services.exceptions import SigningError

logger = logging.getLogger(__name__)

_SPKI = (serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)


def _load_material(cert_pem: bytes, key_pem: bytes):
    try:
        certs = x509.load_pem_x509_certificates(cert_pem)
    except ValueError as exc:
        raise SigningError(f"Certificado invalido: {exc}") from exc
    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise SigningError(f"Clave privada invalida: {exc}") from exc

    signer = certs[0]
    if signer.public_key().public_bytes(*_SPKI) != key.public_key().public_bytes(*_SPKI):
        raise SigningError("La clave privada no corresponde al certificado")
    return signer, certs[1:], key


def sign_login_ticket(payload: bytes, cert_pem: bytes, key_pem: bytes) -> str:
    """Sign a login ticket request as CMS SignedData for WSAA.

    The content is embedded (not detached), digested with SHA-256 and signed
    without authenticated attributes, so the same payload and RSA key always
    yield the same bytes. The first certificate in *cert_pem* signs; the rest
    travel as the chain. Returns the DER encoding in Base64.
    """
    signer, chain, key = _load_material(cert_pem, key_pem)

    builder = pkcs7.PKCS7SignatureBuilder().set_data(payload)
    try:
        builder = builder.add_signer(signer, key, hashes.SHA256())
    except TypeError as exc:
        raise SigningError(f"Tipo de clave no soportado: {exc}") from exc
    for ca in chain:
        builder = builder.add_certificate(ca)

    cms_der = builder.sign(
        serialization.Encoding.DER,
        [pkcs7.PKCS7Options.Binary, pkcs7.PKCS7Options.NoAttributes],
    )
    logger.debug("TRA firmado: %d bytes CMS", len(cms_der))
    return base64.b64encode(cms_der).decode("ascii")
