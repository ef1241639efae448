from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from autorizador.config import MODES, get_pfx_password
from autorizador.models.master import MasterConfig
from autorizador.services.exceptions import MasterConfigError
from autorizador.utils.certificate import load_pfx
from autorizador.utils.validators import validate_cuit

logger = logging.getLogger(__name__)


def _unescape_pem(value: str) -> bytes:
    # PEMs pasted into a single-line env var arrive with literal "\n"
    return value.replace("\\n", "\n").encode()


def _load_material(env: Mapping[str, str]) -> tuple[bytes, bytes]:
    """Return (cert_pem, key_pem) from the first source that is fully set."""
    cert = env.get("AFIP_MASTER_CERT")
    key = env.get("AFIP_MASTER_KEY")
    if cert and key:
        return _unescape_pem(cert), _unescape_pem(key)

    cert_path = env.get("AFIP_MASTER_CERT_PATH")
    key_path = env.get("AFIP_MASTER_KEY_PATH")
    if cert_path and key_path:
        return Path(cert_path).read_bytes(), Path(key_path).read_bytes()

    pfx_path = env.get("AFIP_MASTER_PFX_PATH")
    if pfx_path:
        try:
            password = get_pfx_password(dict(env))
        except KeyError:
            raise MasterConfigError(
                "Falta la clave del certificado: defina AFIP_MASTER_PFX_PASSWORD o guardela en el keyring"
            ) from None
        key_pem, cert_pem = load_pfx(pfx_path, password)
        return cert_pem, key_pem

    raise MasterConfigError(
        "Falta el certificado maestro: defina AFIP_MASTER_CERT y AFIP_MASTER_KEY, "
        "AFIP_MASTER_CERT_PATH y AFIP_MASTER_KEY_PATH, o AFIP_MASTER_PFX_PATH"
    )


def resolve_master_config(environ: Mapping[str, str] | None = None) -> MasterConfig:
    """Resolve the provider identity that signs toward WSAA.

    Called once at startup; the result is immutable for the process lifetime.
    """
    env = os.environ if environ is None else environ

    cuit = env.get("AFIP_PROVIDER_CUIT", "")
    if not cuit:
        raise MasterConfigError("Falta AFIP_PROVIDER_CUIT")
    try:
        cuit = validate_cuit(cuit)
    except ValueError as exc:
        raise MasterConfigError(f"AFIP_PROVIDER_CUIT: {exc}") from None

    mode = env.get("AFIP_MODE") or "homologacion"
    if mode not in MODES:
        raise MasterConfigError(f"AFIP_MODE invalido: '{mode}'. Use homologacion o produccion.")

    cert_pem, key_pem = _load_material(env)
    logger.debug("Identidad maestra %s en modo %s", cuit, mode)
    return MasterConfig(cuit=cuit, mode=mode, certificate=cert_pem, private_key=key_pem)
