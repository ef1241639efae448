from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class MasterConfig:
    """Signing identity used toward AFIP.

    May be a shared provider CUIT distinct from the tenant CUIT that goes in
    the Auth block of each business call.
    """

    cuit: str
    mode: str  # homologacion | produccion
    certificate: bytes = field(repr=False)  # PEM, first cert is the signer
    private_key: bytes = field(repr=False)  # PEM
