from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantConfig:
    """A business invoicing through the master identity."""

    cuit: str
    punto_venta: int
    default_invoice_type: str = "B"
    enabled: bool = True
    name: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> TenantConfig:
        """Create a TenantConfig from a YAML-loaded dict."""
        return cls(
            cuit=str(d["cuit"]).replace("-", ""),
            punto_venta=int(d["punto_venta"]),
            default_invoice_type=str(d.get("default_invoice_type", "B")).upper(),
            enabled=bool(d.get("enabled", True)),
            name=d.get("name", ""),
        )
