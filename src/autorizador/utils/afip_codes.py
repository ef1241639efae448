"""WSFEv1 code tables used when building requests."""

from __future__ import annotations

from decimal import Decimal

INVOICE_TYPE_CODES = {"A": 1, "B": 6, "C": 11}

DOCUMENT_TYPE_CODES = {
    "CUIT": 80,
    "CUIL": 86,
    "DNI": 96,
    "Consumidor Final": 99,
}

VAT_RATE_CODES = {
    Decimal("0"): 3,
    Decimal("10.5"): 4,
    Decimal("21"): 5,
    Decimal("27"): 6,
    Decimal("5"): 8,
    Decimal("2.5"): 9,
}


def invoice_type_code(letter: str) -> int:
    try:
        return INVOICE_TYPE_CODES[letter]
    except KeyError:
        raise ValueError(f"Tipo de comprobante invalido: '{letter}'") from None


def document_type_code(doc_type: str) -> int:
    """Map a document kind to its DocTipo, defaulting to final consumer."""
    return DOCUMENT_TYPE_CODES.get(doc_type, 99)


def vat_code(rate: Decimal) -> int:
    try:
        return VAT_RATE_CODES[Decimal(rate).normalize()]
    except KeyError:
        raise ValueError(f"Alicuota de IVA no soportada: {rate}%") from None
