from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CUIT_WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)

INVOICE_TYPES = frozenset({"A", "B", "C"})
CONCEPTS = frozenset({1, 2, 3})


def validate_cuit(value: str) -> str:
    """Validate a CUIT/CUIL: 11 digits with a valid mod-11 check digit.

    Dashes are accepted and stripped. Returns the bare 11 digits.
    """
    digits = str(value).replace("-", "").strip()
    if not re.fullmatch(r"\d{11}", digits):
        raise ValueError(f"CUIT invalido: '{value}'. Debe tener 11 digitos.")
    total = sum(int(d) * w for d, w in zip(digits[:10], _CUIT_WEIGHTS, strict=True))
    check = 11 - (total % 11)
    if check == 11:
        check = 0
    if check == 10 or check != int(digits[10]):
        raise ValueError(f"CUIT invalido: '{value}'. Digito verificador incorrecto.")
    return digits


def validate_punto_venta(value: int) -> int:
    """Punto de venta: positive, at most 5 digits."""
    if not isinstance(value, int) or isinstance(value, bool) or not 0 < value <= 99999:
        raise ValueError(f"Punto de venta invalido: '{value}'")
    return value


def validate_invoice_type(value: str) -> str:
    if value not in INVOICE_TYPES:
        raise ValueError(f"Tipo de comprobante invalido: '{value}'. Use A, B o C.")
    return value


def validate_currency(value: str) -> str:
    """MonId: 3 alphanumeric characters (PES, DOL, 060...)."""
    if not re.fullmatch(r"[A-Z0-9]{3}", value):
        raise ValueError(f"Moneda invalida: '{value}'")
    return value


def format_amount(value: Decimal) -> str:
    """Render an amount with exactly 2 decimals, as WSFEv1 expects."""
    try:
        d = Decimal(value)
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValueError(f"Importe invalido: '{value}'") from None
    return str(d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_afip_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def parse_afip_date(value: str | None) -> date | None:
    """Parse AFIP's YYYYMMDD dates. ``NULL`` and blanks become None."""
    if value is None:
        return None
    value = value.strip()
    if not value or value.upper() == "NULL":
        return None
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        raise ValueError(f"Fecha AFIP invalida: '{value}'. Use YYYYMMDD.") from None
