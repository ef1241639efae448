from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from autorizador.utils.afip_codes import document_type_code, vat_code


@dataclass(frozen=True)
class VatRate:
    """One AlicIva entry: AFIP VAT code with its taxable base and amount."""

    id: int  # 3=0%, 4=10.5%, 5=21%, 6=27%
    base: Decimal
    amount: Decimal


@dataclass(frozen=True)
class LineItem:
    """A sold item; ``price`` is per unit and net of VAT."""

    price: Decimal
    quantity: Decimal
    tax_rate: Decimal = Decimal("21")


def aggregate_vat(items: Iterable[LineItem]) -> tuple[VatRate, ...]:
    """Group line items by VAT code into AlicIva entries, ordered by code."""
    totals: dict[int, tuple[Decimal, Decimal]] = {}
    for item in items:
        code = vat_code(item.tax_rate)
        base = item.price * item.quantity
        amount = base * item.tax_rate / 100
        prev_base, prev_amount = totals.get(code, (Decimal("0"), Decimal("0")))
        totals[code] = (prev_base + base, prev_amount + amount)
    return tuple(
        VatRate(id=code, base=base, amount=amount)
        for code, (base, amount) in sorted(totals.items())
    )


@dataclass(frozen=True)
class InvoiceRequest:
    """Invoice to authorize, already validated for amounts by the host.

    ``number`` is the voucher number the host reserved for this punto de
    venta and type; it is sent as both CbteDesde and CbteHasta.
    """

    invoice_type: str  # A | B | C
    punto_venta: int
    number: int
    total: Decimal
    issue_date: date
    concept: int = 1  # 1=Productos, 2=Servicios, 3=Productos y Servicios
    doc_type: int = 99  # 80=CUIT, 86=CUIL, 96=DNI, 99=Consumidor Final
    doc_number: str = "0"
    receiver_vat_condition: int = 5  # 1=RI, 4=Exento, 5=Consumidor Final, 6=Monotributo
    net: Decimal = Decimal("0")
    vat: Decimal = Decimal("0")
    exempt: Decimal = Decimal("0")
    taxes: Decimal = Decimal("0")
    currency: str = "PES"
    exchange_rate: Decimal = Decimal("1")
    vat_rates: tuple[VatRate, ...] = ()

    # Required by AFIP only for concept 2 and 3
    service_from: date | None = None
    service_to: date | None = None
    payment_due: date | None = None

    @classmethod
    def from_items(
        cls,
        items: Iterable[LineItem],
        *,
        invoice_type: str,
        punto_venta: int,
        number: int,
        issue_date: date,
        doc_kind: str = "Consumidor Final",
        doc_number: str = "0",
        receiver_vat_condition: int = 5,
    ) -> InvoiceRequest:
        """Build a product sale from its line items.

        Factura A and B add VAT on top of the item prices and carry one
        AlicIva per rate. Factura C prices are final and carry no VAT.
        """
        items = list(items)
        if not items:
            raise ValueError("La venta no tiene items")
        if invoice_type == "C":
            total = sum((i.price * i.quantity for i in items), Decimal("0"))
            net, vat, vat_rates = total, Decimal("0"), ()
        else:
            vat_rates = aggregate_vat(items)
            net = sum((r.base for r in vat_rates), Decimal("0"))
            vat = sum((r.amount for r in vat_rates), Decimal("0"))
            total = net + vat
        return cls(
            invoice_type=invoice_type,
            punto_venta=punto_venta,
            number=number,
            total=total,
            issue_date=issue_date,
            doc_type=document_type_code(doc_kind),
            doc_number=doc_number,
            receiver_vat_condition=receiver_vat_condition,
            net=net,
            vat=vat,
            vat_rates=vat_rates,
        )
