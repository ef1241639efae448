from __future__ import annotations

from lxml import etree

from autorizador.config import WSFE_NS
from autorizador.models.credentials import Credentials
from autorizador.models.invoice import InvoiceRequest
from autorizador.services.soap import build_envelope, sub
from autorizador.utils.afip_codes import invoice_type_code
from autorizador.utils.validators import format_afip_date, format_amount


def _q(tag: str) -> str:
    return f"{{{WSFE_NS}}}{tag}"


def soap_action(operation: str) -> str:
    return f"{WSFE_NS}{operation}"


def _operation(name: str) -> tuple[etree._Element, etree._Element]:
    envelope, body = build_envelope("ar", WSFE_NS)
    return envelope, sub(body, _q(name))


def _auth(parent: etree._Element, credentials: Credentials, cuit: str) -> None:
    auth = sub(parent, _q("Auth"))
    sub(auth, _q("Token"), credentials.token)
    sub(auth, _q("Sign"), credentials.sign)
    sub(auth, _q("Cuit"), cuit)


def build_cae_request(
    invoice: InvoiceRequest,
    credentials: Credentials,
    cuit: str,
) -> etree._Element:
    """Build the FECAESolicitar envelope for a single voucher.

    Factura C carries no VAT breakdown: ImpIVA is zero, ImpNeto is the total
    minus other taxes and the Iva block is omitted.
    """
    envelope, op = _operation("FECAESolicitar")
    _auth(op, credentials, cuit)

    req = sub(op, _q("FeCAEReq"))
    cab = sub(req, _q("FeCabReq"))
    sub(cab, _q("CantReg"), 1)
    sub(cab, _q("PtoVta"), invoice.punto_venta)
    sub(cab, _q("CbteTipo"), invoice_type_code(invoice.invoice_type))

    is_c = invoice.invoice_type == "C"
    net = invoice.total - invoice.taxes if is_c else invoice.net
    vat = 0 if is_c else invoice.vat
    exempt = 0 if is_c else invoice.exempt

    det = sub(sub(req, _q("FeDetReq")), _q("FECAEDetRequest"))
    sub(det, _q("Concepto"), invoice.concept)
    sub(det, _q("DocTipo"), invoice.doc_type)
    sub(det, _q("DocNro"), invoice.doc_number)
    sub(det, _q("CbteDesde"), invoice.number)
    sub(det, _q("CbteHasta"), invoice.number)
    sub(det, _q("CbteFch"), format_afip_date(invoice.issue_date))
    sub(det, _q("ImpTotal"), format_amount(invoice.total))
    sub(det, _q("ImpTotConc"), "0.00")
    sub(det, _q("ImpNeto"), format_amount(net))
    sub(det, _q("ImpOpEx"), format_amount(exempt))
    sub(det, _q("ImpTrib"), format_amount(invoice.taxes))
    sub(det, _q("ImpIVA"), format_amount(vat))
    if invoice.concept in (2, 3):
        sub(det, _q("FchServDesde"), format_afip_date(invoice.service_from))
        sub(det, _q("FchServHasta"), format_afip_date(invoice.service_to))
        sub(det, _q("FchVtoPago"), format_afip_date(invoice.payment_due))
    sub(det, _q("MonId"), invoice.currency)
    sub(det, _q("MonCotiz"), invoice.exchange_rate)
    sub(det, _q("CondicionIVAReceptorId"), invoice.receiver_vat_condition)

    if not is_c and invoice.vat_rates:
        iva = sub(det, _q("Iva"))
        for rate in invoice.vat_rates:
            alic = sub(iva, _q("AlicIva"))
            sub(alic, _q("Id"), rate.id)
            sub(alic, _q("BaseImp"), format_amount(rate.base))
            sub(alic, _q("Importe"), format_amount(rate.amount))

    return envelope


def build_last_authorized_request(
    credentials: Credentials,
    cuit: str,
    punto_venta: int,
    invoice_type: str,
) -> etree._Element:
    envelope, op = _operation("FECompUltimoAutorizado")
    _auth(op, credentials, cuit)
    sub(op, _q("PtoVta"), punto_venta)
    sub(op, _q("CbteTipo"), invoice_type_code(invoice_type))
    return envelope


def build_param_request(operation: str, credentials: Credentials, cuit: str) -> etree._Element:
    envelope, op = _operation(operation)
    _auth(op, credentials, cuit)
    return envelope


def build_dummy_request() -> etree._Element:
    envelope, _ = _operation("FEDummy")
    return envelope
