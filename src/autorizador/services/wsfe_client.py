from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial

from lxml import etree

from autorizador.config import MODES, WSFE_TIMEOUT, WSFE_URLS
from autorizador.models.credentials import CacheKey, Credentials
from autorizador.models.invoice import InvoiceRequest
from autorizador.models.master import MasterConfig
from autorizador.models.outcome import (
    Approved,
    AuthorityMessage,
    InvoiceOutcome,
    Rejected,
    TransportFailure,
)
from autorizador.models.tenant import TenantConfig
from autorizador.services import wsaa_client
from autorizador.services.credential_cache import CredentialCache
from autorizador.services.exceptions import (
    AuthError,
    InvalidInvoiceError,
    ResponseParseError,
    TransportError,
)
from autorizador.services.http_retry import WSFE_READ
from autorizador.services.soap import (
    children_local,
    find_fault,
    find_local,
    parse_body,
    post_envelope,
    snippet,
    text_local,
)
from autorizador.services.wsfe_builder import (
    build_cae_request,
    build_dummy_request,
    build_last_authorized_request,
    soap_action,
)
from autorizador.utils.validators import (
    CONCEPTS,
    parse_afip_date,
    validate_currency,
    validate_invoice_type,
    validate_punto_venta,
)

logger = logging.getLogger(__name__)

# ValidacionDeToken / CUIT not in token / no access to the service
AUTH_ERROR_CODES = frozenset({"600", "601", "602"})
# Application, database and active-transaction internal errors
INTERNAL_ERROR_CODES = frozenset({"500", "501", "502"})

REJECTION_SUMMARIES = {
    "10015": "Documento del receptor invalido",
    "10016": "El numero o la fecha del comprobante no corresponde al proximo a autorizar",
}
DEFAULT_REJECTION_SUMMARY = "Comprobante rechazado por AFIP"

OutcomeListener = Callable[[InvoiceRequest, InvoiceOutcome], None]
Authenticate = Callable[[], Credentials]


def authority_messages(container: etree._Element, group: str, item: str) -> tuple[AuthorityMessage, ...]:
    """Collect {Code, Msg} pairs from e.g. Errors/Err or Observaciones/Obs."""
    messages = []
    for grp in children_local(container, group):
        for it in children_local(grp, item):
            messages.append(
                AuthorityMessage(code=text_local(it, "Code") or "", message=text_local(it, "Msg") or "")
            )
    return tuple(messages)


def is_auth_rejection(messages: tuple[AuthorityMessage, ...]) -> bool:
    return any(m.code in AUTH_ERROR_CODES for m in messages)


def _join(messages: tuple[AuthorityMessage, ...]) -> str:
    return "; ".join(str(m) for m in messages)


def _result(body: etree._Element, operation: str) -> etree._Element:
    result = find_local(body, f"{operation}Result")
    if result is None:
        raise ResponseParseError(f"Respuesta WSFE sin {operation}Result")
    return result


def _rejected(messages: tuple[AuthorityMessage, ...]) -> Rejected:
    if not messages:
        return Rejected(
            reason="Comprobante rechazado sin observaciones",
            authority_error_code="",
            summary=DEFAULT_REJECTION_SUMMARY,
        )
    code = messages[0].code
    return Rejected(
        reason=_join(messages),
        authority_error_code=code,
        errors=messages,
        summary=REJECTION_SUMMARIES.get(code, DEFAULT_REJECTION_SUMMARY),
    )


def parse_cae_response(content: bytes, number: int) -> InvoiceOutcome:
    """Map a FECAESolicitar response to an outcome.

    Raises ResponseParseError only when the structure is unusable; the
    dispatcher turns that into a TransportFailure.
    """
    body = parse_body(content)
    fault = find_fault(body)
    if fault is not None:
        return TransportFailure(cause=f"SOAP Fault WSFE: {fault[1] or fault[0]}")

    result = _result(body, "FECAESolicitar")
    errors = authority_messages(result, "Errors", "Err")
    if is_auth_rejection(errors):
        return TransportFailure(cause=f"Credenciales rechazadas por AFIP: {_join(errors)}", auth_related=True)

    det = find_local(result, "FECAEDetResponse")
    if det is None:
        if errors and all(e.code in INTERNAL_ERROR_CODES for e in errors):
            return TransportFailure(cause=f"Error interno de AFIP: {_join(errors)}")
        if errors:
            return _rejected(errors)
        raise ResponseParseError("Respuesta WSFE sin FECAEDetResponse")

    observations = authority_messages(det, "Observaciones", "Obs")
    resultado = text_local(det, "Resultado")

    if resultado == "A":
        cae = text_local(det, "CAE")
        vto = text_local(det, "CAEFchVto")
        if not cae or not vto:
            raise ResponseParseError("Comprobante aprobado sin CAE o CAEFchVto")
        try:
            expiration = parse_afip_date(vto)
        except ValueError as exc:
            raise ResponseParseError(str(exc)) from exc
        desde = text_local(det, "CbteDesde")
        return Approved(
            code=cae,
            code_expiration_date=expiration,
            number=int(desde) if desde and desde.isdigit() else number,
            observations=observations,
        )

    if resultado == "R":
        return _rejected(observations + errors)

    raise ResponseParseError(f"Resultado desconocido en FECAEDetResponse: '{resultado}'")


def validate_invoice(invoice: InvoiceRequest, tenant: TenantConfig) -> None:
    """Check wire-format constraints only; amounts are the host's business."""
    if not tenant.enabled:
        raise InvalidInvoiceError(f"Facturacion electronica deshabilitada para {tenant.cuit}")
    try:
        validate_invoice_type(invoice.invoice_type)
        validate_punto_venta(invoice.punto_venta)
        validate_currency(invoice.currency)
    except ValueError as exc:
        raise InvalidInvoiceError(str(exc)) from None
    if invoice.punto_venta != tenant.punto_venta:
        raise InvalidInvoiceError(
            f"Punto de venta {invoice.punto_venta} no registrado para {tenant.cuit} "
            f"(registrado: {tenant.punto_venta})"
        )
    if not isinstance(invoice.number, int) or invoice.number <= 0:
        raise InvalidInvoiceError(f"Numero de comprobante invalido: '{invoice.number}'")
    if invoice.concept not in CONCEPTS:
        raise InvalidInvoiceError(f"Concepto invalido: '{invoice.concept}'")
    if invoice.concept in (2, 3) and not (
        invoice.service_from and invoice.service_to and invoice.payment_due
    ):
        raise InvalidInvoiceError("Servicios requieren fecha desde, hasta y vencimiento de pago")


def _authenticator(master: MasterConfig, authenticate: Authenticate | None) -> Authenticate:
    return authenticate or partial(wsaa_client.authenticate, master)


def _notify(listener: OutcomeListener | None, invoice: InvoiceRequest, outcome: InvoiceOutcome) -> None:
    if listener is None:
        return
    try:
        listener(invoice, outcome)
    except Exception:
        logger.warning("Fallo al notificar el resultado del comprobante %d", invoice.number, exc_info=True)


def _dispatch(
    invoice: InvoiceRequest, tenant: TenantConfig, master: MasterConfig, credentials: Credentials
) -> InvoiceOutcome:
    envelope = build_cae_request(invoice, credentials, tenant.cuit)
    logger.info(
        "Solicitando CAE: CUIT %s, PV %d, tipo %s, numero %d",
        tenant.cuit,
        invoice.punto_venta,
        invoice.invoice_type,
        invoice.number,
    )
    try:
        resp = post_envelope(WSFE_URLS[master.mode], envelope, soap_action("FECAESolicitar"), WSFE_TIMEOUT)
    except TransportError as exc:
        return TransportFailure(cause=str(exc))
    try:
        return parse_cae_response(resp.content, invoice.number)
    except ResponseParseError as exc:
        if resp.ok:
            return TransportFailure(cause=str(exc))
        return TransportFailure(cause=f"Error HTTP WSFE ({resp.status_code}): {snippet(resp)}")


def request_authorization(
    invoice: InvoiceRequest,
    tenant: TenantConfig,
    master: MasterConfig,
    cache: CredentialCache,
    *,
    authenticate: Authenticate | None = None,
    on_outcome: OutcomeListener | None = None,
) -> InvoiceOutcome:
    """Request a CAE for *invoice* on behalf of *tenant*.

    The ticket belongs to the master identity; the tenant CUIT goes in the
    Auth block. Never retried: on TransportFailure the host decides whether
    to resubmit with the same voucher number. A transient failure obtaining
    the ticket is a TransportFailure as well; refused or already-authenticated
    logins and SigningError propagate.
    """
    validate_invoice(invoice, tenant)

    key = CacheKey(master.cuit, master.mode)
    outcome: InvoiceOutcome
    try:
        credentials = cache.get_or_authenticate(key, _authenticator(master, authenticate))
    except AuthError as exc:
        if not exc.retryable:
            raise
        outcome = TransportFailure(cause=f"No se pudo obtener el ticket de acceso: {exc}")
    else:
        outcome = _dispatch(invoice, tenant, master, credentials)

    match outcome:
        case Approved(code=cae):
            logger.info("Comprobante %d aprobado, CAE %s", invoice.number, cae)
        case Rejected(reason=reason):
            logger.warning("Comprobante %d rechazado: %s", invoice.number, reason)
        case TransportFailure(cause=cause, auth_related=auth_related):
            if auth_related:
                cache.invalidate(key)
            logger.warning("Comprobante %d sin evaluar: %s", invoice.number, cause)

    _notify(on_outcome, invoice, outcome)
    return outcome


def query(
    operation: str,
    build: Callable[[Credentials], etree._Element],
    master: MasterConfig,
    cache: CredentialCache,
    *,
    authenticate: Authenticate | None = None,
) -> etree._Element:
    """Run a read-only authenticated WSFEv1 operation and return its Result element.

    Retried per WSFE_READ. An authority error block raises TransportError,
    after evicting the ticket when AFIP rejected the credentials.
    """
    key = CacheKey(master.cuit, master.mode)
    credentials = cache.get_or_authenticate(key, _authenticator(master, authenticate))

    resp = post_envelope(
        WSFE_URLS[master.mode], build(credentials), soap_action(operation), WSFE_TIMEOUT, policy=WSFE_READ
    )
    if not resp.ok:
        raise TransportError(
            f"Error HTTP WSFE {operation} ({resp.status_code}): {snippet(resp)}",
            status_code=resp.status_code,
        )

    body = parse_body(resp.content)
    fault = find_fault(body)
    if fault is not None:
        raise TransportError(f"SOAP Fault WSFE {operation}: {fault[1] or fault[0]}")

    result = _result(body, operation)
    errors = authority_messages(result, "Errors", "Err")
    if errors:
        if is_auth_rejection(errors):
            cache.invalidate(key)
        raise TransportError(f"AFIP rechazo {operation}: {_join(errors)}")
    return result


def last_authorized_number(
    tenant: TenantConfig,
    invoice_type: str,
    master: MasterConfig,
    cache: CredentialCache,
    *,
    authenticate: Authenticate | None = None,
) -> int:
    """Last voucher number AFIP authorized for the tenant's punto de venta and type."""
    try:
        validate_invoice_type(invoice_type)
    except ValueError as exc:
        raise InvalidInvoiceError(str(exc)) from None

    result = query(
        "FECompUltimoAutorizado",
        lambda creds: build_last_authorized_request(creds, tenant.cuit, tenant.punto_venta, invoice_type),
        master,
        cache,
        authenticate=authenticate,
    )
    raw = text_local(result, "CbteNro")
    if raw is None or not raw.isdigit():
        raise ResponseParseError(f"CbteNro invalido en la respuesta: '{raw}'")
    return int(raw)


def check_connectivity(mode: str = "homologacion") -> dict[str, str]:
    """Query FEDummy; returns AppServer, DbServer and AuthServer status.

    Needs no ticket. Raises TransportError or ResponseParseError.
    """
    if mode not in MODES:
        raise ValueError(f"Modo invalido: '{mode}'")
    resp = post_envelope(
        WSFE_URLS[mode], build_dummy_request(), soap_action("FEDummy"), WSFE_TIMEOUT, policy=WSFE_READ
    )
    if not resp.ok:
        raise TransportError(f"Error HTTP WSFE FEDummy ({resp.status_code}): {snippet(resp)}", resp.status_code)
    result = _result(parse_body(resp.content), "FEDummy")
    return {name: text_local(result, name) or "" for name in ("AppServer", "DbServer", "AuthServer")}
