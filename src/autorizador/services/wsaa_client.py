from __future__ import annotations

import logging
from datetime import UTC, datetime

from lxml import etree

from autorizador.config import ART, TRA_WINDOW, WSAA_NS, WSAA_TIMEOUT, WSAA_URLS
from autorizador.models.credentials import Credentials
from autorizador.models.master import MasterConfig
from autorizador.services.cms_signer import sign_login_ticket
from autorizador.services.exceptions import (
    AuthError,
    AuthErrorKind,
    ResponseParseError,
    TransportError,
)
from autorizador.services.soap import (
    build_envelope,
    find_fault,
    parse_body,
    parse_xml,
    post_envelope,
    snippet,
    sub,
    text_local,
)

logger = logging.getLogger(__name__)

ALREADY_AUTHENTICATED_MARKER = "alreadyAuthenticated"


def build_login_ticket_request(service: str, now: datetime) -> bytes:
    """Build the TRA (loginTicketRequest) for *service*.

    generationTime and expirationTime bracket *now* by TRA_WINDOW each way,
    in Argentina time, to absorb clock skew against WSAA.
    """
    now_art = now.astimezone(ART).replace(microsecond=0)
    root = etree.Element("loginTicketRequest", version="1.0")
    header = sub(root, "header")
    # uniqueId is an xsd:unsignedInt
    sub(header, "uniqueId", int(now.timestamp()) & 0xFFFFFFFF)
    sub(header, "generationTime", (now_art - TRA_WINDOW).isoformat())
    sub(header, "expirationTime", (now_art + TRA_WINDOW).isoformat())
    sub(root, "service", service)
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8")


def build_login_envelope(cms_b64: str) -> etree._Element:
    envelope, body = build_envelope("wsaa", WSAA_NS)
    login = sub(body, f"{{{WSAA_NS}}}loginCms")
    sub(login, f"{{{WSAA_NS}}}in0", cms_b64)
    return envelope


def _fault_error(faultcode: str, faultstring: str) -> AuthError:
    message = f"WSAA: {faultstring or faultcode}"
    if ALREADY_AUTHENTICATED_MARKER in faultcode or ALREADY_AUTHENTICATED_MARKER in faultstring:
        return AuthError(
            AuthErrorKind.ALREADY_AUTHENTICATED,
            "Ya existe un ticket de acceso valido en AFIP para este certificado. "
            "Cargue las credenciales manualmente o espere a su vencimiento. "
            f"({message})",
        )
    return AuthError(AuthErrorKind.REFUSED, message)


def parse_login_response(content: bytes) -> Credentials:
    """Turn a loginCms response into Credentials.

    loginCmsReturn holds a loginTicketResponse document as escaped text.
    Raises AuthError for SOAP faults, ResponseParseError for missing parts.
    """
    body = parse_body(content)
    fault = find_fault(body)
    if fault is not None:
        raise _fault_error(*fault)

    ticket_xml = text_local(body, "loginCmsReturn")
    if not ticket_xml:
        raise ResponseParseError("Respuesta WSAA sin loginCmsReturn")

    ticket = parse_xml(ticket_xml)
    token = text_local(ticket, "token")
    sign = text_local(ticket, "sign")
    expiration = text_local(ticket, "expirationTime")
    if not token or not sign:
        raise ResponseParseError("Respuesta WSAA sin token o sign")
    if not expiration:
        raise ResponseParseError("Respuesta WSAA sin expirationTime")

    try:
        expires_at = datetime.fromisoformat(expiration)
    except ValueError as exc:
        raise ResponseParseError(f"expirationTime invalido: '{expiration}'") from exc
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=ART)

    return Credentials(token=token, sign=sign, expires_at=expires_at)


def authenticate(
    master: MasterConfig,
    service: str = "wsfe",
    *,
    now: datetime | None = None,
) -> Credentials:
    """Obtain a fresh login ticket from WSAA for *master*.

    Not retried internally: a resend that reached AFIP would be refused as
    alreadyAuthenticated. SigningError propagates untouched.
    """
    tra = build_login_ticket_request(service, now or datetime.now(UTC))
    cms = sign_login_ticket(tra, master.certificate, master.private_key)

    url = WSAA_URLS[master.mode]
    logger.info("Solicitando ticket WSAA para %s (%s, %s)", master.cuit, master.mode, service)
    try:
        resp = post_envelope(url, build_login_envelope(cms), "", WSAA_TIMEOUT)
    except TransportError as exc:
        raise AuthError(AuthErrorKind.TRANSIENT, str(exc)) from exc

    # WSAA reports faults with HTTP 500 and a SOAP Fault body
    try:
        credentials = parse_login_response(resp.content)
    except ResponseParseError as exc:
        if not resp.ok:
            raise AuthError(
                AuthErrorKind.TRANSIENT,
                f"Error HTTP WSAA ({resp.status_code}): {snippet(resp)}",
            ) from exc
        raise AuthError(AuthErrorKind.TRANSIENT, f"Respuesta WSAA invalida: {exc}") from exc

    logger.info("Ticket WSAA obtenido para %s (%s), vence %s", master.cuit, master.mode, credentials.expires_at)
    return credentials
