"""SOAP 1.1 plumbing shared by the WSAA and WSFEv1 clients."""

from __future__ import annotations

import logging

import requests.exceptions
from lxml import etree
from requests import post

from autorizador.config import SOAP_ENV_NS
from autorizador.services.exceptions import ResponseParseError, TransportError
from autorizador.services.http_retry import RetryableHTTPError, RetryPolicy, retry_call

logger = logging.getLogger(__name__)

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


def sub(parent: etree._Element, tag: str, text: object | None = None) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = str(text)
    return el


def build_envelope(prefix: str, ns: str) -> tuple[etree._Element, etree._Element]:
    """Return (Envelope, Body) with the service namespace bound to *prefix*."""
    envelope = etree.Element(
        f"{{{SOAP_ENV_NS}}}Envelope",
        nsmap={"soapenv": SOAP_ENV_NS, prefix: ns},
    )
    etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    body = etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    return envelope, body


def to_bytes(envelope: etree._Element) -> bytes:
    return etree.tostring(envelope, xml_declaration=True, encoding="utf-8")


def post_envelope(
    url: str,
    envelope: etree._Element,
    soap_action: str,
    timeout: float,
    policy: RetryPolicy | None = None,
) -> requests.Response:
    """POST an envelope and return the raw response, whatever its status.

    Network errors and timeouts become TransportError. With *policy*, the
    call is retried per the policy first (read-only operations only).
    """
    payload = to_bytes(envelope)
    headers = {"Content-Type": "text/xml; charset=utf-8", "SOAPAction": soap_action}

    def _do_post() -> requests.Response:
        resp = post(url, data=payload, headers=headers, timeout=timeout)
        if policy is not None and policy.retries_status(resp.status_code):
            raise RetryableHTTPError(f"HTTP {resp.status_code}", response=resp)
        return resp

    try:
        if policy is None:
            return _do_post()
        return retry_call(_do_post, policy, label=soap_action or url)
    except RetryableHTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        raise TransportError(f"AFIP no disponible ({status}) en {url}", status_code=status) from exc
    except requests.exceptions.Timeout as exc:
        raise TransportError(f"Tiempo de espera agotado ({timeout}s) en {url}") from exc
    except requests.exceptions.RequestException as exc:
        raise TransportError(f"Error de red con {url}: {exc}") from exc


def parse_xml(content: bytes | str) -> etree._Element:
    if isinstance(content, str):
        content = content.strip().encode("utf-8")
    try:
        return etree.fromstring(content, _PARSER)
    except etree.XMLSyntaxError as exc:
        raise ResponseParseError(f"XML invalido en la respuesta: {exc}") from exc


def local(el: etree._Element) -> str:
    return etree.QName(el).localname


def find_local(el: etree._Element, name: str) -> etree._Element | None:
    """First descendant of *el* whose local name is *name*, ignoring namespaces."""
    for child in el.iter():
        if isinstance(child.tag, str) and child is not el and local(child) == name:
            return child
    return None


def children_local(el: etree._Element, name: str) -> list[etree._Element]:
    return [c for c in el if isinstance(c.tag, str) and local(c) == name]


def text_local(el: etree._Element, name: str) -> str | None:
    found = find_local(el, name)
    if found is None or found.text is None:
        return None
    return found.text.strip()


def parse_body(content: bytes) -> etree._Element:
    """Parse a SOAP response and return its Body element."""
    root = parse_xml(content)
    body = root.find(f"{{{SOAP_ENV_NS}}}Body")
    if body is None:
        raise ResponseParseError("Respuesta SOAP sin elemento Body")
    return body


def find_fault(body: etree._Element) -> tuple[str, str] | None:
    """Return (faultcode, faultstring) if *body* carries a SOAP Fault."""
    fault = body.find(f"{{{SOAP_ENV_NS}}}Fault")
    if fault is None:
        return None
    return (fault.findtext("faultcode") or "").strip(), (fault.findtext("faultstring") or "").strip()


def snippet(resp: requests.Response) -> str:
    return resp.text[:500] if resp.text else ""
