from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from xml.sax.saxutils import escape

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

from autorizador.models.credentials import CacheKey, Credentials
from autorizador.models.invoice import InvoiceRequest, VatRate
from autorizador.models.master import MasterConfig
from autorizador.models.tenant import TenantConfig
from autorizador.services.credential_cache import CredentialCache

WSFE_NS = "http://ar.gov.afip.dif.FEV1/"
SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"

MASTER_CUIT = "20111111112"
TENANT_CUIT = "30712345671"


def xml_text(el: etree._Element, tag: str) -> str | None:
    """Text of the first WSFE-namespaced descendant named *tag*."""
    found = el.find(f".//{{{WSFE_NS}}}{tag}")
    return found.text if found is not None else None


def mock_response(content: bytes = b"", status_code: int = 200):
    resp = MagicMock()
    resp.ok = status_code < 400
    resp.status_code = status_code
    resp.content = content
    resp.text = content.decode("utf-8", errors="replace")
    return resp


def posted_xml(mock_post, index: int = -1) -> etree._Element:
    _, kwargs = mock_post.call_args_list[index]
    return etree.fromstring(kwargs["data"])


# --- SOAP response builders ---


def soap_envelope(inner: str, prefix: str = "soap") -> bytes:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<{prefix}:Envelope xmlns:{prefix}="{SOAP_NS}">'
        f"<{prefix}:Body>{inner}</{prefix}:Body></{prefix}:Envelope>"
    ).encode()


def soap_fault(faultcode: str, faultstring: str, prefix: str = "soapenv") -> bytes:
    return soap_envelope(
        f"<{prefix}:Fault>"
        f'<faultcode xmlns:ns1="http://xml.apache.org/axis/">{faultcode}</faultcode>'
        f"<faultstring>{faultstring}</faultstring>"
        f"</{prefix}:Fault>",
        prefix=prefix,
    )


def login_response(
    token: str = "TOKEN-ABC",
    sign: str = "SIGN-XYZ",
    expiration: str = "2025-06-01T20:00:00.000-03:00",
) -> bytes:
    ticket = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
        '<loginTicketResponse version="1.0"><header>'
        "<source>CN=wsaahomo, O=AFIP, C=AR, SERIALNUMBER=CUIT 33693450239</source>"
        "<destination>SERIALNUMBER=CUIT 20111111112, CN=test</destination>"
        "<uniqueId>123456</uniqueId>"
        "<generationTime>2025-06-01T08:00:00.000-03:00</generationTime>"
        f"<expirationTime>{expiration}</expirationTime>"
        "</header><credentials>"
        f"<token>{token}</token><sign>{sign}</sign>"
        "</credentials></loginTicketResponse>"
    )
    return soap_envelope(
        '<loginCmsResponse xmlns="http://wsaa.view.sua.dvadac.desein.afip.gov">'
        f"<loginCmsReturn>{escape(ticket)}</loginCmsReturn>"
        "</loginCmsResponse>",
        prefix="soapenv",
    )


def _messages(group: str, item: str, messages: list[tuple[str, str]]) -> str:
    if not messages:
        return ""
    inner = "".join(f"<{item}><Code>{c}</Code><Msg>{m}</Msg></{item}>" for c, m in messages)
    return f"<{group}>{inner}</{group}>"


def cae_response(
    resultado: str = "A",
    cae: str = "71234567891011",
    vto: str = "20250601",
    number: int = 42,
    observations: list[tuple[str, str]] | None = None,
    errors: list[tuple[str, str]] | None = None,
    with_detail: bool = True,
) -> bytes:
    detail = ""
    if with_detail:
        cae_xml = f"<CAE>{cae}</CAE><CAEFchVto>{vto}</CAEFchVto>" if resultado == "A" else "<CAE/><CAEFchVto/>"
        detail = (
            "<FeDetResp><FECAEDetResponse>"
            "<Concepto>1</Concepto><DocTipo>99</DocTipo><DocNro>0</DocNro>"
            f"<CbteDesde>{number}</CbteDesde><CbteHasta>{number}</CbteHasta>"
            f"<CbteFch>20250522</CbteFch><Resultado>{resultado}</Resultado>"
            f"{cae_xml}{_messages('Observaciones', 'Obs', observations or [])}"
            "</FECAEDetResponse></FeDetResp>"
        )
    return soap_envelope(
        f'<FECAESolicitarResponse xmlns="{WSFE_NS}"><FECAESolicitarResult>'
        "<FeCabResp><Cuit>30712345671</Cuit><PtoVta>1</PtoVta><CbteTipo>6</CbteTipo>"
        f"<FchProceso>20250522</FchProceso><CantReg>1</CantReg><Resultado>{resultado}</Resultado>"
        "<Reproceso>N</Reproceso></FeCabResp>"
        f"{detail}{_messages('Errors', 'Err', errors or [])}"
        "</FECAESolicitarResult></FECAESolicitarResponse>"
    )


def wsfe_result(operation: str, inner: str) -> bytes:
    return soap_envelope(
        f'<{operation}Response xmlns="{WSFE_NS}"><{operation}Result>{inner}</{operation}Result></{operation}Response>'
    )


# --- Clock ---


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def cache(clock) -> CredentialCache:
    return CredentialCache(clock=clock)


# --- Certificate fixtures ---


def _make_cert(key, cn: str):
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, cn),
            x509.NameAttribute(NameOID.SERIAL_NUMBER, f"CUIT {MASTER_CUIT}"),
        ]
    )
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.now(UTC) - timedelta(days=1))
        .not_valid_after(datetime.now(UTC) + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def test_key_and_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key, _make_cert(key, "autorizador-test")


@pytest.fixture(scope="session")
def other_key_and_cert():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key, _make_cert(key, "otra-ca")


@pytest.fixture(scope="session")
def self_signed_pem(test_key_and_cert):
    key, cert = test_key_and_cert
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    return key_pem, cert_pem


@pytest.fixture
def test_pfx(tmp_path, test_key_and_cert):
    key, cert = test_key_and_cert
    password = b"testpass"
    pfx_data = pkcs12.serialize_key_and_certificates(
        name=b"test",
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(password),
    )
    pfx_path = tmp_path / "test.pfx"
    pfx_path.write_bytes(pfx_data)
    return str(pfx_path), "testpass"


# --- Domain fixtures ---


@pytest.fixture
def master(self_signed_pem) -> MasterConfig:
    key_pem, cert_pem = self_signed_pem
    return MasterConfig(cuit=MASTER_CUIT, mode="homologacion", certificate=cert_pem, private_key=key_pem)


@pytest.fixture
def master_key() -> CacheKey:
    return CacheKey(MASTER_CUIT, "homologacion")


@pytest.fixture
def tenant() -> TenantConfig:
    return TenantConfig(cuit=TENANT_CUIT, punto_venta=1, default_invoice_type="B", name="Kiosco")


@pytest.fixture
def invoice() -> InvoiceRequest:
    return InvoiceRequest(
        invoice_type="B",
        punto_venta=1,
        number=42,
        total=Decimal("1210.00"),
        net=Decimal("1000.00"),
        vat=Decimal("210.00"),
        issue_date=date(2025, 5, 22),
        vat_rates=(VatRate(id=5, base=Decimal("1000"), amount=Decimal("210")),),
    )


@pytest.fixture
def credentials(clock) -> Credentials:
    return Credentials(token="TOKEN-ABC", sign="SIGN-XYZ", expires_at=clock.now + timedelta(hours=12))
