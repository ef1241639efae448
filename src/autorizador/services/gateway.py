from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path

from autorizador.models.credentials import CacheKey, Credentials
from autorizador.models.invoice import InvoiceRequest, LineItem
from autorizador.models.master import MasterConfig
from autorizador.models.outcome import InvoiceOutcome
from autorizador.models.params import ParameterRecord
from autorizador.models.tenant import TenantConfig
from autorizador.services import params_client, wsaa_client, wsfe_client
from autorizador.services.credential_cache import CredentialCache
from autorizador.services.master_config import resolve_master_config
from autorizador.services.wsfe_client import OutcomeListener
from autorizador.utils import ticket_journal

logger = logging.getLogger(__name__)


class AfipGateway:
    """Application-wide entry point to AFIP.

    Owns the credential cache for the master identity. Create one per process
    at startup and share it; there is no teardown, tickets simply expire.
    """

    def __init__(
        self,
        master: MasterConfig,
        cache: CredentialCache | None = None,
        journal_path: Path | None = None,
        use_journal: bool = True,
        on_outcome: OutcomeListener | None = None,
    ) -> None:
        self.master = master
        self.cache = cache or CredentialCache()
        self.key = CacheKey(master.cuit, master.mode)
        self._journal_path = journal_path
        self._use_journal = use_journal
        self._on_outcome = on_outcome
        if use_journal:
            self._warm_from_journal()

    @classmethod
    def from_env(cls, **kwargs) -> AfipGateway:
        return cls(resolve_master_config(), **kwargs)

    def _warm_from_journal(self) -> None:
        try:
            recorded = ticket_journal.latest(self.key, self._journal_path)
        except OSError:
            logger.warning("No se pudo leer el journal de tickets", exc_info=True)
            return
        if recorded is None:
            return
        if recorded.is_valid(datetime.now(recorded.expires_at.tzinfo), self.cache.safety_margin):
            self.cache.populate(self.key, recorded, source="journal")
        else:
            logger.debug("Ticket del journal vencido para %s", self.key)

    def _record(self, credentials: Credentials, source: str) -> None:
        if not self._use_journal:
            return
        try:
            ticket_journal.record(self.key, credentials, source, self._journal_path)
        except OSError:
            logger.warning("No se pudo registrar el ticket en el journal", exc_info=True)

    def _authenticate(self) -> Credentials:
        credentials = wsaa_client.authenticate(self.master)
        self._record(credentials, "wsaa")
        return credentials

    def credentials(self) -> Credentials:
        return self.cache.get_or_authenticate(self.key, self._authenticate)

    def request_authorization(self, invoice: InvoiceRequest, tenant: TenantConfig) -> InvoiceOutcome:
        return wsfe_client.request_authorization(
            invoice,
            tenant,
            self.master,
            self.cache,
            authenticate=self._authenticate,
            on_outcome=self._on_outcome,
        )

    def invoice_sale(
        self,
        tenant: TenantConfig,
        items: Iterable[LineItem],
        *,
        invoice_type: str | None = None,
        doc_kind: str = "Consumidor Final",
        doc_number: str = "0",
        receiver_vat_condition: int = 5,
        number: int | None = None,
    ) -> tuple[InvoiceRequest, InvoiceOutcome]:
        """Authorize a product sale dated today at the tenant's punto de venta.

        Without *number* the next voucher is taken from AFIP's last
        authorized one; hosts that reserve numbers themselves pass it in.
        """
        invoice_type = (invoice_type or tenant.default_invoice_type).upper()
        if number is None:
            number = self.last_authorized_number(tenant, invoice_type) + 1
        invoice = InvoiceRequest.from_items(
            items,
            invoice_type=invoice_type,
            punto_venta=tenant.punto_venta,
            number=number,
            issue_date=date.today(),
            doc_kind=doc_kind,
            doc_number=doc_number,
            receiver_vat_condition=receiver_vat_condition,
        )
        return invoice, self.request_authorization(invoice, tenant)

    def fetch_parameter_table(self, name: str, cuit: str | None = None) -> list[ParameterRecord]:
        return params_client.fetch_parameter_table(
            name, self.master, self.cache, cuit=cuit, authenticate=self._authenticate
        )

    def last_authorized_number(self, tenant: TenantConfig, invoice_type: str) -> int:
        return wsfe_client.last_authorized_number(
            tenant, invoice_type, self.master, self.cache, authenticate=self._authenticate
        )

    def check_connectivity(self) -> dict[str, str]:
        return wsfe_client.check_connectivity(self.master.mode)

    def populate(self, token: str, sign: str, expires_at: datetime) -> Credentials:
        """Operator recovery after cache loss while AFIP still holds a live ticket."""
        if expires_at.tzinfo is None:
            raise ValueError("expires_at debe incluir zona horaria")
        credentials = Credentials(token=token, sign=sign, expires_at=expires_at)
        self.cache.populate(self.key, credentials)
        self._record(credentials, "manual")
        return credentials

    def populate_from_journal(self) -> Credentials | None:
        """Re-apply the last recorded ticket, whether or not it is still live."""
        recorded = ticket_journal.latest(self.key, self._journal_path)
        if recorded is not None:
            self.cache.populate(self.key, recorded, source="journal")
        return recorded

    def recorded_tickets(self) -> dict[CacheKey, Credentials]:
        """Every ticket in the journal, for every identity and mode."""
        return ticket_journal.entries(self._journal_path)
