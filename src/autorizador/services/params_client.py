from __future__ import annotations

import logging

from autorizador.models.master import MasterConfig
from autorizador.models.params import ParameterRecord
from autorizador.services.credential_cache import CredentialCache
from autorizador.services.exceptions import ResponseParseError
from autorizador.services.soap import children_local, find_local, text_local
from autorizador.services.wsfe_builder import build_param_request
from autorizador.services.wsfe_client import Authenticate, query
from autorizador.utils.validators import parse_afip_date

logger = logging.getLogger(__name__)

# table name -> (operation, item element under ResultGet)
PARAMETER_TABLES: dict[str, tuple[str, str]] = {
    "tipos_comprobante": ("FEParamGetTiposCbte", "CbteTipo"),
    "tipos_concepto": ("FEParamGetTiposConcepto", "ConceptoTipo"),
    "tipos_documento": ("FEParamGetTiposDoc", "DocTipo"),
    "tipos_iva": ("FEParamGetTiposIva", "IvaTipo"),
    "tipos_moneda": ("FEParamGetTiposMonedas", "Moneda"),
    "tipos_tributo": ("FEParamGetTiposTributos", "TributoTipo"),
    "condicion_iva_receptor": ("FEParamGetCondicionIvaReceptor", "CondicionIvaReceptor"),
}


def _record(node) -> ParameterRecord:
    record_id = text_local(node, "Id")
    description = text_local(node, "Desc")
    if record_id is None or description is None:
        raise ResponseParseError("Registro de parametros sin Id o Desc")
    try:
        return ParameterRecord(
            id=record_id,
            description=description,
            valid_from=parse_afip_date(text_local(node, "FchDesde")),
            valid_to=parse_afip_date(text_local(node, "FchHasta")),
        )
    except ValueError as exc:
        raise ResponseParseError(str(exc)) from exc


def fetch_parameter_table(
    name: str,
    master: MasterConfig,
    cache: CredentialCache,
    *,
    cuit: str | None = None,
    authenticate: Authenticate | None = None,
) -> list[ParameterRecord]:
    """Fetch one WSFEv1 reference table, in the order AFIP returns it.

    *cuit* goes in the Auth block and defaults to the master CUIT.
    """
    try:
        operation, item = PARAMETER_TABLES[name]
    except KeyError:
        known = ", ".join(sorted(PARAMETER_TABLES))
        raise ValueError(f"Tabla de parametros desconocida: '{name}'. Opciones: {known}") from None

    auth_cuit = cuit or master.cuit
    result = query(
        operation,
        lambda creds: build_param_request(operation, creds, auth_cuit),
        master,
        cache,
        authenticate=authenticate,
    )

    result_get = find_local(result, "ResultGet")
    if result_get is None:
        raise ResponseParseError(f"Respuesta {operation} sin ResultGet")
    records = [_record(node) for node in children_local(result_get, item)]
    logger.debug("%s: %d registros", operation, len(records))
    return records
