from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime

from autorizador.services.exceptions import AfipError, AuthError, AuthErrorKind, MasterConfigError

_EXAMPLE_TENANT = {
    "name": "Comercio de ejemplo",
    "cuit": "20111111112",
    "punto_venta": 1,
    "default_invoice_type": "B",
    "enabled": True,
}


def _init_config(_: argparse.Namespace) -> int:
    """Create config/data directories and an example tenant."""
    import yaml

    from autorizador.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    tenants_dir = config_dir / "tenants"
    tenants_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    example = tenants_dir / "ejemplo.yaml.example"
    if example.exists():
        print(f"  ya existe: {example}")
    else:
        example.write_text(yaml.dump(_EXAMPLE_TENANT, default_flow_style=False, allow_unicode=True))
        print(f"  creado: {example}")

    print()
    print(f"Configuracion: {config_dir}")
    print(f"Datos:         {data_dir}")
    print()
    print("Proximos pasos:")
    print(f"  1. cp {example} {tenants_dir / 'mi-comercio.yaml'} y edite CUIT y punto de venta")
    print("  2. Defina AFIP_PROVIDER_CUIT, AFIP_MODE y el certificado maestro en .env")
    print("  3. Ejecute: autorizador-afip test")
    return 0


def _gateway():
    from autorizador.services.gateway import AfipGateway

    return AfipGateway.from_env()


def _tenant(name: str):
    from autorizador.config import load_tenant
    from autorizador.models.tenant import TenantConfig

    return TenantConfig.from_dict(load_tenant(name))


def _test(_: argparse.Namespace) -> int:
    from autorizador.utils.certificate import certificate_info

    gw = _gateway()
    info = certificate_info(gw.master.certificate)
    print(f"CUIT maestro: {gw.master.cuit} ({gw.master.mode})")
    print(f"Certificado:  {info['subject']}")
    print(f"Valido hasta: {info['not_after']}")
    if not info["valid"]:
        print("  AVISO: certificado fuera de vigencia")

    status = gw.check_connectivity()
    for name, value in status.items():
        print(f"{name}: {value}")
    ok = all(v == "OK" for v in status.values())
    print("Conexion con WSFEv1 correcta" if ok else "WSFEv1 reporta servicios caidos")
    return 0 if ok else 1


def _auth(args: argparse.Namespace) -> int:
    gw = _gateway()
    cached = gw.cache.get(gw.key)
    credentials = gw.credentials()
    print("Ticket en cache (journal)" if cached else "Ticket nuevo obtenido de WSAA")
    print(f"Vence: {credentials.expires_at.isoformat()}")
    if args.show:
        print(f"token: {credentials.token}")
        print(f"sign:  {credentials.sign}")
    return 0


def _list_tickets(gw) -> int:
    tickets = gw.recorded_tickets()
    if not tickets:
        print("No hay tickets registrados en el journal.")
        return 0
    now = datetime.now(UTC)
    for key, credentials in sorted(tickets.items(), key=lambda kv: str(kv[0])):
        estado = "vigente" if credentials.expires_at > now else "vencido"
        print(f"{key}: vence {credentials.expires_at.isoformat()} ({estado})")
    return 0


def _populate(args: argparse.Namespace) -> int:
    gw = _gateway()
    if args.list:
        return _list_tickets(gw)
    if args.from_journal:
        recorded = gw.populate_from_journal()
        if recorded is None:
            print(f"Error: no hay ticket registrado para {gw.key}")
            return 1
        print(f"Ticket del journal aplicado, vence {recorded.expires_at.isoformat()}")
        return 0

    if not (args.token and args.sign and args.expires):
        print("Error: indique --token, --sign y --expires, o --from-journal")
        return 1
    expires_at = datetime.fromisoformat(args.expires)
    credentials = gw.populate(args.token, args.sign, expires_at)
    print(f"Credenciales cargadas para {gw.key}, vencen {credentials.expires_at.isoformat()}")
    return 0


def _params(args: argparse.Namespace) -> int:
    gw = _gateway()
    cuit = _tenant(args.tenant).cuit if args.tenant else None
    for rec in gw.fetch_parameter_table(args.table, cuit=cuit):
        desde = rec.valid_from.isoformat() if rec.valid_from else "-"
        hasta = rec.valid_to.isoformat() if rec.valid_to else "-"
        print(f"{rec.id:>6}  {rec.description:<40}  {desde}  {hasta}")
    return 0


def _last_invoice(args: argparse.Namespace) -> int:
    gw = _gateway()
    tenant = _tenant(args.tenant)
    invoice_type = (args.type or tenant.default_invoice_type).upper()
    last = gw.last_authorized_number(tenant, invoice_type)
    print(f"Ultimo comprobante {invoice_type} autorizado (PV {tenant.punto_venta}): {last}")
    print(f"Proximo numero: {last + 1}")
    return 0


def _tenants(_: argparse.Namespace) -> int:
    from autorizador.config import list_tenants

    names = list_tenants()
    if not names:
        print("No hay comercios configurados. Ejecute 'autorizador-afip init'.")
    for name in names:
        t = _tenant(name)
        estado = "" if t.enabled else " (deshabilitado)"
        print(f"{name}: CUIT {t.cuit}, PV {t.punto_venta}, tipo {t.default_invoice_type}{estado}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    from autorizador.services.params_client import PARAMETER_TABLES

    parser = argparse.ArgumentParser(prog="autorizador-afip", description="Autorizacion de comprobantes AFIP")
    parser.add_argument("-v", "--verbose", action="store_true", help="log detallado")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="crear directorios y comercio de ejemplo").set_defaults(func=_init_config)
    sub.add_parser("test", help="probar certificado y conexion con WSFEv1").set_defaults(func=_test)
    sub.add_parser("tenants", help="listar comercios configurados").set_defaults(func=_tenants)

    p = sub.add_parser("auth", help="obtener ticket de acceso WSAA")
    p.add_argument("--show", action="store_true", help="mostrar token y sign")
    p.set_defaults(func=_auth)

    p = sub.add_parser("populate", help="cargar manualmente un ticket vigente")
    p.add_argument("--token")
    p.add_argument("--sign")
    p.add_argument("--expires", help="ISO 8601 con zona horaria, ej. 2025-06-01T20:00:00-03:00")
    p.add_argument("--from-journal", action="store_true", help="reaplicar el ultimo ticket registrado")
    p.add_argument("--list", action="store_true", help="listar los tickets registrados en el journal")
    p.set_defaults(func=_populate)

    p = sub.add_parser("params", help="consultar tabla de parametros")
    p.add_argument("table", choices=sorted(PARAMETER_TABLES))
    p.add_argument("--tenant", help="comercio cuyo CUIT va en el bloque Auth")
    p.set_defaults(func=_params)

    p = sub.add_parser("last-invoice", help="ultimo numero autorizado")
    p.add_argument("tenant")
    p.add_argument("--type", choices=["A", "B", "C", "a", "b", "c"])
    p.set_defaults(func=_last_invoice)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the autorizador-afip CLI."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except AuthError as e:
        print(f"Error: {e}")
        if e.kind is AuthErrorKind.ALREADY_AUTHENTICATED:
            print("Use 'autorizador-afip populate --from-journal' o cargue token/sign vigentes.")
        return 1
    except (AfipError, MasterConfigError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
