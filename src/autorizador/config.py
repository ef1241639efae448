from __future__ import annotations

import os
from datetime import timedelta, timezone
from pathlib import Path

import platformdirs
import yaml
from dotenv import load_dotenv

APP_NAME = "autorizador-afip"
KEYRING_SERVICE = APP_NAME
KEYRING_USERNAME = "master-pfx-password"


def _resolve_config_dir_for_dotenv() -> Path | None:
    """Resolve the config dir for .env loading before .env itself is read.

    Only checks sources available without .env (shell env var, dev layout,
    an existing platformdirs directory).
    """
    from_env = os.environ.get("AUTORIZADOR_CONFIG_DIR")
    if from_env:
        return Path(from_env)
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / "config"
    if candidate.is_dir():
        return candidate
    pd = Path(platformdirs.user_config_dir(APP_NAME))
    if pd.is_dir():
        return pd
    return None


# cwd .env wins, config dir .env never overrides it
load_dotenv()
_cfg_dir = _resolve_config_dir_for_dotenv()
if _cfg_dir is not None:
    load_dotenv(_cfg_dir / ".env")


def _resolve_dir(env_var: str, default_subdir: str, kind: str) -> Path:
    """Resolve a directory from env var, repo layout, or platform default."""
    from_env = os.environ.get(env_var)
    if from_env:
        return Path(from_env)
    # src/autorizador/config.py -> ../../.. = project root
    project_root = Path(__file__).resolve().parent.parent.parent
    candidate = project_root / default_subdir
    if candidate.is_dir():
        return candidate
    if kind == "config":
        return Path(platformdirs.user_config_dir(APP_NAME))
    return Path(platformdirs.user_data_dir(APP_NAME))


def get_config_dir() -> Path:
    return _resolve_dir("AUTORIZADOR_CONFIG_DIR", "config", kind="config")


def get_data_dir() -> Path:
    return _resolve_dir("AUTORIZADOR_DATA_DIR", "data", kind="data")


ART = timezone(timedelta(hours=-3))

MODES = ("homologacion", "produccion")

WSAA_URLS = {
    "homologacion": "https://wsaahomo.afip.gov.ar/ws/services/LoginCms",
    "produccion": "https://wsaa.afip.gov.ar/ws/services/LoginCms",
}

WSFE_URLS = {
    "homologacion": "https://wswhomo.afip.gov.ar/wsfev1/service.asmx",
    "produccion": "https://servicios1.afip.gov.ar/wsfev1/service.asmx",
}

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSAA_NS = "http://wsaa.view.sua.dvadac.desein.afip.gov"
WSFE_NS = "http://ar.gov.afip.dif.FEV1/"

WSAA_TIMEOUT = 30
WSFE_TIMEOUT = 60

# login ticket request validity window, each side of "now"
TRA_WINDOW = timedelta(minutes=10)
CREDENTIALS_SAFETY_MARGIN = timedelta(minutes=5)


# --- Keyring helpers ---


def _get_keyring_password() -> str | None:
    """Read the PKCS#12 password from the OS keyring, None on any failure."""
    try:
        import keyring

        return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception:
        return None


def _set_keyring_password(password: str) -> bool:
    try:
        import keyring

        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, password)
        return True
    except Exception:
        return False


def get_pfx_password(environ: dict[str, str] | None = None) -> str:
    """Return the master PKCS#12 password.

    Priority: 1) AFIP_MASTER_PFX_PASSWORD, 2) OS keyring.
    Raises KeyError if neither source has it.
    """
    env = os.environ if environ is None else environ
    pwd = env.get("AFIP_MASTER_PFX_PASSWORD")
    if pwd is not None:
        return pwd
    pwd = _get_keyring_password()
    if pwd is not None:
        return pwd
    raise KeyError("AFIP_MASTER_PFX_PASSWORD")


# --- YAML tenants ---


def load_yaml(path: Path) -> dict:
    return yaml.safe_load(path.read_text())


def load_tenant(name: str) -> dict:
    """Load a tenant from config/tenants/{name}.yaml."""
    return load_yaml(get_config_dir() / "tenants" / f"{name}.yaml")


def list_tenants() -> list[str]:
    tenants_dir = get_config_dir() / "tenants"
    if not tenants_dir.exists():
        return []
    return sorted(f.stem for f in tenants_dir.glob("*.yaml"))


def save_tenant(name: str, data: dict) -> Path:
    """Save a tenant to config/tenants/{name}.yaml (atomic write)."""
    tenants_dir = get_config_dir() / "tenants"
    tenants_dir.mkdir(parents=True, exist_ok=True)
    path = tenants_dir / f"{name}.yaml"
    tmp = path.with_suffix(".tmp")
    tmp.write_text(yaml.dump(data, default_flow_style=False, allow_unicode=True))
    os.replace(tmp, path)
    return path


def get_journal_path() -> Path:
    return get_data_dir() / "tickets.json"
