from __future__ import annotations

from unittest.mock import patch

import pytest

from autorizador.services.exceptions import MasterConfigError
from autorizador.services.master_config import resolve_master_config


def _env(self_signed_pem, **extra):
    key_pem, cert_pem = self_signed_pem
    env = {
        "AFIP_PROVIDER_CUIT": "20-11111111-2",
        "AFIP_MASTER_CERT": cert_pem.decode().replace("\n", "\\n"),
        "AFIP_MASTER_KEY": key_pem.decode().replace("\n", "\\n"),
    }
    env.update(extra)
    return env


class TestResolveMasterConfig:
    def test_inline_pem_with_escaped_newlines(self, self_signed_pem):
        key_pem, cert_pem = self_signed_pem
        master = resolve_master_config(_env(self_signed_pem))
        assert master.cuit == "20111111112"
        assert master.certificate == cert_pem
        assert master.private_key == key_pem

    def test_default_mode_is_homologacion(self, self_signed_pem):
        assert resolve_master_config(_env(self_signed_pem)).mode == "homologacion"

    def test_produccion(self, self_signed_pem):
        assert resolve_master_config(_env(self_signed_pem, AFIP_MODE="produccion")).mode == "produccion"

    def test_invalid_mode(self, self_signed_pem):
        with pytest.raises(MasterConfigError, match="AFIP_MODE"):
            resolve_master_config(_env(self_signed_pem, AFIP_MODE="testing"))

    def test_missing_cuit(self, self_signed_pem):
        env = _env(self_signed_pem)
        del env["AFIP_PROVIDER_CUIT"]
        with pytest.raises(MasterConfigError, match="AFIP_PROVIDER_CUIT"):
            resolve_master_config(env)

    def test_invalid_cuit(self, self_signed_pem):
        with pytest.raises(MasterConfigError, match="verificador"):
            resolve_master_config(_env(self_signed_pem, AFIP_PROVIDER_CUIT="20111111113"))

    def test_is_a_key_error(self):
        with pytest.raises(KeyError):
            resolve_master_config({})

    def test_missing_certificate(self):
        with pytest.raises(MasterConfigError, match="certificado maestro"):
            resolve_master_config({"AFIP_PROVIDER_CUIT": "20111111112"})

    def test_pem_paths(self, tmp_path, self_signed_pem):
        key_pem, cert_pem = self_signed_pem
        (tmp_path / "cert.pem").write_bytes(cert_pem)
        (tmp_path / "key.pem").write_bytes(key_pem)
        master = resolve_master_config(
            {
                "AFIP_PROVIDER_CUIT": "20111111112",
                "AFIP_MASTER_CERT_PATH": str(tmp_path / "cert.pem"),
                "AFIP_MASTER_KEY_PATH": str(tmp_path / "key.pem"),
            }
        )
        assert master.certificate == cert_pem

    def test_pfx(self, test_pfx, self_signed_pem):
        pfx_path, password = test_pfx
        _, cert_pem = self_signed_pem
        master = resolve_master_config(
            {
                "AFIP_PROVIDER_CUIT": "20111111112",
                "AFIP_MASTER_PFX_PATH": pfx_path,
                "AFIP_MASTER_PFX_PASSWORD": password,
            }
        )
        assert master.certificate == cert_pem
        assert b"PRIVATE KEY" in master.private_key

    @patch("autorizador.config._get_keyring_password", return_value="testpass")
    def test_pfx_password_from_keyring(self, mock_kr, test_pfx):
        pfx_path, _ = test_pfx
        master = resolve_master_config({"AFIP_PROVIDER_CUIT": "20111111112", "AFIP_MASTER_PFX_PATH": pfx_path})
        assert master.cuit == "20111111112"
        mock_kr.assert_called_once()

    @patch("autorizador.config._get_keyring_password", return_value=None)
    def test_pfx_without_password(self, mock_kr, test_pfx):
        pfx_path, _ = test_pfx
        with pytest.raises(MasterConfigError, match="AFIP_MASTER_PFX_PASSWORD"):
            resolve_master_config({"AFIP_PROVIDER_CUIT": "20111111112", "AFIP_MASTER_PFX_PATH": pfx_path})

    def test_inline_takes_precedence_over_paths(self, self_signed_pem):
        _, cert_pem = self_signed_pem
        env = _env(self_signed_pem, AFIP_MASTER_CERT_PATH="/nonexistent", AFIP_MASTER_KEY_PATH="/nonexistent")
        assert resolve_master_config(env).certificate == cert_pem

    def test_reads_process_environment(self, monkeypatch, self_signed_pem):
        for name, value in _env(self_signed_pem).items():
            monkeypatch.setenv(name, value)
        monkeypatch.delenv("AFIP_MODE", raising=False)
        assert resolve_master_config().cuit == "20111111112"
