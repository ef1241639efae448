"""On-disk record of every login ticket this installation obtained or was given.

The cache lives in memory and dies with the process, while AFIP keeps the
ticket live for hours and refuses a new login meanwhile. The journal is
where the operator recovers the last ticket from after a restart.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from filelock import FileLock

from autorizador import config as _config
from autorizador.models.credentials import CacheKey, Credentials

logger = logging.getLogger(__name__)


def _journal_file(path: Path | None) -> Path:
    return path if path is not None else _config.get_journal_path()


@contextmanager
def _locked(jf: Path) -> Iterator[None]:
    """Hold an exclusive file lock during journal read-modify-write."""
    jf.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(jf.with_suffix(".lock")):
        yield


def _quarantine(jf: Path) -> None:
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    backup = jf.with_name(f"{jf.name}.corrupt.{ts}")
    jf.rename(backup)
    logger.warning("Journal de tickets corrupto, respaldado en %s", backup)


def _load(jf: Path) -> dict[str, dict]:
    if not jf.exists():
        return {}
    try:
        data = json.loads(jf.read_text())
    except (json.JSONDecodeError, ValueError):
        _quarantine(jf)
        return {}
    if not isinstance(data, dict):
        _quarantine(jf)
        return {}
    return data


def _credentials(raw_key: str, entry: object) -> Credentials | None:
    try:
        return Credentials.from_dict(entry)
    except (KeyError, ValueError, TypeError, AttributeError):
        logger.warning("Entrada de journal ignorada: %s", raw_key)
        return None


def _save(jf: Path, data: dict[str, dict]) -> None:
    tmp = jf.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    os.chmod(tmp, 0o600)
    os.replace(tmp, jf)


def record(key: CacheKey, credentials: Credentials, source: str, path: Path | None = None) -> None:
    """Store *credentials* as the latest ticket for *key*."""
    jf = _journal_file(path)
    with _locked(jf):
        data = _load(jf)
        data[str(key)] = {
            **credentials.to_dict(),
            "source": source,
            "recorded_at": datetime.now(UTC).isoformat(),
        }
        _save(jf, data)


def latest(key: CacheKey, path: Path | None = None) -> Credentials | None:
    jf = _journal_file(path)
    with _locked(jf):
        entry = _load(jf).get(str(key))
    if entry is None:
        return None
    return _credentials(str(key), entry)


def entries(path: Path | None = None) -> dict[CacheKey, Credentials]:
    """Every recorded ticket, expired or not."""
    jf = _journal_file(path)
    with _locked(jf):
        data = _load(jf)
    result: dict[CacheKey, Credentials] = {}
    for raw_key, entry in data.items():
        try:
            key = CacheKey.parse(raw_key)
        except ValueError:
            logger.warning("Entrada de journal ignorada: %s", raw_key)
            continue
        credentials = _credentials(raw_key, entry)
        if credentials is not None:
            result[key] = credentials
    return result
