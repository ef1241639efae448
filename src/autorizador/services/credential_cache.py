"""Login ticket cache shared by every caller in the process.

AFIP refuses a second login for an identity while a ticket is live, so a
miss must trigger exactly one authentication per key no matter how many
threads ask at once. Late arrivals wait on the in-flight future instead of
starting their own call.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from datetime import UTC, datetime, timedelta

from autorizador.config import CREDENTIALS_SAFETY_MARGIN
from autorizador.models.credentials import CacheKey, Credentials

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialCache:
    def __init__(
        self,
        safety_margin: timedelta = CREDENTIALS_SAFETY_MARGIN,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.safety_margin = safety_margin
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[CacheKey, Credentials] = {}
        self._in_flight: dict[CacheKey, Future[Credentials]] = {}

    def _valid_entry(self, key: CacheKey) -> Credentials | None:
        # caller holds self._lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock(), self.safety_margin):
            del self._entries[key]
            return None
        return entry

    def get(self, key: CacheKey) -> Credentials | None:
        """Return live credentials for *key*, or None. Never does I/O."""
        with self._lock:
            return self._valid_entry(key)

    def get_or_authenticate(
        self,
        key: CacheKey,
        authenticate: Callable[[], Credentials],
    ) -> Credentials:
        """Return live credentials, running *authenticate* at most once per key.

        Concurrent callers for the same key share one call and its outcome,
        including its exception. Failures are not cached.
        """
        with self._lock:
            entry = self._valid_entry(key)
            if entry is not None:
                return entry
            future = self._in_flight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._in_flight[key] = future

        if not leader:
            logger.debug("Esperando autenticacion en curso para %s", key)
            return future.result()

        try:
            credentials = authenticate()
        except BaseException as exc:
            with self._lock:
                del self._in_flight[key]
            future.set_exception(exc)
            raise

        with self._lock:
            self._entries[key] = credentials
            del self._in_flight[key]
        future.set_result(credentials)
        logger.info("Credenciales en cache para %s hasta %s", key, credentials.expires_at)
        return credentials

    def populate(self, key: CacheKey, credentials: Credentials, source: str = "manual") -> None:
        """Overwrite the entry for *key* unconditionally.

        *source* is ``"manual"`` for operator recovery, ``"journal"`` when the
        ticket comes from the on-disk record of a previous run.
        """
        with self._lock:
            self._entries[key] = credentials
        level = logging.WARNING if source == "manual" else logging.INFO
        logger.log(level, "Credenciales cargadas (%s) para %s, vencen %s", source, key, credentials.expires_at)

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            removed = self._entries.pop(key, None)
        if removed is not None:
            logger.info("Credenciales invalidadas para %s", key)

    def keys(self) -> list[CacheKey]:
        with self._lock:
            return list(self._entries)
