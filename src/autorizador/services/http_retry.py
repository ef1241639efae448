"""Resending of read-only WSFE calls.

Only queries go through here. FECAESolicitar and loginCms are sent once:
a resend may consume a voucher number or trip alreadyAuthenticated.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests.exceptions

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryableHTTPError(requests.exceptions.HTTPError):
    """AFIP answered with a status worth asking again (overloaded or behind a gateway)."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    pauses: tuple[float, ...]  # seconds after the 1st, 2nd... failure; the last one repeats
    jitter: float
    retryable_exceptions: tuple[type[Exception], ...]
    retryable_status_codes: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.max_attempts < 1 or not self.pauses:
            raise ValueError("RetryPolicy requiere al menos un intento y una pausa")

    def retries_status(self, status_code: int) -> bool:
        return status_code in self.retryable_status_codes


WSFE_READ = RetryPolicy(
    max_attempts=3,
    pauses=(1.0, 3.0),
    jitter=0.25,
    retryable_exceptions=(
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        RetryableHTTPError,
    ),
    retryable_status_codes=frozenset({429, 502, 503, 504}),
)


def _calc_delay(attempt: int, policy: RetryPolicy) -> float:
    pause = policy.pauses[min(attempt, len(policy.pauses) - 1)]
    spread = pause * policy.jitter
    return max(0.0, pause + random.uniform(-spread, spread))


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str = "AFIP",
    sleep_func: Callable[[float], object] = time.sleep,
) -> T:
    """Call *func* until it succeeds or *policy* gives up; the last error propagates."""
    for attempt in range(policy.max_attempts - 1):
        try:
            return func()
        except policy.retryable_exceptions as exc:
            delay = _calc_delay(attempt, policy)
            logger.info("%s: %s, reintentando en %.1fs", label, type(exc).__name__, delay)
            sleep_func(delay)
    try:
        return func()
    except policy.retryable_exceptions as exc:
        logger.warning("%s: sin respuesta tras %d intentos (%s)", label, policy.max_attempts, exc)
        raise
