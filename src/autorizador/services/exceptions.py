from __future__ import annotations

from enum import Enum


class AfipError(Exception):
    """Base class for every failure raised while talking to AFIP."""


class SigningError(AfipError):
    """Certificate or private key unusable for signing the login ticket request."""


class AuthErrorKind(str, Enum):
    TRANSIENT = "transient"
    ALREADY_AUTHENTICATED = "already_authenticated"
    REFUSED = "refused"


class AuthError(AfipError):
    """WSAA did not issue a ticket.

    ``ALREADY_AUTHENTICATED`` means AFIP still holds a live ticket for this
    identity and will not disclose it; only a manual cache population or the
    ticket's natural expiry clears it.
    """

    def __init__(self, kind: AuthErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind is AuthErrorKind.TRANSIENT


class TransportError(AfipError):
    """Network error, timeout, bad HTTP status or authority error block on a query."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResponseParseError(AfipError):
    """AFIP answered but the expected XML structure is missing."""


class InvalidInvoiceError(ValueError):
    """Invoice violates a wire-format constraint; nothing was sent."""


class MasterConfigError(KeyError):
    """Master identity cannot be resolved from the environment."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
