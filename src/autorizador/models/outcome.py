"""Result of an invoice authorization request.

Exactly one of three shapes; callers are expected to ``match`` on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


@dataclass(frozen=True)
class AuthorityMessage:
    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass(frozen=True)
class Approved:
    code: str  # CAE
    code_expiration_date: date
    number: int
    observations: tuple[AuthorityMessage, ...] = ()


@dataclass(frozen=True)
class Rejected:
    """AFIP evaluated the voucher and declined it; the number is spent."""

    reason: str
    authority_error_code: str
    errors: tuple[AuthorityMessage, ...] = ()
    summary: str = ""


@dataclass(frozen=True)
class TransportFailure:
    """The voucher was not fiscally evaluated; the host may resubmit it."""

    cause: str
    auth_related: bool = field(default=False)


InvoiceOutcome = Approved | Rejected | TransportFailure
