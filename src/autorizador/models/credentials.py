from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta


@dataclass(frozen=True)
class CacheKey:
    cuit: str
    mode: str

    def __str__(self) -> str:
        return f"{self.cuit}-{self.mode}"

    @classmethod
    def parse(cls, value: str) -> CacheKey:
        cuit, _, mode = value.partition("-")
        if not cuit or not mode:
            raise ValueError(f"Clave de cache invalida: '{value}'")
        return cls(cuit=cuit, mode=mode)


@dataclass(frozen=True)
class Credentials:
    """Login ticket (TA) issued by WSAA."""

    token: str = field(repr=False)
    sign: str = field(repr=False)
    expires_at: datetime  # timezone-aware

    def is_valid(self, now: datetime, margin: timedelta) -> bool:
        return self.expires_at - now > margin

    def to_dict(self) -> dict[str, str]:
        return {
            "token": self.token,
            "sign": self.sign,
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> Credentials:
        expires_at = datetime.fromisoformat(d["expires_at"])
        if expires_at.tzinfo is None:
            raise ValueError("expires_at debe incluir zona horaria")
        return cls(token=d["token"], sign=d["sign"], expires_at=expires_at)
