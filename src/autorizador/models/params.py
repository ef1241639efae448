from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class ParameterRecord:
    id: str
    description: str
    valid_from: date | None = None
    valid_to: date | None = None  # None = still in force
