from __future__ import annotations

from datetime import datetime
from typing import Callable

from .models import utc_now
from .store import TenderStore


class TenderNumberGenerator:
    """Suggests `<prefix>-<year>-<seq>` numbers, e.g. TND-2024-007."""

    def __init__(
        self,
        store: TenderStore,
        *,
        prefix: str = "TND",
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._prefix = (str(prefix or "").strip() or "TND").upper()
        self._clock = clock

    def generate(self, year: int | None = None) -> str:
        y = int(year or self._clock().year)
        seq = self._store.next_sequence(f"{self._prefix}#{y}")
        return f"{self._prefix}-{y}-{seq:03d}"
