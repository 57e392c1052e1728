"""
Time source for ledger stamps.

``last_updated``, ``requested_at``, ``approved_at`` and ``confirmed_at``
all come from a Clock handed to the service, so tests can pin them.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Current instant, timezone-aware, in UTC."""


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


_DEFAULT_START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class DeterministicClock:
    """Frozen clock; time moves only through ``advance`` and ``tick``."""

    def __init__(self, start: datetime | None = None):
        self._current = start or _DEFAULT_START

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance(1)
        return self._current
