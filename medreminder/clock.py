"""Time source used by the engine."""

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time; tests substitute a fixed one."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
