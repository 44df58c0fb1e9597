from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now_ms(self) -> int:
        """Milliseconds since the Unix epoch."""
        ...

    def today(self) -> date:
        """Calendar day in the user's local zone."""
        ...

    def now(self) -> datetime:
        ...


class SystemClock:
    def __init__(self, tz: str | tzinfo = "UTC"):
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def today(self) -> date:
        return self.now().date()


class ManualClock:
    """Clock that only moves when told to. Used to simulate time."""

    def __init__(self, start: datetime | None = None):
        if start is None:
            start = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._start = start
        self._elapsed_ms = 0.0

    def now(self) -> datetime:
        return self._start + timedelta(milliseconds=self._elapsed_ms)

    def now_ms(self) -> int:
        return int(self._start.timestamp() * 1000 + self._elapsed_ms)

    def today(self) -> date:
        return self.now().date()

    def advance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError("time only moves forward")
        self._elapsed_ms += ms

    def set_now(self, moment: datetime) -> None:
        """Jump to ``moment``; backwards jumps are allowed to model clock skew."""

        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self._start.tzinfo)
        self._elapsed_ms = (moment - self._start).total_seconds() * 1000
