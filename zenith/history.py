from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation

from ._loguru import logger
from .clock import Clock
from .errors import MalformedPersistedState, StorageError
from .storage import KeyValueStore, format_decimal, history_key

WINDOW_DAYS = 7


@dataclass(slots=True)
class DailyEarning:
    date: date
    amount: Decimal

    def to_json(self) -> dict[str, str]:
        return {"date": self.date.isoformat(), "amount": format_decimal(self.amount)}


def default_window(today: date, days: int = WINDOW_DAYS) -> list[DailyEarning]:
    """The ``days`` calendar days ending today, oldest first, all zero."""

    return [
        DailyEarning(date=today - timedelta(days=offset), amount=Decimal("0"))
        for offset in range(days - 1, -1, -1)
    ]


def parse_history(key: str, raw: str, days: int = WINDOW_DAYS) -> list[DailyEarning]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedPersistedState(key, raw, "invalid JSON") from exc
    if not isinstance(data, list):
        raise MalformedPersistedState(key, raw, "expected a list")
    if len(data) != days:
        raise MalformedPersistedState(key, raw, f"expected {days} entries, got {len(data)}")

    entries: list[DailyEarning] = []
    for item in data:
        if not isinstance(item, dict):
            raise MalformedPersistedState(key, raw, "entry is not an object")
        raw_amount = item.get("amount")
        if isinstance(raw_amount, bool) or not isinstance(raw_amount, (int, float, str)):
            raise MalformedPersistedState(key, raw, "entry amount missing")
        try:
            day = date.fromisoformat(str(item.get("date")))
            # floats go through str() so 0.1 stays 0.1
            amount = Decimal(str(raw_amount))
        except (ValueError, InvalidOperation) as exc:
            raise MalformedPersistedState(key, raw, "bad entry") from exc
        if not amount.is_finite():
            raise MalformedPersistedState(key, raw, "entry amount not finite")
        entries.append(DailyEarning(date=day, amount=amount))
    return entries


class HistoryLedger:
    """Rolling window of per-day earnings for one user, oldest entry first.

    The window slides by one slot whenever a delta arrives on a day that is
    not yet in it. Several skipped days therefore collapse into a single
    shift instead of inserting zero days for the gap.
    """

    def __init__(self, store: KeyValueStore, user_id: str, clock: Clock, days: int = WINDOW_DAYS):
        self._store = store
        self._key = history_key(user_id)
        self._clock = clock
        self._days = days
        self._entries: list[DailyEarning] = []

    def load(self) -> list[DailyEarning]:
        try:
            raw = self._store.get(self._key)
        except StorageError as exc:
            logger.error("Read failed for {}: {}", self._key, exc)
            raw = None
        if raw is None:
            self._entries = default_window(self._clock.today(), self._days)
        else:
            try:
                self._entries = parse_history(self._key, raw, self._days)
            except MalformedPersistedState as exc:
                logger.warning("Resetting history window: {}", exc)
                self._entries = default_window(self._clock.today(), self._days)
        return self.entries()

    def entries(self) -> list[DailyEarning]:
        return [DailyEarning(date=item.date, amount=item.amount) for item in self._entries]

    def record_delta(self, amount: Decimal) -> None:
        if amount <= 0:
            return
        if not self._entries:
            self._entries = default_window(self._clock.today(), self._days)

        today = self._clock.today()
        for item in self._entries:
            if item.date == today:
                item.amount += amount
                break
        else:
            self._entries.pop(0)
            self._entries.append(DailyEarning(date=today, amount=amount))
        self._persist()

    def _persist(self) -> None:
        payload = json.dumps([item.to_json() for item in self._entries])
        try:
            self._store.set(self._key, payload)
        except StorageError as exc:
            logger.error("Could not persist history {}: {}", self._key, exc)
