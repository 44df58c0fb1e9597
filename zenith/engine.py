from __future__ import annotations

import random
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Literal, Optional

from ._loguru import logger
from .catchup import resolve_catch_up
from .clock import Clock
from .config import settings
from .errors import InsufficientFunds, MalformedPersistedState, StorageError
from .formatting import fmt_live
from .history import DailyEarning, HistoryLedger
from .scheduler import AccrualScheduler
from .storage import (
    KeyValueStore,
    balance_key,
    format_decimal,
    last_update_key,
    parse_balance,
    parse_status,
    parse_timestamp_ms,
    status_key,
)
from .timers import Timer

LogLevel = Literal["info", "success", "warning"]
EventKind = Literal["tick", "catch_up", "debit"]


class ActivityState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(slots=True)
class LogEntry:
    id: str
    time: datetime
    message: str
    level: LogLevel = "info"


@dataclass(slots=True)
class AccrualEvent:
    kind: EventKind
    amount: Decimal
    balance: Decimal
    at_ms: int


Listener = Callable[[AccrualEvent], None]


class AccrualEngine:
    """Owns one user's balance and mining flag and drives accrual for it.

    Collaborators are injected: ``store`` for persistence, ``clock`` for
    wall-clock reads, ``timer`` for the cancellable tick waits and ``rng``
    for the tick jitter. Tuning values default to :data:`settings`.

    All mutation happens synchronously inside a call or a timer callback,
    so there is a single mutator at any instant.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        timer: Timer,
        rng: Optional[random.Random] = None,
        *,
        tick_min_ms: Optional[int] = None,
        tick_max_ms: Optional[int] = None,
        multiplier_min: Optional[float] = None,
        multiplier_max: Optional[float] = None,
        offline_cap_hours: Optional[float] = None,
        offline_min_credit: Optional[float] = None,
        log_limit: Optional[int] = None,
        history_days: Optional[int] = None,
        pulse_ms: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.timer = timer
        self.rng = rng or random.Random()
        self._tick_min_ms = tick_min_ms if tick_min_ms is not None else settings.TICK_MIN_MS
        self._tick_max_ms = tick_max_ms if tick_max_ms is not None else settings.TICK_MAX_MS
        self._multiplier_min = multiplier_min if multiplier_min is not None else settings.MULTIPLIER_MIN
        self._multiplier_max = multiplier_max if multiplier_max is not None else settings.MULTIPLIER_MAX
        self._offline_cap_hours = (
            offline_cap_hours if offline_cap_hours is not None else settings.OFFLINE_CAP_HOURS
        )
        self._offline_min_credit = (
            offline_min_credit if offline_min_credit is not None else settings.OFFLINE_MIN_CREDIT
        )
        self._history_days = history_days if history_days is not None else settings.HISTORY_DAYS
        self._pulse_ms = pulse_ms if pulse_ms is not None else settings.PULSE_MS
        self._logs: deque[LogEntry] = deque(
            maxlen=log_limit if log_limit is not None else settings.LOG_LIMIT
        )

        self.user_id: Optional[str] = None
        self.rate_per_hour: Decimal = Decimal("0")
        self._balance = Decimal("0")
        self._state = ActivityState.INACTIVE
        self._last_observed_ms: Optional[int] = None
        self._history: Optional[HistoryLedger] = None
        self._scheduler: Optional[AccrualScheduler] = None
        self._pulse_until_ms = 0
        self._listeners: list[Listener] = []

    # --- lifecycle

    def initialize(self, user_id: str, rate_per_hour: float | Decimal) -> Decimal:
        """Load the user's state, credit offline time once and resume mining if it was on.

        Returns the catch-up credit (zero when none was applied).
        """

        if self._scheduler is not None:
            self._scheduler.stop()

        self.user_id = user_id
        self.rate_per_hour = Decimal(str(rate_per_hour))
        self._balance = self._load(balance_key(user_id), parse_balance, Decimal("0"))
        active = self._load(status_key(user_id), parse_status, False)
        self._state = ActivityState.ACTIVE if active else ActivityState.INACTIVE
        self._last_observed_ms = self._load(last_update_key(user_id), parse_timestamp_ms, None)
        self._history = HistoryLedger(self.store, user_id, self.clock, days=self._history_days)
        self._history.load()
        self._scheduler = AccrualScheduler(
            self.timer,
            self.rate_per_hour,
            self._on_tick,
            rng=self.rng,
            min_interval_ms=self._tick_min_ms,
            max_interval_ms=self._tick_max_ms,
            min_multiplier=self._multiplier_min,
            max_multiplier=self._multiplier_max,
        )

        credited = resolve_catch_up(
            self,
            self._last_observed_ms,
            cap_hours=self._offline_cap_hours,
            min_credit=self._offline_min_credit,
        )
        # always re-stamp so the same gap is never credited twice
        self._touch()

        if self.is_active:
            self._scheduler.start()
        logger.info(
            "Engine ready for {}: balance={} state={} catch_up={}",
            user_id,
            self._balance,
            self._state.value,
            credited,
        )
        return credited

    def close(self) -> None:
        """Tear the session down; no tick fires afterwards."""

        if self._scheduler is not None:
            self._scheduler.stop()
        logger.debug("Engine closed for {}", self.user_id)

    # --- state transitions

    def set_active(self, active: bool) -> ActivityState:
        self._require_ready()
        target = ActivityState.ACTIVE if active else ActivityState.INACTIVE
        changed = target is not self._state
        self._state = target
        if active:
            self._scheduler.start()
        else:
            self._scheduler.stop()
        self._write(status_key(self.user_id), "true" if active else "false")
        self._touch()
        if changed:
            if active:
                self.add_log("Node started. Processing packets…", level="info")
            else:
                self.add_log("Node paused.", level="warning")
            logger.info("Mining {} for {}", "started" if active else "paused", self.user_id)
        return self._state

    def apply_increment(self, amount: Decimal, source: EventKind = "tick") -> None:
        self._require_ready()
        amount = Decimal(str(amount))
        if amount <= 0:
            return
        self._balance += amount
        self._write(balance_key(self.user_id), format_decimal(self._balance))
        self._touch()
        self._history.record_delta(amount)
        self._emit(source, amount)

    def debit(self, amount: Decimal) -> Decimal:
        self._require_ready()
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError("debit amount must be positive")
        if amount > self._balance:
            raise InsufficientFunds()
        self._balance -= amount
        self._write(balance_key(self.user_id), format_decimal(self._balance))
        logger.info("Debited {} from {}; balance now {}", amount, self.user_id, self._balance)
        self._emit("debit", amount)
        return self._balance

    # --- reads

    @property
    def is_active(self) -> bool:
        return self._state is ActivityState.ACTIVE

    @property
    def is_ticking(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def last_observed_ms(self) -> Optional[int]:
        return self._last_observed_ms

    def current_balance(self) -> Decimal:
        return self._balance

    def current_activity_state(self) -> ActivityState:
        return self._state

    def current_history(self) -> list[DailyEarning]:
        return self._history.entries() if self._history else []

    def current_logs(self) -> list[LogEntry]:
        """Log entries, newest first."""
        return list(reversed(self._logs))

    def is_pulsing(self) -> bool:
        return self.clock.now_ms() < self._pulse_until_ms

    # --- presentation hooks

    def add_log(self, message: str, level: LogLevel = "info") -> LogEntry:
        entry = LogEntry(
            id=uuid.uuid4().hex[:9],
            time=self.clock.now(),
            message=message,
            level=level,
        )
        self._logs.append(entry)
        return entry

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- internals

    def _on_tick(self, amount: Decimal, interval_ms: float) -> None:
        self.apply_increment(amount, source="tick")
        self._pulse_until_ms = self.clock.now_ms() + self._pulse_ms
        self.add_log(f"Packet processed: +{fmt_live(amount)}đ", level="info")
        logger.debug("Tick for {}: +{} after {:.0f} ms", self.user_id, amount, interval_ms)

    def _emit(self, kind: EventKind, amount: Decimal) -> None:
        event = AccrualEvent(kind=kind, amount=amount, balance=self._balance, at_ms=self.clock.now_ms())
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # pragma: no cover - listener bugs must not stop accrual
                logger.error("Accrual listener failed for {}: {}", self.user_id, exc)

    def _touch(self) -> None:
        self._last_observed_ms = self.clock.now_ms()
        self._write(last_update_key(self.user_id), str(self._last_observed_ms))

    def _write(self, key: str, value: str) -> None:
        try:
            self.store.set(key, value)
        except StorageError as exc:
            logger.error("Persist failed for {}: {}", key, exc)

    def _load(self, key: str, parser, default):
        try:
            raw = self.store.get(key)
        except StorageError as exc:
            logger.error("Read failed for {}: {}", key, exc)
            return default
        if raw is None:
            return default
        try:
            return parser(key, raw)
        except MalformedPersistedState as exc:
            logger.warning("Ignoring malformed record: {}", exc)
            return default

    def _require_ready(self) -> None:
        if self.user_id is None or self._scheduler is None:
            raise RuntimeError("engine is not initialized; call initialize() first")
