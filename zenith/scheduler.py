from __future__ import annotations

import random
from decimal import Decimal
from typing import Callable, Optional

from ._loguru import logger
from .timers import Timer, TimerHandle

MS_PER_HOUR = 3_600_000
_QUANTUM = Decimal("0.000001")

IncrementSink = Callable[[Decimal, float], None]


def compute_increment(rate_per_hour: float | Decimal, interval_ms: float, multiplier: float) -> Decimal:
    """Earnings for one tick: the interval's share of an hour at a jittered rate."""

    share_of_hour = Decimal(str(interval_ms)) / Decimal(MS_PER_HOUR)
    amount = Decimal(str(rate_per_hour)) * share_of_hour * Decimal(str(multiplier))
    return amount.quantize(_QUANTUM)


class AccrualScheduler:
    """Recurring randomized tick loop driving an increment sink.

    Each cycle waits an interval drawn from ``[min_interval_ms, max_interval_ms)``
    and then reports ``compute_increment(rate, interval, multiplier)`` to the
    sink, with the multiplier drawn from ``[min_multiplier, max_multiplier)``.
    Only one wait is ever pending. ``stop()`` cancels it, and a stale callback
    that still slips through is recognised by its cycle number and dropped.
    """

    def __init__(
        self,
        timer: Timer,
        rate_per_hour: float | Decimal,
        on_increment: IncrementSink,
        rng: Optional[random.Random] = None,
        min_interval_ms: int = 2000,
        max_interval_ms: int = 5000,
        min_multiplier: float = 0.8,
        max_multiplier: float = 1.2,
    ):
        if max_interval_ms < min_interval_ms:
            raise ValueError("max_interval_ms must not be below min_interval_ms")
        if max_multiplier < min_multiplier:
            raise ValueError("max_multiplier must not be below min_multiplier")
        self._timer = timer
        self.rate_per_hour = rate_per_hour
        self._on_increment = on_increment
        self._rng = rng or random.Random()
        self._min_interval = min_interval_ms
        self._max_interval = max_interval_ms
        self._min_multiplier = min_multiplier
        self._max_multiplier = max_multiplier
        self._handle: Optional[TimerHandle] = None
        self._cycle = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def sample_interval(self) -> float:
        return self._min_interval + self._rng.random() * (self._max_interval - self._min_interval)

    def sample_multiplier(self) -> float:
        return self._min_multiplier + self._rng.random() * (self._max_multiplier - self._min_multiplier)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._cycle += 1
        logger.debug("Accrual loop started (cycle {})", self._cycle)
        self._schedule_next()

    def stop(self) -> None:
        self._cycle += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._running:
            logger.debug("Accrual loop stopped")
        self._running = False

    def _schedule_next(self) -> None:
        interval = self.sample_interval()
        cycle = self._cycle
        self._handle = self._timer.call_later(interval, lambda: self._tick(cycle, interval))

    def _tick(self, cycle: int, interval_ms: float) -> None:
        if not self._running or cycle != self._cycle:
            return
        self._handle = None
        amount = compute_increment(self.rate_per_hour, interval_ms, self.sample_multiplier())
        self._on_increment(amount, interval_ms)
        # the sink may have stopped us
        if self._running and cycle == self._cycle:
            self._schedule_next()
