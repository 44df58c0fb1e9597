from __future__ import annotations

import heapq
import itertools
from datetime import datetime, timedelta
from typing import Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from .clock import ManualClock

Callback = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...

    @property
    def active(self) -> bool:
        ...


class Timer(Protocol):
    def call_later(self, delay_ms: float, callback: Callback) -> TimerHandle:
        ...


async def _fire(callback: Callback) -> None:
    # coroutine job: AsyncIOScheduler runs it on the event loop, not in a worker thread
    callback()


class _JobHandle:
    def __init__(self, scheduler: BaseScheduler, job_id: str):
        self._scheduler = scheduler
        self._job_id = job_id
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled and self._scheduler.get_job(self._job_id) is not None

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        try:
            self._scheduler.remove_job(self._job_id)
        except JobLookupError:
            pass  # already fired


class SchedulerTimer:
    """One-shot timers backed by an APScheduler scheduler (normally ``AsyncIOScheduler``)."""

    def __init__(self, scheduler: BaseScheduler):
        self._scheduler = scheduler

    def call_later(self, delay_ms: float, callback: Callback) -> _JobHandle:
        run_date = datetime.now(self._scheduler.timezone) + timedelta(milliseconds=delay_ms)
        job = self._scheduler.add_job(
            _fire,
            DateTrigger(run_date=run_date),
            args=[callback],
            misfire_grace_time=None,
        )
        return _JobHandle(self._scheduler, job.id)


class _ManualHandle:
    def __init__(self, timer: "ManualTimer", seq: int):
        self._timer = timer
        self.seq = seq
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        if self.active:
            self.cancelled = True
            self._timer._discard(self.seq)


class ManualTimer:
    """Simulated-time timer queue.

    Time only advances through :meth:`advance`; callbacks due inside the
    advanced window fire in due order, with the paired clock moved to each
    callback's due instant first. Callbacks may schedule further callbacks,
    which fire in the same call if they fall inside the window.
    """

    def __init__(self, clock: ManualClock | None = None):
        self.clock = clock or ManualClock()
        self._now = 0.0
        self._queue: list[tuple[float, int, Callback]] = []
        self._handles: dict[int, _ManualHandle] = {}
        self._seq = itertools.count()

    def call_later(self, delay_ms: float, callback: Callback) -> _ManualHandle:
        if delay_ms < 0:
            delay_ms = 0
        seq = next(self._seq)
        heapq.heappush(self._queue, (self._now + delay_ms, seq, callback))
        handle = _ManualHandle(self, seq)
        self._handles[seq] = handle
        return handle

    @property
    def pending(self) -> int:
        return len(self._handles)

    def next_due_in(self) -> float | None:
        self._drop_cancelled()
        if not self._queue:
            return None
        return self._queue[0][0] - self._now

    def advance(self, ms: float) -> int:
        """Advance simulated time by ``ms``; returns the number of callbacks fired."""

        if ms < 0:
            raise ValueError("time only moves forward")
        end = self._now + ms
        fired = 0
        while True:
            self._drop_cancelled()
            if not self._queue or self._queue[0][0] > end:
                break
            due, seq, callback = heapq.heappop(self._queue)
            handle = self._handles.pop(seq)
            self._move_to(due)
            handle.fired = True
            callback()
            fired += 1
        self._move_to(end)
        return fired

    def run_next(self) -> bool:
        """Jump straight to the next pending callback and fire it."""

        due_in = self.next_due_in()
        if due_in is None:
            return False
        self.advance(due_in)
        return True

    def _move_to(self, instant: float) -> None:
        if instant > self._now:
            self.clock.advance(instant - self._now)
            self._now = instant

    def _discard(self, seq: int) -> None:
        self._handles.pop(seq, None)

    def _drop_cancelled(self) -> None:
        while self._queue and self._queue[0][1] not in self._handles:
            heapq.heappop(self._queue)
