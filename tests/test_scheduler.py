import random
from decimal import Decimal

from zenith.scheduler import AccrualScheduler, compute_increment
from zenith.timers import ManualTimer


def _collect(timer, seed=1, rate=3600):
    ticks: list[tuple[Decimal, float]] = []
    sch = AccrualScheduler(timer, rate, lambda amount, interval: ticks.append((amount, interval)), rng=random.Random(seed))
    return sch, ticks


def test_compute_increment_is_share_of_hourly_rate():
    assert compute_increment(3600, 1000, 1.0) == Decimal("1.000000")
    assert compute_increment(2000, 3600, 1.2) == Decimal("2.400000")


def test_samples_stay_inside_configured_ranges(timer):
    sch, _ = _collect(timer, seed=123)
    intervals = [sch.sample_interval() for _ in range(2000)]
    multipliers = [sch.sample_multiplier() for _ in range(2000)]

    assert all(2000 <= value < 5000 for value in intervals)
    assert all(0.8 <= value < 1.2 for value in multipliers)
    # not a fixed rhythm
    assert len({round(value) for value in intervals}) > 100


def test_no_tick_before_minimum_interval(timer):
    sch, ticks = _collect(timer)
    sch.start()

    timer.advance(1999)
    assert ticks == []

    timer.advance(3001)
    assert len(ticks) == 1


def test_ticks_repeat_and_respect_bounds(timer):
    sch, ticks = _collect(timer, rate=2000)
    sch.start()

    timer.advance(60_000)

    assert 12 <= len(ticks) <= 30
    low = Decimal(2000) * Decimal("0.8") * Decimal(2000) / Decimal(3_600_000)
    high = Decimal(2000) * Decimal("1.2") * Decimal(5000) / Decimal(3_600_000)
    for amount, interval in ticks:
        assert 2000 <= interval < 5000
        assert low - Decimal("0.000001") <= amount <= high + Decimal("0.000001")


def test_stop_cancels_pending_wait(timer):
    sch, ticks = _collect(timer)
    sch.start()
    timer.advance(1500)

    sch.stop()
    timer.advance(10_000)

    assert ticks == []
    assert timer.pending == 0
    assert sch.running is False


def test_restart_begins_a_fresh_cycle(timer):
    sch, ticks = _collect(timer)
    sch.start()
    timer.advance(1900)
    sch.stop()
    sch.start()

    # the stale wait would have fired within ~100 ms of here
    timer.advance(1999)
    assert ticks == []
    assert timer.pending == 1


def test_start_twice_keeps_a_single_wait(timer):
    sch, _ = _collect(timer)
    sch.start()
    sch.start()
    assert timer.pending == 1


def test_sink_can_stop_the_loop(timer):
    ticks = []

    def sink(amount, interval):
        ticks.append(amount)
        sch.stop()

    sch = AccrualScheduler(timer, 2000, sink, rng=random.Random(5))
    sch.start()
    timer.advance(30_000)

    assert len(ticks) == 1
    assert timer.pending == 0


def test_same_seed_same_sequence():
    first_timer, second_timer = ManualTimer(), ManualTimer()
    first, first_ticks = _collect(first_timer, seed=42)
    second, second_ticks = _collect(second_timer, seed=42)
    first.start()
    second.start()

    first_timer.advance(40_000)
    second_timer.advance(40_000)

    assert first_ticks == second_ticks
    assert first_ticks
