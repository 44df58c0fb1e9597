import asyncio

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from zenith.timers import SchedulerTimer


def test_scheduler_timer_fires_and_cancels_on_event_loop():
    fired: list[str] = []

    async def scenario():
        sch = AsyncIOScheduler(timezone="UTC")
        sch.start()
        timer = SchedulerTimer(sch)
        try:
            kept = timer.call_later(50, lambda: fired.append("a"))
            dropped = timer.call_later(50, lambda: fired.append("b"))
            assert kept.active is True

            dropped.cancel()
            dropped.cancel()
            assert dropped.active is False

            await asyncio.sleep(0.5)

            assert kept.active is False
            # cancelling after the job ran is a no-op
            kept.cancel()
        finally:
            sch.shutdown(wait=False)

    asyncio.run(scenario())

    assert fired == ["a"]


def test_scheduler_timer_runs_callbacks_in_due_order():
    fired: list[int] = []

    async def scenario():
        sch = AsyncIOScheduler(timezone="UTC")
        sch.start()
        timer = SchedulerTimer(sch)
        try:
            timer.call_later(150, lambda: fired.append(2))
            timer.call_later(30, lambda: fired.append(1))
            await asyncio.sleep(0.6)
        finally:
            sch.shutdown(wait=False)

    asyncio.run(scenario())

    assert fired == [1, 2]
