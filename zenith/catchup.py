from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from ._loguru import logger
from .formatting import fmt_amount
from .scheduler import MS_PER_HOUR

if TYPE_CHECKING:
    from .engine import AccrualEngine

_QUANTUM = Decimal("0.000001")


def owed_for_gap(
    last_observed_ms: int,
    now_ms: int,
    rate_per_hour: float | Decimal,
    cap_hours: float | Decimal = 24,
) -> Decimal:
    """Earnings owed for the wall-clock gap, capped at ``cap_hours`` worth.

    A negative gap (the clock went backwards) owes nothing.
    """

    elapsed_ms = max(0, now_ms - last_observed_ms)
    hours = min(Decimal(str(cap_hours)), Decimal(elapsed_ms) / Decimal(MS_PER_HOUR))
    return (hours * Decimal(str(rate_per_hour))).quantize(_QUANTUM)


def resolve_catch_up(
    engine: "AccrualEngine",
    last_observed_ms: Optional[int],
    cap_hours: float | Decimal = 24,
    min_credit: float | Decimal = Decimal("0.01"),
) -> Decimal:
    """Credit the engine for time elapsed while the app was closed but mining.

    Returns the credited amount, or zero when nothing was applied.
    """

    if not engine.is_active or last_observed_ms is None:
        return Decimal("0")

    now_ms = engine.clock.now_ms()
    owed = owed_for_gap(last_observed_ms, now_ms, engine.rate_per_hour, cap_hours)
    if owed <= Decimal(str(min_credit)):
        return Decimal("0")

    engine.apply_increment(owed, source="catch_up")
    engine.add_log(f"Synced: +{fmt_amount(owed)} đ earned offline.", level="success")
    logger.info(
        "Offline catch-up for {}: +{} over {} ms",
        engine.user_id,
        owed,
        now_ms - last_observed_ms,
    )
    return owed
