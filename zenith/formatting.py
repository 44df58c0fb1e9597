from __future__ import annotations

from datetime import date
from decimal import ROUND_DOWN, Decimal
from typing import Iterable

BAR_WIDTH = 10
BAR_FULL_AMOUNT = Decimal("5000")


def _to_decimal(value: float | int | Decimal) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def fmt_amount(value: float | int | Decimal, precision: int = 0) -> str:
    """Format VND amounts the vi-VN way: dots group thousands, comma marks decimals.

    Whole-dong output truncates rather than rounds, so a balance never shows
    more than has been earned.
    """
    amount = _to_decimal(value)
    if precision > 0:
        quantum = Decimal(1).scaleb(-precision)
        formatted = f"{amount.quantize(quantum, rounding=ROUND_DOWN):,.{precision}f}"
    else:
        formatted = f"{amount.to_integral_value(rounding=ROUND_DOWN):,.0f}"
    return formatted.replace(",", "_").replace(".", ",").replace("_", ".")


def fmt_live(value: float | int | Decimal) -> str:
    return fmt_amount(value, precision=2)


def fmt_day(day: date) -> str:
    return day.strftime("%d/%m")


def history_bar(amount: Decimal) -> str:
    filled = int((amount / BAR_FULL_AMOUNT * BAR_WIDTH).to_integral_value(rounding=ROUND_DOWN))
    filled = max(0, min(BAR_WIDTH, filled))
    return "▇" * filled + "·" * (BAR_WIDTH - filled)


def format_history(entries: Iterable["DailyEarning"], today: date) -> str:
    from .history import DailyEarning

    lines: list[str] = []
    total = Decimal("0")
    for item in entries:
        label = "Nay" if item.date == today else fmt_day(item.date)
        lines.append(f"{label:>5} {history_bar(item.amount)} {fmt_amount(item.amount)}đ")
        total += item.amount
    lines.append(f"Tổng 7 ngày: {fmt_amount(total)}đ")
    return "\n".join(lines)


def format_logs(entries: Iterable["LogEntry"], limit: int | None = None) -> str:
    from .engine import LogEntry

    lines: list[str] = []
    for idx, entry in enumerate(entries):
        if limit is not None and idx >= limit:
            break
        marker = {"success": "✅", "warning": "⚠️"}.get(entry.level, "•")
        lines.append(f"{entry.time.strftime('%H:%M:%S')} {marker} {entry.message}")
    return "\n".join(lines) if lines else "Chưa có dữ liệu."


def format_status(
    username: str,
    balance: Decimal,
    active: bool,
    rate_per_hour: float | Decimal,
    nodes: int = 3,
) -> str:
    state = "ĐANG TREO" if active else "ĐANG DỪNG"
    return (
        f"Xin chào, {username}!\n"
        f"Trạng thái: {state}\n"
        f"Số dư khả dụng: {fmt_live(balance)}đ\n"
        f"Tốc độ hiện tại: {fmt_amount(rate_per_hour)}đ/giờ\n"
        f"Node hoạt động: {nodes if active else 0} (VietNam-SGN)"
    )
