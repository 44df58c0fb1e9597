from datetime import date, datetime, timezone
from decimal import Decimal

from zenith.engine import LogEntry
from zenith.formatting import (
    fmt_amount,
    fmt_live,
    format_history,
    format_logs,
    format_status,
    history_bar,
)
from zenith.history import DailyEarning, default_window


def test_fmt_amount_uses_vietnamese_grouping():
    assert fmt_amount(3000000) == "3.000.000"
    assert fmt_amount(Decimal("1234567.999")) == "1.234.567"
    assert fmt_live(Decimal("1234.5")) == "1.234,50"
    assert fmt_amount(0) == "0"


def test_history_bar_is_clamped():
    assert history_bar(Decimal("0")) == "·" * 10
    assert history_bar(Decimal("2500")) == "▇" * 5 + "·" * 5
    assert history_bar(Decimal("99999")) == "▇" * 10


def test_format_history_marks_today_and_total():
    today = date(2024, 3, 10)
    window = default_window(today)
    window[-1] = DailyEarning(date=today, amount=Decimal("4100"))
    window[0] = DailyEarning(date=window[0].date, amount=Decimal("900"))

    text = format_history(window, today)

    lines = text.splitlines()
    assert len(lines) == 8
    assert lines[0].strip().startswith("04/03")
    assert lines[-2].strip().startswith("Nay")
    assert lines[-2].endswith("4.100đ")
    assert lines[-1] == "Tổng 7 ngày: 5.000đ"


def test_format_logs_limit_and_empty():
    stamp = datetime(2024, 3, 10, 9, 5, 7, tzinfo=timezone.utc)
    entries = [
        LogEntry(id="b", time=stamp, message="Synced", level="success"),
        LogEntry(id="a", time=stamp, message="Packet processed: +1,00đ"),
    ]

    assert format_logs(entries, limit=1) == "09:05:07 ✅ Synced"
    assert format_logs([]) == "Chưa có dữ liệu."


def test_format_status_shows_nodes_only_when_active():
    active = format_status("alice", Decimal("12.3"), True, 2000)
    idle = format_status("alice", Decimal("12.3"), False, 2000)

    assert "ĐANG TREO" in active
    assert "Node hoạt động: 3" in active
    assert "Số dư khả dụng: 12,30đ" in active
    assert "Tốc độ hiện tại: 2.000đ/giờ" in active
    assert "Node hoạt động: 0" in idle
