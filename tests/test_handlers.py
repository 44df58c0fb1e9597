import asyncio
import random
from decimal import Decimal
from types import SimpleNamespace

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram.ext import ConversationHandler

from zenith import banks, handlers
from zenith.handlers import (
    ACCOUNT,
    AMOUNT,
    BANK,
    CANCEL_BTN,
    PAYEE,
    START_BTN,
    STOP_BTN,
    _bank_rows,
    _normalize_account,
    _user_key,
)
from zenith.jobs import build_daily_summary, setup_jobs
from zenith.sessions import SessionRegistry
from zenith.withdrawal import WithdrawalRequest


class FakeMessage:
    def __init__(self, text: str | None = None):
        self.text = text
        self.replies: list[str] = []

    async def reply_text(self, text, reply_markup=None):
        self.replies.append(text)


class FakeBot:
    def __init__(self):
        self.sent: list[tuple[int, str]] = []

    async def send_message(self, chat_id, text, reply_markup=None):
        self.sent.append((chat_id, text))


class FakeApplication:
    def __init__(self, registry: SessionRegistry):
        self.bot_data = {"sessions": registry}
        self.bot = FakeBot()
        self.tasks = []

    def create_task(self, coro):
        self.tasks.append(coro)


def _update(text: str | None = None, username: str | None = "Alice"):
    user = SimpleNamespace(id=42, username=username, first_name="Alice")
    return SimpleNamespace(
        message=FakeMessage(text),
        effective_user=user,
        effective_chat=SimpleNamespace(id=4242),
    )


@pytest.fixture(autouse=True)
def reset_bank_cache():
    banks._reset_cache_for_tests()
    yield
    banks._reset_cache_for_tests()


@pytest.fixture
def registry(store, clock, timer):
    reg = SessionRegistry(store, clock, timer, rate_per_hour=2000, rng_factory=lambda: random.Random(5))
    yield reg
    reg.close_all()


@pytest.fixture
def ctx(registry):
    return SimpleNamespace(application=FakeApplication(registry), user_data={})


def test_user_key_prefers_username():
    assert _user_key(SimpleNamespace(username="Alice", id=1)) == "alice"
    assert _user_key(SimpleNamespace(username=None, id=77)) == "77"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0123456789", "0123456789"),
        ("0123 456-789", "0123456789"),
        ("12345", None),
        ("12ab5678", None),
        (None, None),
    ],
)
def test_normalize_account(raw, expected):
    assert _normalize_account(raw) == expected


def test_bank_rows_end_with_cancel():
    rows = _bank_rows(["A", "B", "C"])
    assert rows == [["A", "B"], ["C"], [CANCEL_BTN]]


def test_menu_buttons_toggle_mining(ctx, registry):
    asyncio.run(handlers.on_text(_update(START_BTN), ctx))
    assert registry.get("alice").engine.is_active is True

    update = _update(STOP_BTN)
    asyncio.run(handlers.on_text(update, ctx))
    assert registry.get("alice").engine.is_active is False
    assert update.message.replies[0].startswith("Đã tạm dừng treo.")


def test_start_reports_offline_credit_once(ctx, store, clock):
    store.set("status:alice", "true")
    store.set("last_update:alice", str(clock.now_ms() - 3_600_000))

    first = _update("/start")
    asyncio.run(handlers.start(first, ctx))
    second = _update("/start")
    asyncio.run(handlers.start(second, ctx))

    assert "Đồng bộ: +2.000đ offline." in first.message.replies[0]
    assert "Đồng bộ" not in second.message.replies[0]


def test_withdraw_conversation_settles_and_notifies(ctx, registry, store, timer):
    store.set("balance:alice", "5000000")

    assert asyncio.run(handlers.withdraw_start(_update("Rút tiền"), ctx)) == BANK
    assert asyncio.run(handlers.withdraw_bank(_update("Không có"), ctx)) == BANK
    assert asyncio.run(handlers.withdraw_bank(_update("vietcombank (vcb)"), ctx)) == ACCOUNT
    assert asyncio.run(handlers.withdraw_account(_update("12"), ctx)) == ACCOUNT
    assert asyncio.run(handlers.withdraw_account(_update("0123 456 789"), ctx)) == PAYEE
    assert asyncio.run(handlers.withdraw_payee(_update("nguyen  van a"), ctx)) == AMOUNT

    low = _update("2.000.000")
    assert asyncio.run(handlers.withdraw_amount(low, ctx)) == AMOUNT
    assert "Tối thiểu 3.000.000 VNĐ." in low.message.replies[0]

    done = _update("3.000.000")
    assert asyncio.run(handlers.withdraw_amount(done, ctx)) == ConversationHandler.END

    session = registry.get("alice")
    assert session.workflow.request.payee_name == "NGUYEN VAN A"
    assert session.workflow.request.bank == "Vietcombank (VCB)"

    timer.advance(2_500)

    assert session.engine.current_balance() == Decimal("2000000")
    application = ctx.application
    assert len(application.tasks) == 1
    asyncio.run(application.tasks[0])
    chat_id, text = application.bot.sent[0]
    assert chat_id == 4242
    assert text.startswith("THÀNH CÔNG! Lệnh rút 3.000.000đ về Vietcombank (VCB)")


def test_withdraw_cancel_clears_form(ctx):
    ctx.user_data["withdraw"] = {"bank": "ACB"}

    result = asyncio.run(handlers.withdraw_cancel(_update(CANCEL_BTN), ctx))

    assert result == ConversationHandler.END
    assert "withdraw" not in ctx.user_data


def test_daily_summary_is_pushed_to_known_chats(registry):
    session = registry.open("alice", chat_id=99)
    session.engine.apply_increment(Decimal("1500"))
    registry.open("bob")

    app = SimpleNamespace(bot=FakeBot())
    push = setup_jobs(app, AsyncIOScheduler(timezone="UTC"), registry)
    asyncio.run(push())

    assert [chat for chat, _ in app.bot.sent] == [99]
    text = app.bot.sent[0][1]
    assert text == build_daily_summary(session)
    assert "Tổng 7 ngày: 1.500đ" in text
    assert "Số dư hiện tại: 1.500,00đ (node đang dừng)." in text


def test_each_session_gets_one_settlement_notice(ctx, registry, store, timer):
    store.set("balance:bob", "4000000")
    asyncio.run(handlers.withdraw_start(_update("Rút tiền", username="Alice"), ctx))
    # same chat, new username: a different session behind the same user_data
    asyncio.run(handlers.withdraw_start(_update("Rút tiền", username="Bob"), ctx))
    asyncio.run(handlers.withdraw_start(_update("Rút tiền", username="Bob"), ctx))

    bob = registry.get("bob")
    bob.workflow.submit(
        WithdrawalRequest(bank="ACB", account_number="0123456789", payee_name="bob", amount=3_000_000)
    )
    timer.advance(2_500)

    assert registry.get("alice").settle_notifier is True
    assert bob.engine.current_balance() == Decimal("1000000")
    assert len(ctx.application.tasks) == 1
    asyncio.run(ctx.application.tasks[0])
    assert ctx.application.bot.sent[0][1].startswith("THÀNH CÔNG! Lệnh rút 3.000.000đ về ACB")
