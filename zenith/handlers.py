import re
from typing import Sequence

from telegram import ReplyKeyboardMarkup, Update, User
from telegram.ext import ContextTypes, ConversationHandler

from ._loguru import logger
from .banks import available_banks, resolve_bank
from .errors import InvalidWithdrawal, WorkflowStateError
from .formatting import fmt_amount, fmt_live, format_history, format_logs, format_status
from .sessions import SessionRegistry, UserSession
from .withdrawal import WithdrawalRequest, WithdrawalStep, parse_amount

# --- Кнопки главного меню
START_BTN = "Bắt đầu treo"
STOP_BTN = "Tạm dừng"
STATUS_BTN = "Tổng quan"
HISTORY_BTN = "Thu nhập gần đây"
LOGS_BTN = "Nhật ký node"
WITHDRAW_BTN = "Rút tiền"
CANCEL_BTN = "Hủy"

MAIN_KB = ReplyKeyboardMarkup(
    [[START_BTN, STOP_BTN], [STATUS_BTN, HISTORY_BTN], [LOGS_BTN, WITHDRAW_BTN]],
    resize_keyboard=True,
)
CANCEL_KB = ReplyKeyboardMarkup([[CANCEL_BTN]], resize_keyboard=True)

LOG_LINES_SHOWN = 15

# --- Состояния мастера вывода
BANK, ACCOUNT, PAYEE, AMOUNT = range(4)

_ACCOUNT_RE = re.compile(r"\d{6,20}")


def _user_key(user: User) -> str:
    """Storage namespace for a Telegram user: the username when set, else the numeric id."""
    if user.username:
        return user.username.lower()
    return str(user.id)


def _registry(ctx: ContextTypes.DEFAULT_TYPE) -> SessionRegistry:
    return ctx.application.bot_data["sessions"]


def _session(update: Update, ctx: ContextTypes.DEFAULT_TYPE) -> UserSession:
    chat_id = update.effective_chat.id if update.effective_chat else None
    return _registry(ctx).open(_user_key(update.effective_user), chat_id=chat_id)


def _normalize_account(text: str | None) -> str | None:
    digits = re.sub(r"[\s.-]", "", text or "")
    if not _ACCOUNT_RE.fullmatch(digits):
        return None
    return digits


def _bank_rows(banks: Sequence[str], per_row: int = 2) -> list[list[str]]:
    rows = [list(banks[i:i + per_row]) for i in range(0, len(banks), per_row)]
    rows.append([CANCEL_BTN])
    return rows


def _status_text(session: UserSession, username: str) -> str:
    engine = session.engine
    return format_status(
        username,
        engine.current_balance(),
        engine.is_active,
        engine.rate_per_hour,
    )


# /start -> открыть сессию, показать меню
async def start(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    session = _session(update, ctx)
    lines = [_status_text(session, update.effective_user.first_name or session.user_id)]
    if session.catch_up > 0:
        lines.append("")
        lines.append(f"Đồng bộ: +{fmt_amount(session.catch_up)}đ offline.")
        session.catch_up = 0
    lines.append("")
    lines.append("Nhấn «Bắt đầu treo» để node bắt đầu xử lý dữ liệu.")
    await update.message.reply_text("\n".join(lines), reply_markup=MAIN_KB)


async def set_mining(update: Update, ctx: ContextTypes.DEFAULT_TYPE, active: bool):
    session = _session(update, ctx)
    was_active = session.engine.is_active
    session.engine.set_active(active)
    if active:
        text = "Node đã chạy sẵn." if was_active else "Đã bắt đầu treo. Số dư sẽ tăng dần."
    else:
        text = "Node đang dừng." if not was_active else "Đã tạm dừng treo."
    balance = fmt_live(session.engine.current_balance())
    await update.message.reply_text(f"{text}\nSố dư: {balance}đ", reply_markup=MAIN_KB)


async def toggle(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    session = _session(update, ctx)
    return await set_mining(update, ctx, not session.engine.is_active)


async def status(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    session = _session(update, ctx)
    text = _status_text(session, update.effective_user.first_name or session.user_id)
    await update.message.reply_text(text, reply_markup=MAIN_KB)


async def history(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    session = _session(update, ctx)
    today = session.engine.clock.today()
    text = "Thu nhập 7 ngày gần đây:\n" + format_history(session.engine.current_history(), today)
    await update.message.reply_text(text, reply_markup=MAIN_KB)


async def logs(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    session = _session(update, ctx)
    text = "Xử lý dữ liệu node:\n" + format_logs(session.engine.current_logs(), limit=LOG_LINES_SHOWN)
    await update.message.reply_text(text, reply_markup=MAIN_KB)


# --- Мастер вывода средств
def _ensure_settle_notifier(session: UserSession, ctx: ContextTypes.DEFAULT_TYPE) -> None:
    if session.settle_notifier:
        return
    application = ctx.application

    def notify(request: WithdrawalRequest) -> None:
        if session.chat_id is None:
            return
        text = (
            "THÀNH CÔNG! Lệnh rút "
            f"{fmt_amount(request.amount)}đ về {request.bank} đã được tiếp nhận, "
            "tiền sẽ về trong 2-15 phút.\n"
            f"Số dư còn lại: {fmt_live(session.engine.current_balance())}đ"
        )
        application.create_task(
            application.bot.send_message(session.chat_id, text, reply_markup=MAIN_KB)
        )

    session.workflow.on_settled(notify)
    session.settle_notifier = True


async def withdraw_start(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    session = _session(update, ctx)
    session.workflow.open()
    _ensure_settle_notifier(session, ctx)
    ctx.user_data["withdraw"] = {}
    kb = ReplyKeyboardMarkup(_bank_rows(available_banks()), resize_keyboard=True)
    await update.message.reply_text(
        f"RÚT TIỀN NHANH\nCó thể rút: {fmt_live(session.workflow.available())} đ\n"
        f"Tối thiểu {fmt_amount(session.workflow.min_amount)} VNĐ.\n\n"
        "Chọn ngân hàng nhận tiền. Có thể /cancel bất cứ lúc nào.",
        reply_markup=kb,
    )
    return BANK


async def withdraw_bank(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    bank = resolve_bank(update.message.text)
    if not bank:
        kb = ReplyKeyboardMarkup(_bank_rows(available_banks()), resize_keyboard=True)
        await update.message.reply_text("Hãy chọn ngân hàng trong danh sách.", reply_markup=kb)
        return BANK
    ctx.user_data.setdefault("withdraw", {})["bank"] = bank
    await update.message.reply_text("Số tài khoản:", reply_markup=CANCEL_KB)
    return ACCOUNT


async def withdraw_account(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    account = _normalize_account(update.message.text)
    if not account:
        await update.message.reply_text("Số tài khoản gồm 6–20 chữ số. Nhập lại.")
        return ACCOUNT
    ctx.user_data.setdefault("withdraw", {})["account"] = account
    await update.message.reply_text("Họ tên người nhận (KHÔNG DẤU):")
    return PAYEE


async def withdraw_payee(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    payee = " ".join((update.message.text or "").split()).upper()
    if not payee:
        await update.message.reply_text("Họ tên không được để trống. Nhập lại.")
        return PAYEE
    ctx.user_data.setdefault("withdraw", {})["payee"] = payee
    await update.message.reply_text("Số tiền (tối thiểu 3 triệu):")
    return AMOUNT


async def withdraw_amount(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    session = _session(update, ctx)
    form = ctx.user_data.get("withdraw") or {}
    try:
        amount = parse_amount(update.message.text)
    except InvalidWithdrawal as exc:
        await update.message.reply_text(f"⚠️ {exc.message}")
        return AMOUNT

    request = WithdrawalRequest(
        bank=form.get("bank", ""),
        account_number=form.get("account", ""),
        payee_name=form.get("payee", ""),
        amount=amount,
    )
    try:
        step = session.workflow.submit(request)
    except WorkflowStateError as exc:
        logger.warning("Withdrawal submit out of order for {}: {}", session.user_id, exc)
        session.workflow.open()
        step = session.workflow.submit(request)

    if step is WithdrawalStep.FORM:
        await update.message.reply_text(f"⚠️ {session.workflow.error_message}\nNhập lại số tiền:")
        return AMOUNT

    ctx.user_data.pop("withdraw", None)
    await update.message.reply_text("ĐANG XỬ LÝ GIAO DỊCH...", reply_markup=MAIN_KB)
    return ConversationHandler.END


async def withdraw_cancel(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    ctx.user_data.pop("withdraw", None)
    await update.message.reply_text("Đã hủy rút tiền.", reply_markup=MAIN_KB)
    return ConversationHandler.END


# --- Обработчик кнопок главного меню
async def on_text(update: Update, ctx: ContextTypes.DEFAULT_TYPE):
    txt = (update.message.text or "").strip()

    if txt == START_BTN:
        return await set_mining(update, ctx, True)
    if txt == STOP_BTN:
        return await set_mining(update, ctx, False)
    if txt == STATUS_BTN:
        return await status(update, ctx)
    if txt == HISTORY_BTN:
        return await history(update, ctx)
    if txt == LOGS_BTN:
        return await logs(update, ctx)
    if txt == CANCEL_BTN:
        return await update.message.reply_text("Được rồi, không làm gì cả.", reply_markup=MAIN_KB)

    return await update.message.reply_text(
        "Không hiểu. Hãy dùng menu bên dưới.",
        reply_markup=MAIN_KB,
    )


async def on_error(update: object, ctx: ContextTypes.DEFAULT_TYPE):
    logger.error("Handler failed for update {}: {}", update, ctx.error)
    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text(
            "Có lỗi xảy ra, thử lại sau.",
            reply_markup=MAIN_KB,
        )
