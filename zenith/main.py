from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram.ext import (
    Application,
    CommandHandler,
    ConversationHandler,
    MessageHandler,
    filters,
)

from ._loguru import configure_logging, logger
from .clock import SystemClock
from .config import settings
from .db import Base, engine
from .handlers import (
    ACCOUNT,
    AMOUNT,
    BANK,
    CANCEL_BTN,
    PAYEE,
    WITHDRAW_BTN,
    history,
    logs,
    on_error,
    on_text,
    start,
    status,
    toggle,
    withdraw_account,
    withdraw_amount,
    withdraw_bank,
    withdraw_cancel,
    withdraw_payee,
    withdraw_start,
)
from .jobs import setup_jobs
from .sessions import SessionRegistry
from .storage import SqlKeyValueStore
from .timers import SchedulerTimer


def build_app() -> Application:
    if not settings.BOT_TOKEN:
        raise SystemExit("BOT_TOKEN is not set (see .env)")

    sch = AsyncIOScheduler(timezone=settings.TZ)
    registry = SessionRegistry(
        SqlKeyValueStore(),
        SystemClock(settings.TZ),
        SchedulerTimer(sch),
        rate_per_hour=settings.EARNING_RATE_PER_HOUR,
    )

    async def on_startup(app: Application) -> None:
        sch.start()
        logger.info("Scheduler started ({})", settings.TZ)

    async def on_shutdown(app: Application) -> None:
        registry.close_all()
        sch.shutdown(wait=False)
        logger.info("All sessions closed")

    app = (
        Application.builder()
        .token(settings.BOT_TOKEN)
        .post_init(on_startup)
        .post_shutdown(on_shutdown)
        .build()
    )
    app.bot_data["sessions"] = registry

    app.add_handler(CommandHandler("start", start))

    text_only = filters.TEXT & ~filters.COMMAND
    cancel_btn = filters.Regex(f"^{CANCEL_BTN}$")
    app.add_handler(ConversationHandler(
        entry_points=[
            CommandHandler("withdraw", withdraw_start),
            MessageHandler(filters.Regex(f"^{WITHDRAW_BTN}$"), withdraw_start),
        ],
        states={
            BANK: [MessageHandler(text_only & ~cancel_btn, withdraw_bank)],
            ACCOUNT: [MessageHandler(text_only & ~cancel_btn, withdraw_account)],
            PAYEE: [MessageHandler(text_only & ~cancel_btn, withdraw_payee)],
            AMOUNT: [MessageHandler(text_only & ~cancel_btn, withdraw_amount)],
        },
        fallbacks=[
            CommandHandler("cancel", withdraw_cancel),
            MessageHandler(cancel_btn, withdraw_cancel),
        ],
    ))

    app.add_handler(CommandHandler("toggle", toggle))
    app.add_handler(CommandHandler("status", status))
    app.add_handler(CommandHandler("history", history))
    app.add_handler(CommandHandler("logs", logs))

    # Кнопки главного меню
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text))
    app.add_error_handler(on_error)

    setup_jobs(app, sch, registry)
    return app

def main():
    configure_logging(settings.LOG_LEVEL)
    Base.metadata.create_all(bind=engine)
    app = build_app()
    app.run_polling()

if __name__ == "__main__":
    main()
