from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from telegram.ext import Application

from ._loguru import logger
from .config import settings
from .formatting import fmt_live, format_history
from .sessions import SessionRegistry


def build_daily_summary(session) -> str:
    engine = session.engine
    today = engine.clock.today()
    state = "đang treo" if engine.is_active else "đang dừng"
    return (
        "Tổng kết thu nhập 7 ngày:\n"
        f"{format_history(engine.current_history(), today)}\n\n"
        f"Số dư hiện tại: {fmt_live(engine.current_balance())}đ (node {state})."
    )


def setup_jobs(app: Application, sch: AsyncIOScheduler, registry: SessionRegistry):

    @sch.scheduled_job(CronTrigger(hour=settings.DAILY_SUMMARY_HOUR, minute=0))
    async def push_daily_summary():
        for session in registry.sessions():
            if session.chat_id is None:
                continue
            try:
                await app.bot.send_message(session.chat_id, build_daily_summary(session))
            except Exception as exc:  # pragma: no cover - telegram/network failures
                logger.warning("Daily summary failed for {}: {}", session.user_id, exc)

    return push_daily_summary
