from __future__ import annotations

import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from ._loguru import logger
from .clock import Clock
from .config import settings
from .engine import AccrualEngine
from .storage import KeyValueStore
from .timers import Timer
from .withdrawal import WithdrawalWorkflow


@dataclass(slots=True)
class UserSession:
    user_id: str
    engine: AccrualEngine
    workflow: WithdrawalWorkflow
    chat_id: Optional[int] = None
    catch_up: Decimal = Decimal("0")
    settle_notifier: bool = False


class SessionRegistry:
    """One live engine + withdrawal workflow per user for the running process."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        timer: Timer,
        rate_per_hour: Optional[float] = None,
        rng_factory: Callable[[], random.Random] = random.Random,
    ):
        self._store = store
        self._clock = clock
        self._timer = timer
        self.rate_per_hour = rate_per_hour if rate_per_hour is not None else settings.EARNING_RATE_PER_HOUR
        self._rng_factory = rng_factory
        self._sessions: dict[str, UserSession] = {}

    def get(self, user_id: str) -> Optional[UserSession]:
        return self._sessions.get(user_id)

    def open(self, user_id: str, chat_id: Optional[int] = None) -> UserSession:
        session = self._sessions.get(user_id)
        if session is not None:
            if chat_id is not None:
                session.chat_id = chat_id
            return session

        engine = AccrualEngine(self._store, self._clock, self._timer, rng=self._rng_factory())
        credited = engine.initialize(user_id, self.rate_per_hour)
        session = UserSession(
            user_id=user_id,
            engine=engine,
            workflow=WithdrawalWorkflow(engine, self._timer),
            chat_id=chat_id,
            catch_up=credited,
        )
        self._sessions[user_id] = session
        logger.info("Session opened for {}", user_id)
        return session

    def sessions(self) -> list[UserSession]:
        return list(self._sessions.values())

    def close(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        if session is not None:
            session.engine.close()

    def close_all(self) -> None:
        for user_id in list(self._sessions):
            self.close(user_id)
