from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Optional

from ._loguru import logger
from .config import settings
from .engine import AccrualEngine
from .errors import (
    BelowMinimum,
    InsufficientFunds,
    InvalidWithdrawal,
    WithdrawalError,
    WorkflowStateError,
)
from .formatting import fmt_amount
from .timers import Timer, TimerHandle


class WithdrawalStep(str, Enum):
    FORM = "form"
    PROCESSING = "processing"
    SUCCESS = "success"


@dataclass(slots=True)
class WithdrawalRequest:
    bank: str
    account_number: str
    payee_name: str
    amount: Decimal
    method: str = "bank"

    def __post_init__(self) -> None:
        self.account_number = (self.account_number or "").strip()
        self.payee_name = (self.payee_name or "").strip().upper()
        self.amount = Decimal(str(self.amount))


@dataclass(slots=True)
class _Settlement:
    request: WithdrawalRequest
    handle: TimerHandle
    generation: int


SettledListener = Callable[[WithdrawalRequest], None]

_AMOUNT_CLEAN_RE = re.compile(r"[\s_đ₫]|vnđ|vnd", re.IGNORECASE)


def parse_amount(text: str) -> Decimal:
    """Parse a user-typed amount such as ``3.000.000``, ``3 000 000`` or ``1500,5``."""

    cleaned = _AMOUNT_CLEAN_RE.sub("", text or "")
    if not cleaned:
        raise InvalidWithdrawal("Vui lòng nhập số tiền.")
    if "," in cleaned and "." in cleaned:
        # vi-VN: dots group thousands, the comma is the decimal mark
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif "," in cleaned:
        head, _, tail = cleaned.rpartition(",")
        cleaned = head.replace(",", "") + ("" if len(tail) == 3 else ".") + tail
    elif cleaned.count(".") > 1 or re.fullmatch(r"\d{1,3}(\.\d{3})+", cleaned):
        cleaned = cleaned.replace(".", "")
    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise InvalidWithdrawal("Số tiền không hợp lệ.") from exc
    if not value.is_finite():
        raise InvalidWithdrawal("Số tiền không hợp lệ.")
    return value


class WithdrawalWorkflow:
    """Form -> Processing -> Success withdrawal flow against an engine's balance.

    Once a request passes validation its settlement is locked in: the debit
    happens when the settlement delay elapses, even if the form was reopened
    meanwhile. Amounts locked that way are not available to a new request.
    """

    def __init__(
        self,
        engine: AccrualEngine,
        timer: Timer,
        *,
        min_amount: Optional[int | Decimal] = None,
        settlement_delay_ms: Optional[int] = None,
    ):
        self._engine = engine
        self._timer = timer
        self.min_amount = Decimal(str(min_amount if min_amount is not None else settings.MIN_WITHDRAWAL))
        self.settlement_delay_ms = (
            settlement_delay_ms if settlement_delay_ms is not None else settings.SETTLEMENT_DELAY_MS
        )
        self.step = WithdrawalStep.FORM
        self.error: Optional[WithdrawalError] = None
        self.request: Optional[WithdrawalRequest] = None
        self._generation = 0
        self._pending: list[_Settlement] = []
        self._listeners: list[SettledListener] = []

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def locked_amount(self) -> Decimal:
        return sum((item.request.amount for item in self._pending), Decimal("0"))

    def available(self) -> Decimal:
        return self._engine.current_balance() - self.locked_amount

    def on_settled(self, listener: SettledListener) -> None:
        self._listeners.append(listener)

    def open(self) -> WithdrawalStep:
        self._generation += 1
        self.step = WithdrawalStep.FORM
        self.error = None
        self.request = None
        return self.step

    def validate(self, request: WithdrawalRequest) -> None:
        if request.amount > self.available():
            raise InsufficientFunds()
        if request.amount < self.min_amount:
            raise BelowMinimum(f"Tối thiểu {fmt_amount(self.min_amount)} VNĐ.")
        if not request.account_number:
            raise InvalidWithdrawal("Vui lòng nhập số tài khoản.")
        if not request.payee_name:
            raise InvalidWithdrawal("Vui lòng nhập họ tên người nhận.")

    def submit(self, request: WithdrawalRequest) -> WithdrawalStep:
        if self.step is not WithdrawalStep.FORM:
            raise WorkflowStateError(f"cannot submit while {self.step.value}")
        self.error = None
        try:
            self.validate(request)
        except WithdrawalError as exc:
            self.error = exc
            logger.info("Withdrawal rejected for {}: {}", self._engine.user_id, exc.code)
            return self.step

        self.request = request
        self.step = WithdrawalStep.PROCESSING
        generation = self._generation
        holder: dict[str, _Settlement] = {}
        handle = self._timer.call_later(self.settlement_delay_ms, lambda: self._settle(holder["item"]))
        holder["item"] = _Settlement(request=request, handle=handle, generation=generation)
        self._pending.append(holder["item"])
        logger.info(
            "Withdrawal of {} for {} to {} accepted; settling in {} ms",
            request.amount,
            self._engine.user_id,
            request.bank,
            self.settlement_delay_ms,
        )
        return self.step

    def _settle(self, item: _Settlement) -> None:
        self._pending.remove(item)
        current = item.generation == self._generation
        try:
            self._engine.debit(item.request.amount)
        except InsufficientFunds as exc:
            logger.warning(
                "Settlement of {} for {} failed: {}", item.request.amount, self._engine.user_id, exc
            )
            if current:
                self.step = WithdrawalStep.FORM
                self.error = exc
            return

        if current:
            self.step = WithdrawalStep.SUCCESS
        self._engine.add_log(
            f"Withdrawal of {fmt_amount(item.request.amount)}đ to {item.request.bank} completed.",
            level="success",
        )
        for listener in list(self._listeners):
            try:
                listener(item.request)
            except Exception as exc:  # pragma: no cover - presentation callbacks
                logger.error("Withdrawal listener failed for {}: {}", self._engine.user_id, exc)
