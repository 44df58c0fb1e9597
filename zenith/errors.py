from __future__ import annotations


class StorageError(RuntimeError):
    """Raised when the key-value store cannot persist a record."""


class MalformedPersistedState(ValueError):
    """Raised when a stored record cannot be parsed back into engine state."""

    def __init__(self, key: str, raw: object, reason: str):
        super().__init__(f"{key}: {reason} (raw={raw!r})")
        self.key = key
        self.raw = raw
        self.reason = reason


class WorkflowStateError(RuntimeError):
    """Raised when a withdrawal action does not fit the workflow's current step."""


class WithdrawalError(ValueError):
    """Base class for validation failures shown on the withdrawal form."""

    code = "invalid"
    default_message = "Yêu cầu rút tiền không hợp lệ."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InsufficientFunds(WithdrawalError):
    code = "insufficient_funds"
    default_message = "Số dư không đủ!"


class BelowMinimum(WithdrawalError):
    code = "below_minimum"
    default_message = "Tối thiểu 3.000.000 VNĐ."


class InvalidWithdrawal(WithdrawalError):
    code = "invalid"
