from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import MalformedPersistedState, StorageError
from .models import KeyValue


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


def balance_key(user_id: str) -> str:
    return f"balance:{user_id}"


def status_key(user_id: str) -> str:
    return f"status:{user_id}"


def history_key(user_id: str) -> str:
    return f"history:{user_id}"


def last_update_key(user_id: str) -> str:
    return f"last_update:{user_id}"


class InMemoryStore:
    """Dict-backed store; state lives only as long as the instance."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class SqlKeyValueStore:
    """Durable store on top of the ``kv_store`` table.

    Writes overwrite by key, so repeating one is harmless. Transient
    ``OperationalError`` (e.g. a locked SQLite file) is retried a few times
    before surfacing as :class:`StorageError`.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        if session_factory is None:
            from .db import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as s:
                row = s.get(KeyValue, key)
                return row.value if row else None
        except SQLAlchemyError as exc:
            raise StorageError(f"read failed for {key}") from exc

    def set(self, key: str, value: str) -> None:
        try:
            self._write(key, value)
        except SQLAlchemyError as exc:
            raise StorageError(f"write failed for {key}") from exc

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, max=0.5),
        reraise=True,
    )
    def _write(self, key: str, value: str) -> None:
        with self._session_factory() as s:
            row = s.get(KeyValue, key) or KeyValue(key=key, value=value)
            row.value = value
            s.add(row)
            s.commit()


# --- record parsers; loaders catch MalformedPersistedState and fall back to defaults

def parse_balance(key: str, raw: str) -> Decimal:
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, AttributeError) as exc:
        raise MalformedPersistedState(key, raw, "not a decimal") from exc
    if not value.is_finite() or value < 0:
        raise MalformedPersistedState(key, raw, "balance must be a finite non-negative number")
    return value


def parse_status(key: str, raw: str) -> bool:
    normalized = (raw or "").strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise MalformedPersistedState(key, raw, "expected 'true' or 'false'")


def parse_timestamp_ms(key: str, raw: str) -> int:
    try:
        value = int(raw.strip())
    except (ValueError, AttributeError) as exc:
        raise MalformedPersistedState(key, raw, "not an integer timestamp") from exc
    if value < 0:
        raise MalformedPersistedState(key, raw, "negative timestamp")
    return value


def format_decimal(value: Decimal) -> str:
    return format(value, "f")
