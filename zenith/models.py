from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, Text
from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyValue(Base):
    __tablename__ = "kv_store"
    key = Column(String(255), primary_key=True)   # "balance:alice", "history:alice", ...
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
