from __future__ import annotations

from pathlib import Path
from threading import Lock

import yaml

from ._loguru import logger
from .config import settings

DEFAULT_BANKS: tuple[str, ...] = (
    "Vietcombank (VCB)",
    "Agribank",
    "BIDV",
    "VietinBank",
    "MB Bank",
    "Techcombank",
    "ACB",
    "VPBank",
    "TPBank",
    "Sacombank",
    "CAKE",
    "TIMO",
)

_LOCK = Lock()
_CATALOG_CACHE: tuple[Path, float, tuple[str, ...]] | None = None


def _normalize_name(value: object) -> str | None:
    if value is None:
        return None
    name = " ".join(str(value).split())
    return name or None


def load_banks(path: str | Path) -> tuple[str, ...]:
    """Load the payout bank list from YAML.

    Accepts either a plain list or a mapping with a ``banks`` list. Returns an
    empty tuple when the file is missing or holds nothing usable.
    """

    p = Path(path)
    if not p.exists():
        return ()

    with p.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or []

    if isinstance(data, dict):
        data = data.get("banks") or []
    if not isinstance(data, (list, tuple)):
        return ()

    seen: list[str] = []
    for item in data:
        name = _normalize_name(item)
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def available_banks() -> tuple[str, ...]:
    global _CATALOG_CACHE
    path = Path(settings.BANKS_PATH)
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        with _LOCK:
            if _CATALOG_CACHE is None or _CATALOG_CACHE[0] != path or _CATALOG_CACHE[1] != -1.0:
                logger.info("Bank catalogue {} not found; using built-in list", path)
            _CATALOG_CACHE = (path, -1.0, DEFAULT_BANKS)
        return DEFAULT_BANKS

    with _LOCK:
        if _CATALOG_CACHE is None or _CATALOG_CACHE[0] != path or _CATALOG_CACHE[1] != mtime:
            banks = load_banks(path)
            if not banks:
                logger.warning("Bank catalogue {} is empty; using built-in list", path)
                banks = DEFAULT_BANKS
            _CATALOG_CACHE = (path, mtime, banks)
        return _CATALOG_CACHE[2]


def resolve_bank(name: str | None) -> str | None:
    """Return the catalogue spelling of ``name`` (case-insensitive), if listed."""

    normalized = _normalize_name(name)
    if not normalized:
        return None
    lowered = normalized.lower()
    return next((bank for bank in available_banks() if bank.lower() == lowered), None)


def _reset_cache_for_tests() -> None:
    global _CATALOG_CACHE
    with _LOCK:
        _CATALOG_CACHE = None
