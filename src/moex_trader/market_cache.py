"""Readers for the locally cached instrument snapshots.

Two JSON documents are refreshed out-of-band by other jobs:

* the broad market cache ``{updated_at, instruments: [{ticker, figi, lot, price}]}``
* the index membership cache ``{updated_at, index, instruments: [{secid, ...}]}``

Only the ``instruments`` sequence is consumed. A missing, stale or corrupt
cache is simply empty input.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

TICKER_KEYS = ("ticker", "secid", "seccode", "SECID", "seccode_short")
FIGI_KEYS = ("figi", "instrument_id", "FIGI")
LOT_KEYS = ("lot", "LOT", "lotsize", "LOTSIZE")


@dataclass(frozen=True)
class CacheEntry:
    ticker: str
    instrument_id: str | None = None
    lot: int | None = None
    price: float | None = None


def _first(row: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def _to_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def load_cache_normalized(path: Path) -> list[CacheEntry]:
    if not path.exists():
        logger.debug("Cache {} does not exist", path)
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Cache {} unreadable: {}", path, exc)
        return []

    if isinstance(raw, dict):
        rows = raw.get("instruments") or raw.get("instruments_list") or []
    elif isinstance(raw, list):
        rows = raw
    else:
        rows = []

    entries: list[CacheEntry] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        row = {str(k): v for k, v in row.items()}
        ticker = _first(row, TICKER_KEYS)
        if not ticker:
            continue
        figi = _first(row, FIGI_KEYS)
        entries.append(
            CacheEntry(
                ticker=str(ticker).strip().upper(),
                instrument_id=str(figi) if figi else None,
                lot=_to_int(_first(row, LOT_KEYS)),
                price=_to_float(row.get("price")),
            )
        )
    return entries


def intersect_candidates(market: list[CacheEntry], index: list[CacheEntry]) -> list[CacheEntry]:
    """Market entries whose ticker is an index member, in market order, deduplicated."""
    index_tickers = {entry.ticker for entry in index}
    seen: set[str] = set()
    out: list[CacheEntry] = []
    for entry in market:
        if entry.ticker in index_tickers and entry.ticker not in seen:
            seen.add(entry.ticker)
            out.append(entry)
    return out
