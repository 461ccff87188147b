"""Price and candle gateway over the broker transport.

Every fetch here degrades to "no data" (``None`` or an empty list) instead of
raising, so that signal code only ever has to deal with optional values. The
one exception is the account/portfolio lookup: without positions a cycle
cannot run, so those errors propagate to the runner.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from .invest_client import (
    CANDLE_INTERVAL_5_MIN,
    CANDLE_INTERVAL_DAY,
    BrokerApiError,
    InvestRestClient,
)
from .money import q_to_float

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_utc(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime, or ``None``."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("Z", "+00:00")
    # The gateway may send nanosecond fractions; datetime wants at most micros.
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_day_start(now: datetime) -> datetime:
    now = now.astimezone(timezone.utc)
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Candle:
    """Single OHLCV bar; volume is in lots, as the broker reports it."""
    time: datetime | None
    close: float | None
    high: float | None
    volume: float


@dataclass(frozen=True)
class Instrument:
    ticker: str
    instrument_id: str
    lot_size: int


@dataclass(frozen=True)
class PositionSnapshot:
    instrument_id: str
    quantity_units: int
    average_entry_price: float | None
    instrument_type: str = "share"


def _candle_from_json(raw: dict) -> Candle:
    return Candle(
        time=parse_utc(raw.get("time")),
        close=q_to_float(raw.get("close")),
        high=q_to_float(raw.get("high")),
        volume=float(raw.get("volume") or 0),
    )


class MarketDataGateway:
    def __init__(self, client: InvestRestClient) -> None:
        self.client = client

    # ── Prices and candles ───────────────────────────────────────

    def get_last_price(self, instrument_id: str) -> float | None:
        try:
            prices = self.client.get_last_prices([instrument_id])
        except BrokerApiError as exc:
            logger.warning("Last price unavailable for {}: {}", instrument_id, exc)
            return None
        for row in prices:
            if row.get("figi") in (None, instrument_id) and row.get("price"):
                return q_to_float(row["price"])
        return None

    def get_daily_candles(self, instrument_id: str, start: datetime, end: datetime) -> list[Candle]:
        return self._candles(instrument_id, start, end, CANDLE_INTERVAL_DAY)

    def get_intraday_candles(self, instrument_id: str, start: datetime, end: datetime) -> list[Candle]:
        return self._candles(instrument_id, start, end, CANDLE_INTERVAL_5_MIN)

    def daily_closes(self, instrument_id: str, lookback_days: int, now: datetime | None = None) -> list[float]:
        now = now or datetime.now(timezone.utc)
        candles = self.get_daily_candles(instrument_id, now - timedelta(days=lookback_days), now)
        return [c.close for c in candles if c.close is not None]

    def todays_high(self, instrument_id: str, now: datetime | None = None) -> float | None:
        """Highest 5-minute high since the start of the current UTC day."""
        now = now or datetime.now(timezone.utc)
        candles = self.get_intraday_candles(instrument_id, utc_day_start(now), now)
        highs = [c.high for c in candles if c.high is not None]
        return max(highs) if highs else None

    def _candles(self, instrument_id: str, start: datetime, end: datetime, interval: str) -> list[Candle]:
        try:
            rows = self.client.get_candles(instrument_id, start, end, interval)
        except BrokerApiError as exc:
            logger.warning("Candles unavailable for {} ({}): {}", instrument_id, interval, exc)
            return []
        return [_candle_from_json(row) for row in rows]

    # ── Instruments ──────────────────────────────────────────────

    def resolve_ticker(self, ticker: str, class_code: str = "TQBR") -> Instrument | None:
        """Resolve a ticker on the exchange board, then by free-text search."""
        try:
            share = self.client.share_by_ticker(ticker, class_code)
            if share.get("figi"):
                return Instrument(ticker=ticker, instrument_id=share["figi"], lot_size=int(share.get("lot") or 1))
        except BrokerApiError as exc:
            logger.debug("share_by_ticker({}, {}) failed: {}", ticker, class_code, exc)

        try:
            matches = self.client.find_instrument(ticker)
        except BrokerApiError as exc:
            logger.warning("Instrument lookup failed for {}: {}", ticker, exc)
            return None
        exact = [m for m in matches if str(m.get("ticker") or "").upper() == ticker.upper()]
        match = (exact or matches or [None])[0]
        if not match or not match.get("figi"):
            logger.warning("No instrument found for {}", ticker)
            return None

        figi = match["figi"]
        lot = match.get("lot")
        if lot is None:
            try:
                lot = self.client.get_instrument_by_figi(figi).get("lot")
            except BrokerApiError as exc:
                logger.warning("Lot size unavailable for {} ({}): {}", ticker, figi, exc)
                return None
        return Instrument(ticker=ticker, instrument_id=figi, lot_size=int(lot or 1))

    def describe_instrument(self, instrument_id: str) -> Instrument:
        try:
            raw = self.client.get_instrument_by_figi(instrument_id)
        except BrokerApiError as exc:
            logger.warning("Instrument details unavailable for {}: {}", instrument_id, exc)
            raw = {}
        lot = int(raw.get("lot") or 0)
        return Instrument(
            ticker=str(raw.get("ticker") or "UNKNOWN").upper(),
            instrument_id=instrument_id,
            lot_size=lot if lot > 0 else 1,
        )

    def resolve_index(self, candidates: list[str]) -> str | None:
        """First resolvable identifier among the index and its ETF proxies."""
        for query in candidates:
            try:
                matches = self.client.find_instrument(query)
            except BrokerApiError as exc:
                logger.debug("Index lookup for {} failed: {}", query, exc)
                continue
            for match in matches:
                if match.get("figi"):
                    logger.debug("Index {} resolved to {}", query, match["figi"])
                    return match["figi"]
        logger.warning("Could not resolve any index instrument from {}", candidates)
        return None

    # ── Account (errors propagate) ───────────────────────────────

    def first_account_id(self) -> str:
        accounts = self.client.get_accounts()
        if not accounts or not accounts[0].get("id"):
            raise BrokerApiError("No broker accounts available")
        return str(accounts[0]["id"])

    def list_positions(self, account_id: str) -> list[PositionSnapshot]:
        portfolio = self.client.get_portfolio(account_id)
        positions: list[PositionSnapshot] = []
        for raw in portfolio.get("positions") or []:
            if not isinstance(raw, dict) or not raw.get("figi"):
                continue
            kind = str(raw.get("instrumentType") or "share")
            if kind == "currency":
                continue
            quantity = q_to_float(raw.get("quantity")) or 0.0
            positions.append(
                PositionSnapshot(
                    instrument_id=raw["figi"],
                    quantity_units=int(quantity),
                    average_entry_price=q_to_float(raw.get("averagePositionPrice")),
                    instrument_type=kind,
                )
            )
        return positions
