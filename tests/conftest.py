from __future__ import annotations

from datetime import datetime, timezone

import pytest

from moex_trader.execution import OrderOutcome, OutcomeCategory, OrderRequest
from moex_trader.market_data import Candle, Instrument, PositionSnapshot
from moex_trader.strategy_config import StrategyConfig

NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


def closes_to_candles(closes: list[float], volumes: list[float] | None = None) -> list[Candle]:
    volumes = volumes or [1000.0] * len(closes)
    return [Candle(time=None, close=c, high=c, volume=v) for c, v in zip(closes, volumes)]


class FakeGateway:
    """In-memory stand-in for MarketDataGateway."""

    def __init__(
        self,
        instruments: dict[str, Instrument] | None = None,
        prices: dict[str, float] | None = None,
        daily: dict[str, list[Candle]] | None = None,
        highs: dict[str, float] | None = None,
        positions: list[PositionSnapshot] | None = None,
        index_id: str | None = "IDX",
    ) -> None:
        self.instruments = instruments or {}
        self.prices = prices or {}
        self.daily = daily or {}
        self.highs = highs or {}
        self.positions = positions or []
        self.index_id = index_id
        self.resolve_calls: list[str] = []
        self.candle_calls: list[str] = []
        self.positions_error: Exception | None = None

    def resolve_ticker(self, ticker: str, class_code: str = "TQBR") -> Instrument | None:
        self.resolve_calls.append(ticker)
        return self.instruments.get(ticker)

    def describe_instrument(self, instrument_id: str) -> Instrument:
        for instrument in self.instruments.values():
            if instrument.instrument_id == instrument_id:
                return instrument
        return Instrument(ticker="UNKNOWN", instrument_id=instrument_id, lot_size=1)

    def get_last_price(self, instrument_id: str) -> float | None:
        return self.prices.get(instrument_id)

    def get_daily_candles(self, instrument_id, start, end) -> list[Candle]:
        self.candle_calls.append(instrument_id)
        return list(self.daily.get(instrument_id, []))

    def daily_closes(self, instrument_id, lookback_days, now=None) -> list[float]:
        return [c.close for c in self.get_daily_candles(instrument_id, None, now) if c.close is not None]

    def todays_high(self, instrument_id, now=None) -> float | None:
        return self.highs.get(instrument_id)

    def resolve_index(self, candidates: list[str]) -> str | None:
        return self.index_id

    def first_account_id(self) -> str:
        return "ACC-1"

    def list_positions(self, account_id: str) -> list[PositionSnapshot]:
        if self.positions_error is not None:
            raise self.positions_error
        return list(self.positions)


class FakeExecutor:
    def __init__(self, categories: dict[str, OutcomeCategory] | None = None, default=OutcomeCategory.FILLED) -> None:
        self.categories = categories or {}
        self.default = default
        self.requests: list[OrderRequest] = []

    def place(self, request: OrderRequest) -> OrderOutcome:
        self.requests.append(request)
        category = self.categories.get(request.ticker, self.default)
        return OrderOutcome(
            category=category,
            client_order_id=f"coid-{len(self.requests)}",
            response={"orderId": f"ord-{len(self.requests)}"},
        )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config() -> StrategyConfig:
    return StrategyConfig(
        tickers=["SBER", "ROSN", "VTBR"],
        max_lot_rub=1000.0,
        max_lot_count=100,
        lots_per_order=1,
        dip_pct=0.01,
        sell_profit_multiple=1.10,
        force_exit_multiple=1.30,
        pending_cooldown_minutes=10,
    )
