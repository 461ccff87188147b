"""Configured-ticker universe: resolve, price, cap and rank."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from loguru import logger

from .market_data import Instrument, MarketDataGateway
from .signals import relative_volume_from_candles, volume_window_days
from .strategy_config import StrategyConfig


@dataclass
class PricedCandidate:
    instrument: Instrument
    last_price: float
    relative_volume: float | None = None
    daily_turnover: float | None = None

    @property
    def ticker(self) -> str:
        return self.instrument.ticker

    @property
    def instrument_id(self) -> str:
        return self.instrument.instrument_id

    @property
    def lot_size(self) -> int:
        return self.instrument.lot_size

    @property
    def price_per_lot(self) -> float:
        return self.last_price * self.instrument.lot_size


class UniverseBuilder:
    def __init__(self, gateway: MarketDataGateway, config: StrategyConfig) -> None:
        self.gateway = gateway
        self.config = config

    def build(self, now: datetime | None = None) -> list[PricedCandidate]:
        now = now or datetime.now(timezone.utc)
        universe: list[PricedCandidate] = []
        for ticker in self.config.tickers:
            candidate = self._price_ticker(ticker, now)
            if candidate is not None:
                universe.append(candidate)
        ranked = self.rank(universe)
        logger.info(
            "Universe: {} of {} tickers priced under {:.0f} RUB per order",
            len(ranked),
            len(self.config.tickers),
            self.config.max_lot_rub,
        )
        return ranked

    def _price_ticker(self, ticker: str, now: datetime) -> PricedCandidate | None:
        instrument = self.gateway.resolve_ticker(ticker, self.config.class_code)
        if instrument is None:
            logger.warning("Universe: {} excluded, instrument not resolved", ticker)
            return None
        if instrument.lot_size > self.config.max_lot_count:
            logger.debug("Universe: {} excluded, lot {} > {}", ticker, instrument.lot_size, self.config.max_lot_count)
            return None

        price = self.gateway.get_last_price(instrument.instrument_id)
        if price is None:
            logger.debug("Universe: {} excluded, no last price", ticker)
            return None

        candidate = PricedCandidate(instrument=instrument, last_price=price)
        order_cost = candidate.price_per_lot * self.config.lots_per_order
        if order_cost > self.config.max_lot_rub:
            logger.debug("Universe: {} excluded, order cost {:.2f} > {:.2f}", ticker, order_cost, self.config.max_lot_rub)
            return None

        if self.config.volume_enabled:
            self._annotate_volume(candidate, now)
        return candidate

    def _annotate_volume(self, candidate: PricedCandidate, now: datetime) -> None:
        lookback = self.config.volume_lookback_days
        start = now - timedelta(days=volume_window_days(lookback))
        candles = self.gateway.get_daily_candles(candidate.instrument_id, start, now)
        candidate.relative_volume = relative_volume_from_candles(candles, lookback)
        if candles:
            # Candle volume is in lots.
            candidate.daily_turnover = candles[-1].volume * candidate.lot_size * candidate.last_price

    def rank(self, universe: list[PricedCandidate]) -> list[PricedCandidate]:
        mode = self.config.volume_compare
        if mode == "relative":
            return sorted(universe, key=lambda c: c.relative_volume if c.relative_volume is not None else -1.0, reverse=True)
        if mode == "turnover":
            return sorted(universe, key=lambda c: c.daily_turnover if c.daily_turnover is not None else -1.0, reverse=True)
        return list(universe)
