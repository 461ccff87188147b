"""Pure decision rules over prices and candles.

Nothing in this module talks to the broker. Missing inputs arrive as ``None``
and always resolve to the conservative answer: no trend, no dip, no momentum,
no exit.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from .market_data import Candle, PositionSnapshot


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    SIDE = "side"


def trend(closes: Sequence[float]) -> Trend:
    """Classify the last three daily steps of an index.

    Four closes ``a, b, c, d`` are needed; strictly rising is ``UP``, strictly
    falling is ``DOWN``, anything else (ties included) is ``SIDE``.
    """
    if len(closes) < 4:
        return Trend.SIDE
    a, b, c, d = closes[-4:]
    if a < b < c < d:
        return Trend.UP
    if a > b > c > d:
        return Trend.DOWN
    return Trend.SIDE


def momentum_up(closes: Sequence[float]) -> bool:
    """Three consecutive strictly higher daily closes."""
    return trend(closes) is Trend.UP


def intraday_dip(current_price: float | None, todays_high: float | None, dip_pct: float) -> bool:
    if current_price is None or todays_high is None:
        return False
    return current_price <= todays_high * (1.0 - dip_pct)


def volume_window_days(lookback: int) -> int:
    """Calendar days to request so that ``lookback`` trading sessions fit."""
    return max(lookback * 3, lookback + 10)


def relative_volume(today_volume: float, history_volumes: Sequence[float]) -> float | None:
    if not history_volumes:
        return None
    mean = sum(history_volumes) / len(history_volumes)
    if mean <= 0:
        return None
    return today_volume / mean


def relative_volume_from_candles(candles: Sequence[Candle], lookback: int) -> float | None:
    """Today's volume (last candle) against the mean of the ``lookback`` before it."""
    if lookback < 1 or len(candles) < lookback + 1:
        return None
    history = [c.volume for c in candles[-(lookback + 1):-1]]
    return relative_volume(candles[-1].volume, history)


def profit_multiple(avg_entry: float | None, current_price: float | None) -> float | None:
    if avg_entry is None or current_price is None or avg_entry <= 0:
        return None
    return current_price / avg_entry


def volume_spike(rel_volume: float | None, min_relative_volume: float | None) -> bool:
    if min_relative_volume is None:
        return True
    if rel_volume is None:
        return False
    return rel_volume >= min_relative_volume


def should_buy(
    current_price: float | None,
    todays_high: float | None,
    dip_pct: float,
    rel_volume: float | None = None,
    min_relative_volume: float | None = None,
) -> bool:
    return intraday_dip(current_price, todays_high, dip_pct) and volume_spike(rel_volume, min_relative_volume)


def should_sell(position: PositionSnapshot, current_price: float | None, sell_multiple: float = 1.10) -> bool:
    if position.quantity_units <= 0:
        return False
    multiple = profit_multiple(position.average_entry_price, current_price)
    return multiple is not None and multiple >= sell_multiple


def should_force_exit(position: PositionSnapshot, current_price: float | None, threshold: float) -> bool:
    if position.quantity_units <= 0:
        return False
    multiple = profit_multiple(position.average_entry_price, current_price)
    return multiple is not None and multiple >= threshold
