from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .settings import settings

VOLUME_COMPARE_MODES = ("none", "relative", "turnover")


def _split_csv(raw: str) -> list[str]:
    return [item.strip().upper() for item in raw.split(",") if item.strip()]


@dataclass
class StrategyConfig:
    tickers: list[str]
    class_code: str = "TQBR"
    index_tickers: list[str] = field(default_factory=lambda: ["IMOEX", "TMOS", "SBMX"])
    max_lot_rub: float = 1000.0
    max_lot_count: int = 1000
    lots_per_order: int = 1
    dip_pct: float = 0.01
    sell_profit_multiple: float = 1.10
    force_exit_multiple: float = 1.30
    min_relative_volume: float | None = None
    volume_compare: str = "none"
    volume_lookback_days: int = 20
    pending_cooldown_minutes: int = 10
    trend_lookback_days: int = 10
    momentum_lookback_days: int = 10

    @property
    def volume_enabled(self) -> bool:
        return self.min_relative_volume is not None or self.volume_compare != "none"


def load_strategy_config(file_path: Path | None = None) -> StrategyConfig:
    file_path = file_path or settings.strategy_config_path
    defaults = StrategyConfig(
        tickers=_split_csv(settings.tickers_csv),
        class_code=settings.class_code,
        index_tickers=_split_csv(settings.index_tickers_csv),
        max_lot_rub=settings.max_lot_rub,
        max_lot_count=settings.max_lot_count,
        lots_per_order=settings.lots_per_order,
        dip_pct=settings.dip_pct,
        sell_profit_multiple=settings.sell_profit_multiple,
        force_exit_multiple=settings.force_exit_multiple,
        min_relative_volume=settings.min_relative_volume,
        volume_compare=settings.volume_compare,
        volume_lookback_days=settings.volume_lookback_days,
        pending_cooldown_minutes=settings.buy_pending_cooldown_min,
    )
    if not file_path.exists():
        return defaults

    raw = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
    universe = raw.get("universe", {})
    signals = raw.get("signals", {})
    limits = raw.get("limits", {})
    volume = raw.get("volume", {})

    volume_compare = str(volume.get("compare", defaults.volume_compare)).lower()
    if volume_compare not in VOLUME_COMPARE_MODES:
        raise ValueError(f"Unknown volume.compare mode {volume_compare!r} in {file_path}")
    min_rel = volume.get("min_relative", defaults.min_relative_volume)

    return StrategyConfig(
        tickers=[str(t).upper() for t in universe.get("tickers", defaults.tickers)],
        class_code=str(universe.get("class_code", defaults.class_code)),
        index_tickers=[str(t).upper() for t in universe.get("index_tickers", defaults.index_tickers)],
        max_lot_rub=float(limits.get("max_lot_rub", defaults.max_lot_rub)),
        max_lot_count=int(limits.get("max_lot_count", defaults.max_lot_count)),
        lots_per_order=int(limits.get("lots_per_order", defaults.lots_per_order)),
        dip_pct=float(signals.get("dip_pct", defaults.dip_pct)),
        sell_profit_multiple=float(signals.get("sell_profit_multiple", defaults.sell_profit_multiple)),
        force_exit_multiple=float(signals.get("force_exit_multiple", defaults.force_exit_multiple)),
        min_relative_volume=float(min_rel) if min_rel is not None else None,
        volume_compare=volume_compare,
        volume_lookback_days=int(volume.get("lookback_days", defaults.volume_lookback_days)),
        pending_cooldown_minutes=int(limits.get("pending_cooldown_minutes", defaults.pending_cooldown_minutes)),
        trend_lookback_days=int(signals.get("trend_lookback_days", defaults.trend_lookback_days)),
        momentum_lookback_days=int(signals.get("momentum_lookback_days", defaults.momentum_lookback_days)),
    )
