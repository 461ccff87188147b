from dataclasses import replace

from moex_trader.market_data import Instrument
from moex_trader.universe import UniverseBuilder

from .conftest import FakeGateway, closes_to_candles


def _gateway():
    return FakeGateway(
        instruments={
            "SBER": Instrument("SBER", "F-SBER", 1),
            "ROSN": Instrument("ROSN", "F-ROSN", 1),
            "VTBR": Instrument("VTBR", "F-VTBR", 10),
        },
        prices={"F-SBER": 300.0, "F-ROSN": 550.0, "F-VTBR": 90.0},
    )


def test_builds_priced_candidates_in_config_order(config, now):
    universe = UniverseBuilder(_gateway(), config).build(now)
    assert [c.ticker for c in universe] == ["SBER", "ROSN", "VTBR"]
    vtbr = universe[2]
    assert vtbr.price_per_lot == 900.0
    assert vtbr.relative_volume is None


def test_excludes_order_cost_over_cap(config, now):
    config = replace(config, lots_per_order=2)
    universe = UniverseBuilder(_gateway(), config).build(now)
    # SBER 600, ROSN 1100, VTBR 1800 against a 1000 RUB cap.
    assert [c.ticker for c in universe] == ["SBER"]


def test_excludes_lot_size_over_cap(config, now):
    config = replace(config, max_lot_count=5)
    universe = UniverseBuilder(_gateway(), config).build(now)
    assert "VTBR" not in [c.ticker for c in universe]


def test_unresolved_or_unpriced_tickers_are_dropped(config, now):
    gateway = _gateway()
    del gateway.instruments["SBER"]
    del gateway.prices["F-ROSN"]
    universe = UniverseBuilder(gateway, config).build(now)
    assert [c.ticker for c in universe] == ["VTBR"]


def test_relative_volume_ranking(config, now):
    config = replace(config, volume_compare="relative", volume_lookback_days=2)
    gateway = _gateway()
    gateway.daily = {
        "F-SBER": closes_to_candles([1, 1, 1], volumes=[100, 100, 150]),
        "F-ROSN": closes_to_candles([1, 1, 1], volumes=[100, 100, 400]),
        "F-VTBR": closes_to_candles([1, 1], volumes=[100, 100]),
    }
    universe = UniverseBuilder(gateway, config).build(now)
    assert [c.ticker for c in universe] == ["ROSN", "SBER", "VTBR"]
    assert universe[0].relative_volume == 4.0
    assert universe[2].relative_volume is None


def test_turnover_ranking(config, now):
    config = replace(config, volume_compare="turnover", volume_lookback_days=1)
    gateway = _gateway()
    gateway.daily = {
        "F-SBER": closes_to_candles([1, 1], volumes=[10, 10]),
        "F-ROSN": closes_to_candles([1, 1], volumes=[10, 2]),
        "F-VTBR": closes_to_candles([1, 1], volumes=[10, 5]),
    }
    universe = UniverseBuilder(gateway, config).build(now)
    # turnover = lots * lot size * price: SBER 3000, ROSN 1100, VTBR 4500
    assert [c.ticker for c in universe] == ["VTBR", "SBER", "ROSN"]
    assert universe[0].daily_turnover == 4500.0


def test_stable_for_identical_inputs(config, now):
    builder = UniverseBuilder(_gateway(), config)
    first = [(c.ticker, c.last_price) for c in builder.build(now)]
    second = [(c.ticker, c.last_price) for c in builder.build(now)]
    assert first == second
