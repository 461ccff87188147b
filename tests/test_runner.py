import json
from datetime import timedelta

import pytest

from moex_trader.execution import OutcomeCategory
from moex_trader.invest_client import BrokerApiError
from moex_trader.market_data import Instrument, PositionSnapshot
from moex_trader.runner import StrategyRunner
from moex_trader.signals import Trend
from moex_trader.state_store import StateStore

from .conftest import FakeExecutor, FakeGateway, closes_to_candles

SBER = Instrument("SBER", "F-SBER", 10)
ROSN = Instrument("ROSN", "F-ROSN", 1)
VTBR = Instrument("VTBR", "F-VTBR", 1)
GAZP = Instrument("GAZP", "F-GAZP", 10)

UP = closes_to_candles([100, 101, 102, 103])
DOWN = closes_to_candles([103, 102, 101, 100])
SIDE = closes_to_candles([100, 101, 101, 102])


class RecordingScanner:
    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def buy_one(self, store, account_id, now=None):
        self.calls.append(account_id)
        return self.result


def make_gateway(index_candles, positions=None, highs=None):
    return FakeGateway(
        instruments={"SBER": SBER, "ROSN": ROSN, "VTBR": VTBR, "GAZP": GAZP},
        prices={"F-SBER": 50.0, "F-ROSN": 99.0, "F-VTBR": 20.0, "F-GAZP": 200.0},
        daily={"IDX": index_candles},
        highs=highs or {},
        positions=positions or [],
    )


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.json"


def read_state(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_force_exit_sells_whole_position(config, now, state_path):
    gateway = make_gateway(UP, positions=[PositionSnapshot("F-SBER", 30, 30.0)])
    executor = FakeExecutor()
    report = StrategyRunner(gateway, executor, config, state_path).run_cycle(now)

    assert report.trend is Trend.UP
    assert [(a.pass_name, a.side, a.ticker, a.quantity_lots) for a in report.attempts] == [
        ("force_exit", "sell", "SBER", 3)
    ]
    assert executor.requests[0].account_id == "ACC-1"
    assert read_state(state_path)["last_sell"]["2026-03-11"] == {"SBER": True}


def test_uptrend_buys_dips_once_per_day(config, now, state_path):
    highs = {"F-SBER": 50.2, "F-ROSN": 101.0, "F-VTBR": 25.0}
    store = StateStore(state_path)
    store.mark_action("buy", "VTBR", now)
    store.save()

    executor = FakeExecutor()
    report = StrategyRunner(make_gateway(UP, highs=highs), executor, config, state_path).run_cycle(now)

    assert [(r.ticker, r.side, r.quantity_lots, r.price) for r in executor.requests] == [("ROSN", "buy", 1, 99.0)]
    assert report.attempts[0].pass_name == "dip_buy"
    assert read_state(state_path)["last_buy"]["2026-03-11"] == {"VTBR": True, "ROSN": True}

    again = StrategyRunner(make_gateway(UP, highs=highs), executor, config, state_path).run_cycle(now)
    assert again.attempts == []


def test_working_buy_is_tracked_as_pending(config, now, state_path):
    executor = FakeExecutor(categories={"ROSN": OutcomeCategory.SENT_NOT_FILLED})
    StrategyRunner(make_gateway(UP, highs={"F-ROSN": 101.0}), executor, config, state_path).run_cycle(now)

    state = read_state(state_path)
    assert state["pending_orders"]["ROSN"]["status"] == "sent_not_filled"
    assert state["pending_orders"]["ROSN"]["client_order_id"] == "coid-1"
    assert state["last_buy"]["2026-03-11"] == {"ROSN": True}


def test_rejected_buy_is_retried_next_cycle(config, now, state_path):
    highs = {"F-ROSN": 101.0}
    executor = FakeExecutor(default=OutcomeCategory.BROKER_REJECTED)
    StrategyRunner(make_gateway(UP, highs=highs), executor, config, state_path).run_cycle(now)
    assert read_state(state_path)["last_buy"] == {}

    StrategyRunner(make_gateway(UP, highs=highs), executor, config, state_path).run_cycle(now + timedelta(minutes=15))
    assert [r.ticker for r in executor.requests] == ["ROSN", "ROSN"]


@pytest.mark.parametrize("age, expect_buy", [(5, False), (15, True)])
def test_pending_cooldown_gates_dip_buys(config, now, state_path, age, expect_buy):
    store = StateStore(state_path)
    store.sync_pending_order("ROSN", "sent_not_filled", "old", now - timedelta(minutes=age))
    store.save()

    executor = FakeExecutor()
    StrategyRunner(make_gateway(UP, highs={"F-ROSN": 101.0}), executor, config, state_path).run_cycle(now)
    assert bool(executor.requests) is expect_buy


def test_downtrend_sells_then_momentum(config, now, state_path):
    positions = [
        PositionSnapshot("F-ROSN", 5, 80.0),  # 1.24x: threshold sell
        PositionSnapshot("F-VTBR", 100, 19.0),  # 1.05x: hold
        PositionSnapshot("F-GAZP", 20, 150.0),  # held outside the universe, 1.33x
    ]
    scanner = RecordingScanner()
    executor = FakeExecutor()
    runner = StrategyRunner(make_gateway(DOWN, positions=positions), executor, config, state_path, scanner=scanner)
    report = runner.run_cycle(now)

    assert report.trend is Trend.DOWN
    assert [(a.pass_name, a.ticker, a.quantity_lots) for a in report.attempts] == [
        ("threshold_sell", "ROSN", 1),
        ("position_sell", "GAZP", 1),
    ]
    assert scanner.calls == ["ACC-1"]
    assert report.momentum_bought is True
    assert read_state(state_path)["last_sell"]["2026-03-11"] == {"ROSN": True, "GAZP": True}


def test_sideways_without_scanner_only_sells(config, now, state_path):
    executor = FakeExecutor()
    gateway = make_gateway(SIDE, positions=[PositionSnapshot("F-ROSN", 1, 99.0)], highs={"F-ROSN": 200.0})
    report = StrategyRunner(gateway, executor, config, state_path).run_cycle(now)
    assert report.trend is Trend.SIDE
    assert report.attempts == []
    assert report.momentum_bought is False


def test_unresolved_index_means_sideways(config, now, state_path):
    gateway = make_gateway(UP, highs={"F-ROSN": 101.0})
    gateway.index_id = None
    executor = FakeExecutor()
    report = StrategyRunner(gateway, executor, config, state_path).run_cycle(now)
    assert report.trend is Trend.SIDE
    assert executor.requests == []


def test_universe_excludes_expensive_lots(config, now, state_path):
    gateway = make_gateway(SIDE)
    gateway.prices["F-SBER"] = 150.0  # 1500 RUB per 10-share lot
    report = StrategyRunner(gateway, FakeExecutor(), config, state_path).run_cycle(now)
    assert report.universe_size == 2


def test_state_is_saved_when_positions_fail(config, now, state_path):
    gateway = make_gateway(UP)
    gateway.positions_error = BrokerApiError("portfolio down")
    with pytest.raises(BrokerApiError):
        StrategyRunner(gateway, FakeExecutor(), config, state_path).run_cycle(now)
    assert read_state(state_path) == {"last_buy": {}, "last_sell": {}, "pending_orders": {}}


def test_configured_account_skips_lookup(config, now, state_path):
    executor = FakeExecutor()
    runner = StrategyRunner(
        make_gateway(UP, highs={"F-ROSN": 101.0}), executor, config, state_path, account_id="ACC-9"
    )
    runner.run_cycle(now)
    assert executor.requests[0].account_id == "ACC-9"
