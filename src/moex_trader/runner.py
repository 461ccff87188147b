from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from loguru import logger

from .execution import OrderExecutor, OrderOutcome, OrderRequest, log_outcome
from .market_data import MarketDataGateway, PositionSnapshot
from .momentum_scanner import MomentumScanner
from .signals import Trend, should_buy, should_force_exit, should_sell, trend
from .state_store import StateStore
from .strategy_config import StrategyConfig
from .universe import PricedCandidate, UniverseBuilder


@dataclass
class OrderAttempt:
    pass_name: str
    side: str
    ticker: str
    quantity_lots: int
    category: str


@dataclass
class CycleReport:
    started_at: datetime
    trend: Trend = Trend.SIDE
    universe_size: int = 0
    momentum_bought: bool = False
    attempts: list[OrderAttempt] = field(default_factory=list)

    def record(self, pass_name: str, request: OrderRequest, outcome: OrderOutcome) -> None:
        self.attempts.append(
            OrderAttempt(
                pass_name=pass_name,
                side=request.side,
                ticker=request.ticker,
                quantity_lots=request.quantity_lots,
                category=outcome.category.value,
            )
        )


class StrategyRunner:
    """One scheduler tick: force exits, then the trend-dependent passes.

    The state file is loaded at the start of the cycle and written in a
    ``finally`` block, so actions completed before a fault stay recorded.
    """

    def __init__(
        self,
        gateway: MarketDataGateway,
        executor: OrderExecutor,
        config: StrategyConfig,
        state_path: Path,
        scanner: MomentumScanner | None = None,
        account_id: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.executor = executor
        self.config = config
        self.state_path = state_path
        self.scanner = scanner
        self.account_id = account_id or None
        self.universe_builder = UniverseBuilder(gateway, config)

    def run_cycle(self, now: datetime | None = None) -> CycleReport:
        now = now or datetime.now(timezone.utc)
        report = CycleReport(started_at=now)

        account_id = self.account_id or self.gateway.first_account_id()

        index_id = self.gateway.resolve_index(self.config.index_tickers)
        closes = self.gateway.daily_closes(index_id, self.config.trend_lookback_days, now) if index_id else []
        report.trend = trend(closes)

        universe = self.universe_builder.build(now)
        report.universe_size = len(universe)

        store = StateStore.load(self.state_path)
        try:
            positions = self.gateway.list_positions(account_id)
            positions_by_id = {p.instrument_id: p for p in positions}

            self._force_exit_pass(store, account_id, universe, positions_by_id, report, now)

            if report.trend is Trend.UP:
                logger.info("Trend: UP, intraday dip buys (once per ticker per day)")
                self._dip_buy_pass(store, account_id, universe, report, now)
            else:
                logger.info("Trend: {}, threshold sells then one momentum buy", report.trend.value.upper())
                self._threshold_sell_pass(store, account_id, universe, positions_by_id, report, now)
                self._sell_held_positions_pass(store, account_id, positions, report, now)
                if self.scanner is not None:
                    report.momentum_bought = self.scanner.buy_one(store, account_id, now)
        finally:
            store.save()

        logger.info(
            "Cycle done: trend={} universe={} orders={}",
            report.trend.value,
            report.universe_size,
            len(report.attempts),
        )
        return report

    # ── Passes ───────────────────────────────────────────────────

    def _force_exit_pass(
        self,
        store: StateStore,
        account_id: str,
        universe: list[PricedCandidate],
        positions_by_id: dict[str, PositionSnapshot],
        report: CycleReport,
        now: datetime,
    ) -> None:
        for candidate in universe:
            position = positions_by_id.get(candidate.instrument_id)
            if position is None or position.quantity_units <= 0:
                continue
            price = self.gateway.get_last_price(candidate.instrument_id)
            if not should_force_exit(position, price, self.config.force_exit_multiple):
                continue

            lots = position.quantity_units // candidate.lot_size
            if lots <= 0:
                continue
            request = OrderRequest(
                account_id=account_id,
                instrument_id=candidate.instrument_id,
                ticker=candidate.ticker,
                quantity_lots=lots,
                price=price,
                side="sell",
            )
            outcome = self._submit("force_exit", request, report)
            if outcome.accepted:
                store.mark_action("sell", candidate.ticker, now)

    def _dip_buy_pass(
        self,
        store: StateStore,
        account_id: str,
        universe: list[PricedCandidate],
        report: CycleReport,
        now: datetime,
    ) -> None:
        cooldown = timedelta(minutes=self.config.pending_cooldown_minutes)
        for candidate in universe:
            ticker = candidate.ticker
            if store.acted_today("buy", ticker, now):
                continue
            if store.pending_active(ticker, cooldown, now):
                logger.debug("BUY {} skipped, pending order cooldown", ticker)
                continue

            price = self.gateway.get_last_price(candidate.instrument_id)
            high = self.gateway.todays_high(candidate.instrument_id, now)
            if not should_buy(price, high, self.config.dip_pct, candidate.relative_volume, self.config.min_relative_volume):
                continue

            request = OrderRequest(
                account_id=account_id,
                instrument_id=candidate.instrument_id,
                ticker=ticker,
                quantity_lots=self.config.lots_per_order,
                price=price,
                side="buy",
            )
            outcome = self._submit("dip_buy", request, report)
            store.sync_pending_order(ticker, outcome.category, outcome.client_order_id, now)
            if outcome.accepted:
                store.mark_action("buy", ticker, now)

    def _threshold_sell_pass(
        self,
        store: StateStore,
        account_id: str,
        universe: list[PricedCandidate],
        positions_by_id: dict[str, PositionSnapshot],
        report: CycleReport,
        now: datetime,
    ) -> None:
        for candidate in universe:
            if store.acted_today("sell", candidate.ticker, now):
                continue
            position = positions_by_id.get(candidate.instrument_id)
            if position is None:
                continue
            self._sell_one_lot("threshold_sell", store, account_id, candidate.ticker, candidate.instrument_id, candidate.lot_size, position, report, now)

    def _sell_held_positions_pass(
        self,
        store: StateStore,
        account_id: str,
        positions: list[PositionSnapshot],
        report: CycleReport,
        now: datetime,
    ) -> None:
        for position in positions:
            if position.quantity_units <= 0:
                continue
            instrument = self.gateway.describe_instrument(position.instrument_id)
            if store.acted_today("sell", instrument.ticker, now):
                continue
            self._sell_one_lot(
                "position_sell",
                store,
                account_id,
                instrument.ticker,
                position.instrument_id,
                instrument.lot_size,
                position,
                report,
                now,
            )

    def _sell_one_lot(
        self,
        pass_name: str,
        store: StateStore,
        account_id: str,
        ticker: str,
        instrument_id: str,
        lot_size: int,
        position: PositionSnapshot,
        report: CycleReport,
        now: datetime,
    ) -> None:
        price = self.gateway.get_last_price(instrument_id)
        if not should_sell(position, price, self.config.sell_profit_multiple):
            return
        if position.quantity_units < lot_size:
            logger.debug("SELL {} skipped, {} units is less than one lot of {}", ticker, position.quantity_units, lot_size)
            return

        request = OrderRequest(
            account_id=account_id,
            instrument_id=instrument_id,
            ticker=ticker,
            quantity_lots=1,
            price=price,
            side="sell",
        )
        outcome = self._submit(pass_name, request, report)
        if outcome.accepted:
            store.mark_action("sell", ticker, now)

    def _submit(self, pass_name: str, request: OrderRequest, report: CycleReport) -> OrderOutcome:
        outcome = self.executor.place(request)
        report.record(pass_name, request, outcome)
        log_outcome(request.side, request.ticker, outcome)
        return outcome
