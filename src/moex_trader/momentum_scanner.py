"""One-shot momentum buy over the cached market and index snapshots.

Candidates are the market-cache entries that are also index members, walked in
market-cache order. The first candidate whose buy the broker accepts ends the
scan, so at most one momentum buy happens per cycle.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from loguru import logger

from .execution import OrderExecutor, OrderOutcome, OrderRequest, log_outcome
from .market_cache import CacheEntry, intersect_candidates, load_cache_normalized
from .market_data import MarketDataGateway
from .signals import momentum_up
from .state_store import StateStore
from .strategy_config import StrategyConfig


class MomentumScanner:
    def __init__(
        self,
        gateway: MarketDataGateway,
        executor: OrderExecutor,
        config: StrategyConfig,
        market_cache_path: Path,
        index_cache_path: Path,
    ) -> None:
        self.gateway = gateway
        self.executor = executor
        self.config = config
        self.market_cache_path = market_cache_path
        self.index_cache_path = index_cache_path

    def candidates(self) -> list[CacheEntry]:
        market = load_cache_normalized(self.market_cache_path)
        index = load_cache_normalized(self.index_cache_path)
        inter = intersect_candidates(market, index)
        logger.debug(
            "Momentum: market={} index={} intersection={}",
            len(market),
            len(index),
            len(inter),
        )
        return inter

    def buy_one(self, store: StateStore, account_id: str, now: datetime | None = None) -> bool:
        """Return True once a momentum buy is accepted by the broker."""
        now = now or datetime.now(timezone.utc)
        candidates = self.candidates()
        if not candidates:
            logger.info("Momentum: no candidates in market/index intersection")
            return False

        for entry in candidates:
            try:
                outcome = self._try_candidate(entry, store, account_id, now)
            except Exception as exc:
                logger.warning("Momentum: {} skipped after error: {}", entry.ticker, exc)
                continue
            if outcome is not None and outcome.accepted:
                return True

        logger.info("Momentum: no candidate bought")
        return False

    def _try_candidate(
        self,
        entry: CacheEntry,
        store: StateStore,
        account_id: str,
        now: datetime,
    ) -> OrderOutcome | None:
        ticker = entry.ticker
        if store.acted_today("buy", ticker, now):
            logger.debug("Momentum: {} already bought today", ticker)
            return None

        figi = entry.instrument_id
        lot = entry.lot
        if figi is None:
            instrument = self.gateway.resolve_ticker(ticker, self.config.class_code)
            if instrument is None:
                logger.debug("Momentum: {} skipped, no instrument id", ticker)
                return None
            figi = instrument.instrument_id
            lot = lot or instrument.lot_size
        elif not lot:
            lot = self.gateway.describe_instrument(figi).lot_size

        closes = self.gateway.daily_closes(figi, self.config.momentum_lookback_days, now)
        if len(closes) < 4:
            logger.debug("Momentum: {} skipped, only {} daily closes", ticker, len(closes))
            return None
        if not momentum_up(closes):
            logger.debug("Momentum: {} skipped, no 3-day momentum {}", ticker, [round(c, 2) for c in closes[-4:]])
            return None

        lot = lot or 1
        price = self.gateway.get_last_price(figi) or entry.price
        if price is None:
            logger.debug("Momentum: {} skipped, no price", ticker)
            return None
        order_cost = price * lot * self.config.lots_per_order
        if order_cost > self.config.max_lot_rub:
            logger.debug(
                "Momentum: {} skipped, order cost {:.2f} > {:.2f}",
                ticker,
                order_cost,
                self.config.max_lot_rub,
            )
            return None

        cooldown = timedelta(minutes=self.config.pending_cooldown_minutes)
        if store.pending_active(ticker, cooldown, now):
            logger.debug("Momentum: {} skipped, pending order cooldown", ticker)
            return None

        outcome = self.executor.place(
            OrderRequest(
                account_id=account_id,
                instrument_id=figi,
                ticker=ticker,
                quantity_lots=self.config.lots_per_order,
                price=price,
                side="buy",
            )
        )
        store.sync_pending_order(ticker, outcome.category, outcome.client_order_id, now)
        log_outcome("buy", ticker, outcome)
        if outcome.accepted:
            store.mark_action("buy", ticker, now)
        return outcome
