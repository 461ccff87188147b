from __future__ import annotations

import argparse
import time

from loguru import logger

from .execution import OrderExecutor
from .invest_client import BrokerApiError, InvestRestClient
from .logging_config import configure_logging
from .market_data import MarketDataGateway
from .momentum_scanner import MomentumScanner
from .runner import StrategyRunner
from .scheduler import BotScheduler
from .settings import settings
from .strategy_config import load_strategy_config
from .telegram_confirm import AutoConfirm, TelegramConfirm


def build_runner() -> StrategyRunner:
    config = load_strategy_config()
    client = InvestRestClient()
    gateway = MarketDataGateway(client)
    confirmation = AutoConfirm() if settings.auto_confirm_orders else TelegramConfirm()
    executor = OrderExecutor(client, confirmation)
    scanner = MomentumScanner(
        gateway,
        executor,
        config,
        market_cache_path=settings.market_cache_path,
        index_cache_path=settings.index_cache_path,
    )
    return StrategyRunner(
        gateway,
        executor,
        config,
        state_path=settings.state_path,
        scanner=scanner,
        account_id=settings.tinkoff_account_id,
    )


def run_once() -> int:
    runner = build_runner()
    try:
        runner.run_cycle()
    except BrokerApiError as exc:
        logger.error("Cycle aborted by broker error: {}", exc)
        return 1
    return 0


def run_service() -> None:
    scheduler = BotScheduler(build_runner())
    scheduler.start()
    logger.info("Press Ctrl+C to stop")

    try:
        while True:
            time.sleep(30)
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        scheduler.stop()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="MOEX dip/momentum trading cycle")
    parser.add_argument("--service", action="store_true", help="run on a schedule instead of a single cycle")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level, settings.log_file)
    if args.service:
        run_service()
        return 0
    return run_once()


if __name__ == "__main__":
    raise SystemExit(main())
