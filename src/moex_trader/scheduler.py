from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from .runner import StrategyRunner
from .settings import settings


class BotScheduler:
    def __init__(self, runner: StrategyRunner) -> None:
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.runner = runner

    def _tick(self) -> None:
        try:
            self.runner.run_cycle()
        except Exception as exc:
            logger.exception("Trading cycle aborted: {}", exc)

    def start(self) -> None:
        trigger = CronTrigger(
            day_of_week="mon-fri",
            hour=settings.run_hours,
            minute=f"*/{settings.run_every_minutes}",
            timezone=settings.timezone,
        )
        self.scheduler.add_job(
            self._tick,
            trigger=trigger,
            id="strategy_cycle",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(
            "Scheduler started. Cycle every {} min during hours {} ({})",
            settings.run_every_minutes,
            settings.run_hours,
            settings.timezone,
        )

    def stop(self) -> None:
        self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
