from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    tinkoff_token: str = ""
    tinkoff_account_id: str = ""
    tinkoff_api_base_url: str = "https://invest-public-api.tinkoff.ru/rest"
    broker_timeout_seconds: int = Field(default=15, ge=1, le=120)
    broker_max_retries: int = Field(default=3, ge=1, le=10)
    broker_retry_base_delay_seconds: float = Field(default=1.0, ge=0.0, le=30)

    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_api_base_url: str = "https://api.telegram.org"
    confirm_timeout_seconds: int = Field(default=120, ge=5, le=3600)
    confirm_poll_interval_seconds: float = Field(default=1.0, ge=0.1, le=30)
    auto_confirm_orders: bool = False

    state_path: Path = Path("tmp/strategy_state.json")
    market_cache_path: Path = Path("tmp/market_instruments_cache.json")
    index_cache_path: Path = Path("tmp/moex_index_cache.json")
    strategy_config_path: Path = Path("config/strategy.yaml")
    log_level: str = "INFO"
    log_file: Path | None = None

    timezone: str = "Europe/Moscow"
    run_hours: str = "10-18"
    run_every_minutes: int = Field(default=15, ge=1, le=240)

    tickers_csv: str = "SBER,ROSN,VTBR"
    class_code: str = "TQBR"
    index_tickers_csv: str = "IMOEX,TMOS,SBMX"
    max_lot_rub: float = Field(default=1000.0, gt=0)
    max_lot_count: int = Field(default=1000, ge=1)
    lots_per_order: int = Field(default=1, ge=1, le=1000)
    dip_pct: float = Field(default=0.01, ge=0, lt=1)
    sell_profit_multiple: float = Field(default=1.10, ge=1.0, le=10.0)
    force_exit_multiple: float = Field(default=1.30, le=10.0)
    min_relative_volume: float | None = Field(default=None, ge=0)
    volume_compare: Literal["none", "relative", "turnover"] = "none"
    volume_lookback_days: int = Field(default=20, ge=1, le=250)
    buy_pending_cooldown_min: int = Field(default=10, ge=0, le=1440)

    @model_validator(mode="after")
    def validate_exit_multiple(self) -> "Settings":
        if self.force_exit_multiple < 1.0:
            raise ValueError(
                "FORCE_EXIT_MULTIPLE below 1.0 would liquidate positions at a loss."
            )
        return self


settings = Settings()
