"""Persistent per-day action ledger and pending-order ledger.

File layout::

    {
      "last_buy":  {"2026-01-05": {"SBER": true}},
      "last_sell": {"2026-01-05": {"ROSN": true}},
      "pending_orders": {
        "SBER": {"client_order_id": "...", "ticker": "SBER",
                 "ts": "2026-01-05T10:00:00+00:00", "status": "sent_not_filled"}
      }
    }

A file that is not JSON or has the wrong shape is replaced by the empty
default state. A malformed pending entry only makes that entry inactive; the
day ledgers survive it.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .market_data import parse_utc

Action = Literal["buy", "sell"]

PENDING_STATUSES = frozenset({"sent_not_filled", "partially_filled"})

_LEDGER_KEYS = {"buy": "last_buy", "sell": "last_sell"}


class PendingOrder(BaseModel):
    client_order_id: str | None = None
    ticker: str = ""
    ts: str = ""
    status: str = ""

    @field_validator("ticker", "ts", "status", mode="before")
    @classmethod
    def coerce_text(cls, value: object) -> str:
        # A malformed field leaves the entry inactive instead of failing the file.
        return "" if value is None else str(value)

    @field_validator("client_order_id", mode="before")
    @classmethod
    def coerce_order_id(cls, value: object) -> str | None:
        return None if value is None else str(value)


class PersistedState(BaseModel):
    last_buy: dict[str, dict[str, bool]] = Field(default_factory=dict)
    last_sell: dict[str, dict[str, bool]] = Field(default_factory=dict)
    pending_orders: dict[str, PendingOrder] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def drop_null_sections(cls, data: object) -> object:
        if not isinstance(data, dict):
            return data
        data = {key: value for key, value in data.items() if value is not None}
        pending = data.get("pending_orders")
        if isinstance(pending, dict):
            data["pending_orders"] = {
                ticker: entry for ticker, entry in pending.items() if isinstance(entry, dict)
            }
        return data


def today_key(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


class StateStore:
    def __init__(self, path: Path, state: PersistedState | None = None) -> None:
        self.path = path
        self.state = state or PersistedState()

    @classmethod
    def load(cls, path: Path) -> "StateStore":
        if not path.exists():
            return cls(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            state = PersistedState.model_validate(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("State file {} unreadable, starting from defaults: {}", path, exc)
            return cls(path)
        return cls(path, state)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = self.state.model_dump(mode="json")
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # ── Daily idempotency ────────────────────────────────────────

    def _ledger(self, action: Action) -> dict[str, dict[str, bool]]:
        return getattr(self.state, _LEDGER_KEYS[action])

    def acted_today(self, action: Action, ticker: str, now: datetime | None = None) -> bool:
        return self._ledger(action).get(today_key(now), {}).get(ticker) is True

    def mark_action(self, action: Action, ticker: str, now: datetime | None = None) -> None:
        self._ledger(action).setdefault(today_key(now), {})[ticker] = True

    # ── Pending orders ───────────────────────────────────────────

    def pending_active(self, ticker: str, cooldown: timedelta, now: datetime | None = None) -> bool:
        pending = self.state.pending_orders.get(ticker)
        if pending is None or pending.status not in PENDING_STATUSES:
            return False
        recorded_at = parse_utc(pending.ts)
        if recorded_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return (now - recorded_at) < cooldown

    def sync_pending_order(
        self,
        ticker: str,
        category: str,
        client_order_id: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Record a still-working order, or clear the ticker on any terminal outcome."""
        category = str(getattr(category, "value", category))
        if category in PENDING_STATUSES:
            now = now or datetime.now(timezone.utc)
            self.state.pending_orders[ticker] = PendingOrder(
                client_order_id=client_order_id,
                ticker=ticker,
                ts=now.astimezone(timezone.utc).isoformat(),
                status=category,
            )
        else:
            self.state.pending_orders.pop(ticker, None)
