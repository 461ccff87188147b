from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable

import requests
from loguru import logger

from .money import float_to_q
from .settings import settings

CONTRACT = "tinkoff.public.invest.api.contract.v1"

CANDLE_INTERVAL_DAY = "CANDLE_INTERVAL_DAY"
CANDLE_INTERVAL_5_MIN = "CANDLE_INTERVAL_5_MIN"
ORDER_DIRECTION_BUY = "ORDER_DIRECTION_BUY"
ORDER_DIRECTION_SELL = "ORDER_DIRECTION_SELL"
ORDER_TYPE_LIMIT = "ORDER_TYPE_LIMIT"

_TRANSIENT_CLIENT_STATUSES = frozenset({401, 403, 429})


class BrokerApiError(RuntimeError):
    pass


class BrokerRejectedError(BrokerApiError):
    """The broker answered with a structured error instead of a result."""

    def __init__(self, message: str, reason: str | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.code = code


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class InvestRestClient:
    """Blocking JSON client for the broker's REST gateway.

    Every method returns the decoded response body. Failures raise
    :class:`BrokerApiError`; callers decide whether a failure is fatal.
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.token = token if token is not None else settings.tinkoff_token
        self.base_url = (base_url or settings.tinkoff_api_base_url).rstrip("/")
        self.timeout = settings.broker_timeout_seconds
        self.session = session or requests.Session()

    # ── Users / instruments ──────────────────────────────────────

    def get_accounts(self) -> list[dict]:
        body = self._call_with_retry(self._post, "UsersService", "GetAccounts", {})
        return [acc for acc in body.get("accounts") or [] if isinstance(acc, dict)]

    def share_by_ticker(self, ticker: str, class_code: str) -> dict:
        body = self._call_with_retry(
            self._post,
            "InstrumentsService",
            "ShareBy",
            {"idType": "INSTRUMENT_ID_TYPE_TICKER", "classCode": class_code, "id": ticker},
        )
        return body.get("instrument") or {}

    def find_instrument(self, query: str) -> list[dict]:
        body = self._call_with_retry(self._post, "InstrumentsService", "FindInstrument", {"query": query})
        return [ins for ins in body.get("instruments") or [] if isinstance(ins, dict)]

    def get_instrument_by_figi(self, figi: str) -> dict:
        body = self._call_with_retry(
            self._post,
            "InstrumentsService",
            "GetInstrumentBy",
            {"idType": "INSTRUMENT_ID_TYPE_FIGI", "id": figi},
        )
        return body.get("instrument") or {}

    # ── Market data ──────────────────────────────────────────────

    def get_last_prices(self, figis: list[str]) -> list[dict]:
        body = self._call_with_retry(self._post, "MarketDataService", "GetLastPrices", {"figi": list(figis)})
        return [lp for lp in body.get("lastPrices") or [] if isinstance(lp, dict)]

    def get_candles(self, figi: str, start: datetime, end: datetime, interval: str) -> list[dict]:
        body = self._call_with_retry(
            self._post,
            "MarketDataService",
            "GetCandles",
            {"figi": figi, "from": _iso(start), "to": _iso(end), "interval": interval},
        )
        return [c for c in body.get("candles") or [] if isinstance(c, dict)]

    # ── Portfolio / orders ───────────────────────────────────────

    def get_portfolio(self, account_id: str) -> dict:
        return self._call_with_retry(
            self._post,
            "OperationsService",
            "GetPortfolio",
            {"accountId": account_id, "currency": "RUB"},
        )

    def post_order(
        self,
        account_id: str,
        figi: str,
        quantity: int,
        price: float,
        direction: str,
        order_id: str,
        order_type: str = ORDER_TYPE_LIMIT,
    ) -> dict:
        """Submit a limit order; ``quantity`` is in lots.

        ``order_id`` is the idempotency key, so retrying the same request
        cannot produce a second order.
        """
        if quantity <= 0:
            raise BrokerApiError("Quantity must be > 0 for an order")
        return self._call_with_retry(
            self._post,
            "OrdersService",
            "PostOrder",
            {
                "figi": figi,
                "quantity": str(int(quantity)),
                "price": float_to_q(price),
                "direction": direction,
                "accountId": account_id,
                "orderType": order_type,
                "orderId": order_id,
            },
        )

    # ── Transport ────────────────────────────────────────────────

    def _post(self, service: str, method: str, payload: dict) -> dict:
        if not self.token:
            raise BrokerApiError("Broker token is not configured")
        url = f"{self.base_url}/{CONTRACT}.{service}/{method}"
        response = self.session.post(
            url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/json",
            },
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            body: Any
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = ""
            if isinstance(body, dict) and ("code" in body or "message" in body):
                code = str(body.get("message") or body.get("code") or "")
                reason = str(body.get("description") or body.get("message") or "")
                # Auth, throttling and server faults are transport errors, not verdicts.
                if response.status_code < 500 and response.status_code not in _TRANSIENT_CLIENT_STATUSES:
                    raise BrokerRejectedError(
                        f"{service}/{method} rejected with HTTP {response.status_code}: {reason}",
                        reason=reason,
                        code=code,
                    )
                detail = f": {reason}"
            raise BrokerApiError(f"{service}/{method} failed with HTTP {response.status_code}{detail}")
        try:
            body = response.json()
        except ValueError as exc:
            raise BrokerApiError(f"{service}/{method} returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise BrokerApiError(f"{service}/{method} returned an unexpected body")
        return body

    def _call_with_retry(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        last_exc: Exception | None = None

        for attempt in range(1, settings.broker_max_retries + 1):
            try:
                return func(*args, **kwargs)
            except BrokerRejectedError:
                raise
            except Exception as exc:
                last_exc = exc
                category = self._classify_error(exc)
                logger.warning(
                    "Broker call failed [{}] attempt {}/{}: {}",
                    category,
                    attempt,
                    settings.broker_max_retries,
                    exc,
                )

                if attempt >= settings.broker_max_retries or category == "auth":
                    break

                delay = settings.broker_retry_base_delay_seconds * (2 ** (attempt - 1))
                time.sleep(delay)

        raise BrokerApiError(f"Broker call failed after retries: {last_exc}") from last_exc

    @staticmethod
    def _classify_error(exc: Exception) -> str:
        if isinstance(exc, requests.Timeout):
            return "timeout"
        text = str(exc).lower()
        if "timeout" in text:
            return "timeout"
        if "401" in text or "403" in text or "unauthorized" in text or "not configured" in text:
            return "auth"
        if "429" in text or "rate" in text:
            return "rate_limit"
        return "api"
