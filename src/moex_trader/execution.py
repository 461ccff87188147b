from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from loguru import logger

from .invest_client import (
    ORDER_DIRECTION_BUY,
    ORDER_DIRECTION_SELL,
    BrokerRejectedError,
    InvestRestClient,
)
from .settings import settings
from .telegram_confirm import ConfirmationChannel


class OutcomeCategory(str, Enum):
    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    SENT_NOT_FILLED = "sent_not_filled"
    BROKER_REJECTED = "broker_rejected"
    NOT_SENT = "not_sent"
    API_ERROR = "api_error"


ACCEPTED_CATEGORIES = frozenset(
    {OutcomeCategory.FILLED, OutcomeCategory.SENT_NOT_FILLED, OutcomeCategory.PARTIALLY_FILLED}
)

_REPORT_STATUS = {
    "EXECUTION_REPORT_STATUS_FILL": OutcomeCategory.FILLED,
    "EXECUTION_REPORT_STATUS_PARTIALLYFILL": OutcomeCategory.PARTIALLY_FILLED,
    "EXECUTION_REPORT_STATUS_NEW": OutcomeCategory.SENT_NOT_FILLED,
    "EXECUTION_REPORT_STATUS_UNSPECIFIED": OutcomeCategory.SENT_NOT_FILLED,
    "EXECUTION_REPORT_STATUS_REJECTED": OutcomeCategory.BROKER_REJECTED,
    "EXECUTION_REPORT_STATUS_CANCELLED": OutcomeCategory.BROKER_REJECTED,
}


@dataclass(frozen=True)
class OrderRequest:
    account_id: str
    instrument_id: str
    ticker: str
    quantity_lots: int
    price: float
    side: Literal["buy", "sell"]

    def prompt(self) -> str:
        return (
            f"*Confirm {self.side.upper()}*\n"
            f"ticker: {self.ticker}\n"
            f"figi: {self.instrument_id}\n"
            f"lots: {self.quantity_lots}\n"
            f"price: {self.price}\n"
            f"account: {self.account_id}"
        )


@dataclass(frozen=True)
class OrderOutcome:
    category: OutcomeCategory
    client_order_id: str | None = None
    response: dict | None = None
    reject_reason: str | None = None
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.category is OutcomeCategory.FILLED

    @property
    def accepted(self) -> bool:
        """The broker holds the order (filled or still working)."""
        return self.category in ACCEPTED_CATEGORIES

    @property
    def order_id(self) -> str | None:
        return (self.response or {}).get("orderId")


def classify_response(response: dict, client_order_id: str) -> OrderOutcome:
    status = str(response.get("executionReportStatus") or "EXECUTION_REPORT_STATUS_UNSPECIFIED")
    category = _REPORT_STATUS.get(status, OutcomeCategory.SENT_NOT_FILLED)
    reason = None
    if category is OutcomeCategory.BROKER_REJECTED:
        reason = response.get("message") or status
    return OrderOutcome(
        category=category,
        client_order_id=client_order_id,
        response=response,
        reject_reason=reason,
    )


class OrderExecutor:
    """Confirm, submit and classify one limit order.

    ``place`` never raises: every path ends in an :class:`OrderOutcome` so the
    caller can always bring the pending-order ledger up to date.
    """

    def __init__(
        self,
        client: InvestRestClient,
        confirmation: ConfirmationChannel,
        confirm_timeout: float | None = None,
    ) -> None:
        self.client = client
        self.confirmation = confirmation
        self.confirm_timeout = confirm_timeout if confirm_timeout is not None else settings.confirm_timeout_seconds

    def place(self, request: OrderRequest) -> OrderOutcome:
        client_order_id = str(uuid.uuid4())

        try:
            confirmed = self.confirmation.confirm(request.prompt(), self.confirm_timeout)
        except Exception as exc:
            logger.warning("Confirmation failed for {}: {}", request.ticker, exc)
            confirmed = False
        if not confirmed:
            return OrderOutcome(
                category=OutcomeCategory.NOT_SENT,
                client_order_id=client_order_id,
                reject_reason="confirmation declined or timed out",
            )

        direction = ORDER_DIRECTION_BUY if request.side == "buy" else ORDER_DIRECTION_SELL
        try:
            response = self.client.post_order(
                account_id=request.account_id,
                figi=request.instrument_id,
                quantity=request.quantity_lots,
                price=request.price,
                direction=direction,
                order_id=client_order_id,
            )
        except BrokerRejectedError as exc:
            return OrderOutcome(
                category=OutcomeCategory.BROKER_REJECTED,
                client_order_id=client_order_id,
                reject_reason=exc.reason or str(exc),
                error_code=exc.code,
            )
        except Exception as exc:
            logger.error("Order submission failed for {}: {}", request.ticker, exc)
            return OrderOutcome(
                category=OutcomeCategory.API_ERROR,
                client_order_id=client_order_id,
                reject_reason=str(exc),
                error_code=type(exc).__name__,
            )

        return classify_response(response, client_order_id)


def describe_failure(side: str, ticker: str, outcome: OrderOutcome) -> str:
    tail = f"reject_reason={outcome.reject_reason!r} error_code={outcome.error_code!r}"
    label = side.upper()
    if outcome.category is OutcomeCategory.NOT_SENT:
        return f"{label} not sent for {ticker} (confirmation missing) {tail}"
    if outcome.category is OutcomeCategory.BROKER_REJECTED:
        return f"{label} rejected by broker for {ticker} {tail}"
    if outcome.category is OutcomeCategory.SENT_NOT_FILLED:
        return f"{label} sent but not filled for {ticker} {tail}"
    if outcome.category is OutcomeCategory.PARTIALLY_FILLED:
        return f"{label} partially filled for {ticker} {tail}"
    return f"{label} failed for {ticker} (category={outcome.category.value}) {tail}"


def log_outcome(side: str, ticker: str, outcome: OrderOutcome) -> None:
    if outcome.accepted:
        logger.info(
            "{} {} accepted: {} (order_id={})",
            side.upper(),
            ticker,
            outcome.category.value,
            outcome.order_id,
        )
    elif outcome.category is OutcomeCategory.API_ERROR:
        logger.error(describe_failure(side, ticker, outcome))
    else:
        logger.warning(describe_failure(side, ticker, outcome))
