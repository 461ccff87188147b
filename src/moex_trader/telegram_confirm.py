from __future__ import annotations

import time
from typing import Callable, Protocol

import requests
from loguru import logger

from .settings import settings

CONFIRM_WORDS = {"y", "yes", "ok", "confirm"}
DECLINE_WORDS = {"n", "no", "cancel"}


class ConfirmationChannel(Protocol):
    def confirm(self, prompt: str, timeout: float) -> bool: ...


class AutoConfirm:
    def confirm(self, prompt: str, timeout: float) -> bool:
        logger.debug("Auto-confirming: {}", prompt.replace("\n", " "))
        return True


class TelegramConfirm:
    """Ask a human in a Telegram chat to approve an order.

    Polls ``getUpdates`` every ``poll_interval`` seconds until a reply from the
    configured chat arrives or ``timeout`` elapses. A deadline counts as a
    decline. Without a bot token and chat id the channel auto-confirms.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        poll_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.bot_token = (bot_token if bot_token is not None else settings.telegram_bot_token).strip()
        self.chat_id = str(chat_id if chat_id is not None else settings.telegram_chat_id).strip()
        self.poll_interval = poll_interval if poll_interval is not None else settings.confirm_poll_interval_seconds
        self.base_url = f"{settings.telegram_api_base_url.rstrip('/')}/bot{self.bot_token}"
        self.timeout = 10
        self._clock = clock
        self._sleep = sleep
        self._last_update_id: int | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def send_message(self, text: str) -> bool:
        if not self.enabled:
            return False
        try:
            response = requests.post(
                f"{self.base_url}/sendMessage",
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"},
                timeout=self.timeout,
            )
            body = response.json() if response.status_code == 200 else {}
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Telegram sendMessage failed: {}", exc)
            return False
        return bool(body.get("ok"))

    def confirm(self, prompt: str, timeout: float | None = None) -> bool:
        if not self.enabled:
            return True
        timeout = timeout if timeout is not None else settings.confirm_timeout_seconds

        # Anything already queued predates this prompt and must not answer it.
        self._get_updates()
        if not self.send_message(f"{prompt}\n\nReply `yes` to confirm within {int(timeout)}s."):
            logger.warning("Confirmation prompt could not be delivered; treating as declined")
            return False

        deadline = self._clock() + timeout
        while self._clock() < deadline:
            self._sleep(self.poll_interval)
            for update in self._get_updates():
                answer = self._reply_text(update)
                if answer in CONFIRM_WORDS:
                    return True
                if answer in DECLINE_WORDS:
                    logger.info("Order declined in Telegram")
                    return False
        logger.info("Confirmation timed out after {}s", timeout)
        return False

    def _reply_text(self, update: dict) -> str | None:
        message = update.get("message") or {}
        chat = message.get("chat") or {}
        if str(chat.get("id")) != self.chat_id or not message.get("text"):
            return None
        return str(message["text"]).strip().lower()

    def _get_updates(self) -> list[dict]:
        params = {}
        if self._last_update_id is not None:
            params["offset"] = self._last_update_id + 1
        try:
            response = requests.get(f"{self.base_url}/getUpdates", params=params, timeout=self.timeout)
            if response.status_code != 200:
                return []
            updates = response.json().get("result") or []
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Telegram getUpdates failed: {}", exc)
            return []
        updates = [u for u in updates if isinstance(u, dict)]
        ids = [u["update_id"] for u in updates if isinstance(u.get("update_id"), int)]
        if ids:
            self._last_update_id = max(ids)
        return updates
