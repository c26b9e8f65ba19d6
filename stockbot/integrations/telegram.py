from __future__ import annotations

from typing import Any, Optional

import requests

from stockbot.errors import MessagePreparationError, MessageSendError
from stockbot.integrations.message_format import format_alerts, format_summary
from stockbot.schemas.price import PriceAlert


class TelegramMessenger:
    """Telegram Bot API sender (``sendMessage`` with Markdown)."""

    def __init__(
        self,
        token: str,
        chat_id: str,
        session: Optional[Any] = None,
        base_url: str = "https://api.telegram.org",
        timeout_sec: float = 10.0,
    ) -> None:
        if not token:
            raise MessagePreparationError("telegram token not set")
        if not chat_id:
            raise MessagePreparationError("telegram chat id not set")
        self.token = token
        self.chat_id = chat_id
        self.session = session or requests
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec

    def _post(self, text: str) -> None:
        try:
            response = self.session.post(
                f"{self.base_url}/bot{self.token}/sendMessage",
                headers={"Content-Type": "application/json"},
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise MessageSendError(f"telegram request failed: {exc}") from exc

        print(f"[MSG][telegram_response] status={response.status_code}", flush=True)
        if response.status_code >= 400:
            raise MessageSendError(f"telegram returned status code {response.status_code}")

    def send_summary(self, prices: dict[str, str]) -> None:
        self._post(format_summary(prices, markdown=True))

    def send_alerts(self, alerts: list[PriceAlert]) -> None:
        if not alerts:
            return
        self._post(format_alerts(alerts, markdown=True))
