from __future__ import annotations

import uuid
from typing import Any, Optional

import requests

from stockbot.errors import MessagePreparationError, MessageSendError
from stockbot.integrations.message_format import format_alerts, format_summary
from stockbot.schemas.price import PriceAlert


class LineMessenger:
    """LINE Messaging API broadcast sender."""

    def __init__(
        self,
        token: str,
        session: Optional[Any] = None,
        base_url: str = "https://api.line.me",
        timeout_sec: float = 10.0,
    ) -> None:
        if not token:
            raise MessagePreparationError("line channel access token not set")
        self.token = token
        self.session = session or requests
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec

    def _broadcast(self, text: str) -> None:
        try:
            response = self.session.post(
                f"{self.base_url}/v2/bot/message/broadcast",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.token}",
                    "X-Line-Retry-Key": str(uuid.uuid4()),
                },
                json={"messages": [{"type": "text", "text": text}]},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise MessageSendError(f"line request failed: {exc}") from exc

        print(f"[MSG][line_response] status={response.status_code}", flush=True)
        if response.status_code >= 400:
            raise MessageSendError(f"line returned status code {response.status_code}")

    def send_summary(self, prices: dict[str, str]) -> None:
        self._broadcast(format_summary(prices))

    def send_alerts(self, alerts: list[PriceAlert]) -> None:
        if not alerts:
            return
        self._broadcast(format_alerts(alerts))
