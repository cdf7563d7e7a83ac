"""Telegram alerts for outages and dead-lettered jobs."""

from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger()

# Telegram API base URL
TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"


@dataclass
class TelegramAlerter:
    """Send operator alerts to Telegram.

    Alerting never raises: a failed send is logged and reported as ``False``.
    """

    bot_token: str = ""
    chat_id: str = ""
    _client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    @classmethod
    def from_settings(cls, settings) -> "TelegramAlerter":
        return cls(bot_token=settings.TELEGRAM_BOT_TOKEN, chat_id=settings.TELEGRAM_CHAT_ID)

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _get_client(self) -> httpx.AsyncClient:
        """Lazy initialize httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def send_outage_alert(self, entered: bool, status: str) -> bool:
        if entered:
            message = f"""
*WEATHER PROVIDER OUTAGE*

Health: {status}
Settlement is paused; overdue markets are being cancelled.
"""
        else:
            message = f"""
*OUTAGE CLEARED*

Health: {status}
Settlement resumes on the next poll.
"""
        return await self._send(message)

    async def send_dead_letter_alert(self, queue: str, dedupe_key: Optional[str],
                                     attempts: int, error: str) -> bool:
        message = f"""
*JOB DEAD-LETTERED*

Queue: {queue}
Key: {dedupe_key or "-"}
Attempts: {attempts}
Error: {error[:300]}
"""
        return await self._send(message)

    async def send_custom_alert(self, message: str) -> bool:
        """Send a custom message."""
        return await self._send(message)

    async def _send(self, message: str) -> bool:
        """Send message to Telegram."""
        if not self.configured:
            logger.debug("telegram_not_configured")
            return False

        url = TELEGRAM_API_URL.format(token=self.bot_token)
        payload = {
            "chat_id": self.chat_id,
            "text": message.strip(),
            "parse_mode": "Markdown",
        }
        try:
            response = await self._get_client().post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error("telegram_send_failed", error=str(e))
            return False

        if response.status_code == 200:
            logger.debug("telegram_sent", chars=len(message))
            return True
        logger.error("telegram_api_error", status=response.status_code, body=response.text[:200])
        return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
