"""Alert service for sending operator notifications to Telegram."""

from typing import Optional

import httpx

from chatbridge.logging_config import get_logger

logger = get_logger("alert_service")

EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


class AlertService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: Optional[str],
        chat_id: Optional[str],
        api_base: str = "https://api.telegram.org",
    ):
        self.client = client
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base = api_base.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send_alert(self, level: str, message: str, context: Optional[dict] = None) -> bool:
        """Send alert to the operator chat.

        Args:
            level: INFO, WARNING, ERROR, CRITICAL
            message: Alert message
            context: Optional context dict

        Returns:
            True if sent successfully
        """
        if not self.configured:
            logger.warning(f"Alert not configured: {level} - {message}")
            return False

        text = f"{EMOJI.get(level, '📢')} *{level}*\n\n{message}"
        if context:
            context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
            text += f"\n\n```\n{context_str}\n```"

        try:
            response = await self.client.post(
                f"{self.api_base}/bot{self.bot_token}/sendMessage",
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"},
                timeout=10,
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Failed to send alert: {e!r}")
            return False

    async def alert_error(self, message: str, context: Optional[dict] = None) -> bool:
        return await self.send_alert("ERROR", message, context)

    async def alert_warning(self, message: str, context: Optional[dict] = None) -> bool:
        return await self.send_alert("WARNING", message, context)
