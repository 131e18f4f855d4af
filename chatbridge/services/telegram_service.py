from typing import Optional

from chatbridge.domain.errors import UpstreamError
from chatbridge.domain.message import Platform
from chatbridge.domain.routing import TelegramEndpoint
from chatbridge.logging_config import get_logger
from chatbridge.services.platforms import PlatformService

logger = get_logger("telegram_service")


class TelegramService(PlatformService):
    """Bot API client. One instance serves every bot; the token comes with the endpoint."""

    platform = Platform.TELEGRAM

    def __init__(self, client, api_base: str = "https://api.telegram.org", timeout: float = 30.0):
        super().__init__(client, timeout)
        self.api_base = api_base.rstrip("/")

    async def _call(self, endpoint: TelegramEndpoint, method: str, data: dict) -> dict:
        url = f"{self.api_base}/bot{endpoint.bot_token}/{method}"
        payload = await self._request("POST", url, json=data)
        if not payload.get("ok"):
            raise UpstreamError(self.platform.value, payload.get("description") or f"{method} failed")
        return payload

    async def send_message(
        self,
        endpoint: TelegramEndpoint,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = None,
        reply_to_message_id: Optional[int] = None,
    ) -> dict:
        """Send a text message to a Telegram chat."""
        data = {"chat_id": chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_to_message_id:
            data["reply_to_message_id"] = reply_to_message_id

        payload = await self._call(endpoint, "sendMessage", data)
        logger.info(
            "Telegram message sent",
            extra={"context": {"bot_id": endpoint.bot_id, "chat_id": chat_id}},
        )
        return payload.get("result") or {}

    async def set_webhook(self, endpoint: TelegramEndpoint, url: str, secret_token: Optional[str] = None) -> bool:
        data = {"url": url, "allowed_updates": ["message", "edited_message"]}
        if secret_token:
            data["secret_token"] = secret_token
        payload = await self._call(endpoint, "setWebhook", data)
        return bool(payload.get("result"))
