import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from chatbridge.logging_config import get_logger
from chatbridge.routers.deps import get_bridge, route_message
from chatbridge.schemas.telegram import WebhookResponse
from chatbridge.services.bridge_factory import Bridge
from chatbridge.services.normalizers import TelegramNormalizer

logger = get_logger("telegram_webhook")

router = APIRouter()
normalizer = TelegramNormalizer()


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """Parse a Telegram update; undecodable bytes become U+FFFD. Returns dict or None."""
    raw = await request.body()
    try:
        return json.loads(raw.decode("utf-8", errors="replace"))
    except ValueError:
        logger.error("Failed to decode Telegram webhook payload", extra={"context": {"size": len(raw)}})
        return None


@router.post("/webhook/telegram/{bot_id}", response_model=WebhookResponse)
async def handle_telegram_webhook(
    bot_id: str,
    request: Request,
    bridge: Bridge = Depends(get_bridge),
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    expected = request.app.state.settings.telegram_webhook_secret
    if expected and secret_token != expected:
        raise HTTPException(status_code=401, detail="Invalid secret token")

    body = await parse_telegram_update(request)
    if not isinstance(body, dict):
        return WebhookResponse(success=False, status="invalid", message="Invalid telegram payload")

    bot = await bridge.router.resolver.identify_telegram_bot(bot_id)
    if bot is None:
        logger.warning("Update for unknown bot", extra={"context": {"bot_id": bot_id}})
        return WebhookResponse(success=False, status="ignored", message="Unknown bot")

    message = normalizer.normalize(body, bot_id=bot.bot_id, bot_username=bot.bot_username)
    if message is None:
        return WebhookResponse(success=True, status="ignored")
    return await route_message(bridge, message)
