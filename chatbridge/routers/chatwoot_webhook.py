from fastapi import APIRouter, Depends, Request

from chatbridge.logging_config import get_logger
from chatbridge.routers.deps import get_bridge, route_message
from chatbridge.schemas.telegram import WebhookResponse
from chatbridge.services.bridge_factory import Bridge
from chatbridge.services.normalizers import ChatwootNormalizer

logger = get_logger("chatwoot_webhook")

router = APIRouter()
normalizer = ChatwootNormalizer()


@router.post("/webhook/chatwoot", response_model=WebhookResponse)
async def handle_chatwoot_webhook(request: Request, bridge: Bridge = Depends(get_bridge)):
    try:
        body = await request.json()
    except ValueError:
        return WebhookResponse(success=False, status="invalid", message="Invalid chatwoot payload")
    if not isinstance(body, dict):
        return WebhookResponse(success=False, status="invalid", message="Invalid chatwoot payload")

    logger.debug("Chatwoot webhook received", extra={"context": {"event": body.get("event")}})
    message = normalizer.normalize(body)
    if message is None:
        return WebhookResponse(success=True, status="ignored")
    return await route_message(bridge, message)
