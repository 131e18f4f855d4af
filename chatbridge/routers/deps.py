from fastapi import HTTPException, Request

from chatbridge.domain.errors import BridgeError, ValidationError
from chatbridge.domain.message import Message
from chatbridge.logging_config import get_logger
from chatbridge.schemas.telegram import WebhookResponse
from chatbridge.services.bridge_factory import Bridge

logger = get_logger("webhooks")


def get_bridge(request: Request) -> Bridge:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise HTTPException(status_code=503, detail="Bridge not initialised")
    return bridge


async def route_message(bridge: Bridge, message: Message) -> WebhookResponse:
    """Route and map bridge failures onto HTTP so the platform redelivers."""
    try:
        result = await bridge.router.route(message)
    except ValidationError as e:
        logger.warning(f"Rejected message: {e}", extra={"context": {"message_id": message.id}})
        return WebhookResponse(success=False, status="invalid", message=str(e))
    except BridgeError as e:
        logger.error(
            f"Routing failed: {e}",
            exc_info=True,
            extra={"context": {"message_id": message.id, "platform": message.platform.value}},
        )
        raise HTTPException(status_code=502, detail=str(e)) from e

    return WebhookResponse(
        success=True,
        status=result.status,
        message="; ".join(result.notes) or None,
        conversation_id=result.conversation_id,
    )
