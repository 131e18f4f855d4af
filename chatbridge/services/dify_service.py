from dataclasses import dataclass
from typing import Optional

from chatbridge.domain.errors import UpstreamError
from chatbridge.domain.message import Platform
from chatbridge.domain.routing import DifyEndpoint
from chatbridge.logging_config import get_logger
from chatbridge.services.platforms import PlatformService

logger = get_logger("dify_service")


@dataclass
class DifyReply:
    conversation_id: str
    answer: str
    message_id: Optional[str] = None


class DifyService(PlatformService):
    platform = Platform.DIFY

    async def send_message(
        self,
        endpoint: DifyEndpoint,
        query: str,
        user: str,
        conversation_id: Optional[str] = None,
    ) -> DifyReply:
        """Blocking chat-messages call. Reuses the Dify conversation when an id is known."""
        payload = {"inputs": {}, "query": query, "response_mode": "blocking", "user": user}
        if conversation_id:
            payload["conversation_id"] = conversation_id

        data = await self._request(
            "POST",
            f"{endpoint.api_url.rstrip('/')}/v1/chat-messages",
            json=payload,
            headers={"Authorization": f"Bearer {endpoint.api_key}"},
        )
        if not data.get("conversation_id"):
            raise UpstreamError(self.platform.value, "response has no conversation_id")

        logger.info(
            "Dify reply received",
            extra={
                "context": {
                    "app_id": endpoint.app_id,
                    "conversation_id": data["conversation_id"],
                    "mode": "continuous" if conversation_id else "new",
                }
            },
        )
        return DifyReply(
            conversation_id=data["conversation_id"],
            answer=data.get("answer") or "",
            message_id=data.get("message_id"),
        )
