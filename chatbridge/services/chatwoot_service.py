from typing import Optional

from chatbridge.domain.conversation import Conversation
from chatbridge.domain.errors import UpstreamError
from chatbridge.domain.message import Message, Platform
from chatbridge.domain.routing import ChatwootEndpoint
from chatbridge.logging_config import get_logger
from chatbridge.services.platforms import PlatformService

logger = get_logger("chatwoot_service")


class ChatwootService(PlatformService):
    """Chatwoot application API client.

    Conversations are mirrored into one API inbox per source platform
    ("Telegram"), found by name or created on first use unless the account
    pins an inbox id.
    """

    platform = Platform.CHATWOOT

    def __init__(self, client, timeout: float = 30.0):
        super().__init__(client, timeout)
        self._inbox_cache: dict[tuple[str, str, str], str] = {}

    @staticmethod
    def _base(endpoint: ChatwootEndpoint) -> str:
        return f"{endpoint.api_url.rstrip('/')}/api/v1/accounts/{endpoint.account_id}"

    @staticmethod
    def _headers(endpoint: ChatwootEndpoint) -> dict:
        return {"api_access_token": endpoint.api_token}

    async def _call(self, endpoint: ChatwootEndpoint, method: str, path: str, **kwargs) -> dict:
        return await self._request(method, self._base(endpoint) + path, headers=self._headers(endpoint), **kwargs)

    async def get_or_create_platform_inbox(self, endpoint: ChatwootEndpoint, platform: str) -> str:
        if endpoint.inbox_id:
            return str(endpoint.inbox_id)
        cache_key = (endpoint.api_url, endpoint.account_id, platform)
        if cache_key in self._inbox_cache:
            return self._inbox_cache[cache_key]

        name = platform.capitalize()
        data = await self._call(endpoint, "GET", "/inboxes")
        inbox = next(
            (i for i in data.get("payload") or [] if i.get("channel_type") == "Channel::Api" and i.get("name") == name),
            None,
        )
        if inbox is None:
            logger.info(f"{name} inbox not found, creating", extra={"context": {"account_id": endpoint.account_id}})
            inbox = await self._call(endpoint, "POST", "/inboxes", json={"name": name, "channel": {"type": "api"}})

        inbox_id = str(inbox["id"])
        self._inbox_cache[cache_key] = inbox_id
        return inbox_id

    async def get_conversation(self, endpoint: ChatwootEndpoint, conversation_id: str) -> dict:
        return await self._call(endpoint, "GET", f"/conversations/{conversation_id}")

    async def find_conversation_by_source_id(
        self, endpoint: ChatwootEndpoint, source_id: str, inbox_id: str
    ) -> Optional[dict]:
        data = await self._call(
            endpoint, "GET", "/conversations", params={"inbox_id": inbox_id, "source_id": source_id}
        )
        found = data.get("data")
        if isinstance(found, dict):
            found = found.get("payload")
        return found[0] if found else None

    async def create_conversation(
        self, endpoint: ChatwootEndpoint, conversation: Conversation, message: Message, inbox_id: str
    ) -> dict:
        sender_id = conversation.sender_id or message.sender_id
        username = conversation.sender_username or ""
        if conversation.sender_first_name or conversation.sender_last_name:
            contact_name = conversation.sender_display_name
        elif username:
            contact_name = f"@{username}"
        else:
            contact_name = message.sender_name or "Telegram User"

        contact = {"name": contact_name, "identifier": sender_id}
        if conversation.sender_email:
            contact["email"] = conversation.sender_email

        payload = {
            "source_id": conversation.id,
            "inbox_id": inbox_id,
            "contact": contact,
            "additional_attributes": {
                "platform": conversation.platform,
                "conversation_id": conversation.id,
                "chat_title": conversation.chat_display_name,
                "telegram_username": username,
                "telegram_user_id": sender_id,
            },
        }
        logger.info(
            "Creating Chatwoot conversation",
            extra={"context": {"conversation_id": conversation.id, "inbox_id": inbox_id, "contact": contact_name}},
        )
        data = await self._call(endpoint, "POST", "/conversations", json=payload)
        return data.get("payload") or data

    async def create_or_update_conversation(
        self, endpoint: ChatwootEndpoint, conversation: Conversation, message: Message
    ) -> dict:
        """Find or create the mirrored conversation and post the message into it.

        Returns ``{"id": ..., "inbox_id": ..., "message_id": ...}``.
        """
        inbox_id = await self.get_or_create_platform_inbox(endpoint, conversation.platform)

        remote = None
        if conversation.chatwoot_id:
            try:
                remote = await self.get_conversation(endpoint, conversation.chatwoot_id)
            except UpstreamError as e:
                if e.status_code != 404:
                    raise
                logger.warning(
                    "Bridged Chatwoot conversation is gone, recreating",
                    extra={"context": {"conversation_id": conversation.id, "chatwoot_id": conversation.chatwoot_id}},
                )
        if remote is None:
            remote = await self.find_conversation_by_source_id(endpoint, conversation.id, inbox_id)
        if remote is None:
            remote = await self.create_conversation(endpoint, conversation, message, inbox_id)
        if not remote or not remote.get("id"):
            raise UpstreamError(self.platform.value, "no conversation returned")

        sent = await self.send_message(endpoint, str(remote["id"]), message.content, message_type="incoming")
        return {
            "id": str(remote["id"]),
            "inbox_id": str(remote.get("inbox_id") or inbox_id),
            "message_id": str(sent["id"]) if sent.get("id") else None,
        }

    async def send_message(
        self,
        endpoint: ChatwootEndpoint,
        conversation_id: str,
        content: str,
        message_type: str = "incoming",
        private: bool = False,
    ) -> dict:
        payload = {"content": content, "message_type": message_type, "private": private, "content_type": "text"}
        data = await self._call(endpoint, "POST", f"/conversations/{conversation_id}/messages", json=payload)
        logger.info(
            "Message sent to Chatwoot",
            extra={"context": {"chatwoot_id": conversation_id, "message_type": message_type, "id": data.get("id")}},
        )
        return data
