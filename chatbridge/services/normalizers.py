"""Webhook payload -> Message. ``None`` means the update is not routable."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from chatbridge.domain.message import Message, Platform
from chatbridge.logging_config import get_logger
from chatbridge.schemas.chatwoot import ChatwootSender, ChatwootWebhook
from chatbridge.schemas.telegram import TelegramMessage, TelegramUpdate

logger = get_logger("normalizers")

TELEGRAM_GROUP_TYPES = {"group", "supergroup"}
MENTION_ENTITY_TYPES = {"mention", "text_mention"}


def _is_bot_mentioned(message: TelegramMessage, bot_id: str, bot_username: Optional[str]) -> bool:
    text = message.text or ""
    username = (bot_username or "").lstrip("@")
    if username and f"@{username}" in text:
        return True
    for entity in message.entities or []:
        if entity.type not in MENTION_ENTITY_TYPES:
            continue
        if entity.user and str(entity.user.id) == str(bot_id):
            return True
        if username and username in text[entity.offset : entity.offset + entity.length]:
            return True
    return False


class TelegramNormalizer:
    platform = Platform.TELEGRAM

    def normalize(self, raw: dict, bot_id: str, bot_username: Optional[str] = None) -> Optional[Message]:
        try:
            update = TelegramUpdate(**raw)
        except PydanticValidationError as e:
            logger.warning("Unparseable Telegram update", extra={"context": {"errors": e.errors()}})
            return None

        message = update.message or update.edited_message
        if message is None or not message.text or message.from_user is None:
            logger.debug("Ignoring non-text Telegram update", extra={"context": {"update_id": update.update_id}})
            return None

        chat, sender = message.chat, message.from_user
        is_group = chat.type in TELEGRAM_GROUP_TYPES
        base_id = str(chat.id) if is_group else str(sender.id)
        conversation_id = f"{base_id}_bot_{bot_id}"
        mentioned = is_group and _is_bot_mentioned(message, bot_id, bot_username)
        full_name = f"{sender.first_name or ''} {sender.last_name or ''}".strip()

        return Message(
            id=f"{message.message_id}_{conversation_id}",
            content=message.text,
            sender_id=str(sender.id),
            sender_name=full_name or sender.username or f"User {sender.id}",
            conversation_id=conversation_id,
            platform=Platform.TELEGRAM,
            timestamp=datetime.fromtimestamp(message.date, tz=timezone.utc),
            metadata={
                "is_group_chat": is_group,
                "is_bot_mentioned": mentioned,
                "should_respond_with_ai": not is_group or mentioned,
                "bot_id": str(bot_id),
                "message_id": message.message_id,
                "chat": {
                    "id": str(chat.id),
                    "type": chat.type,
                    "title": chat.title,
                    "username": chat.username,
                    "description": chat.description,
                },
                "sender": {
                    "id": str(sender.id),
                    "username": sender.username,
                    "first_name": sender.first_name,
                    "last_name": sender.last_name,
                    "language_code": sender.language_code,
                    "is_bot": sender.is_bot,
                },
            },
        )


class ChatwootNormalizer:
    platform = Platform.CHATWOOT

    def normalize(self, raw: dict) -> Optional[Message]:
        try:
            payload = ChatwootWebhook(**raw)
        except PydanticValidationError as e:
            logger.warning("Unparseable Chatwoot webhook", extra={"context": {"errors": e.errors()}})
            return None

        if payload.event != "message_created":
            return None
        if payload.private or payload.message_type not in ("incoming", "outgoing"):
            return None
        if payload.id is None or payload.conversation is None or not payload.content:
            return None

        sender = payload.sender or ChatwootSender()
        conversation = payload.conversation
        return Message(
            id=f"{payload.id}_chatwoot",
            content=payload.content,
            sender_id=str(sender.id) if sender.id is not None else "unknown",
            sender_name=sender.name or "",
            conversation_id=str(conversation.id),
            platform=Platform.CHATWOOT,
            metadata={
                "message_id": str(payload.id),
                "conversation_id": str(conversation.id),
                "inbox_id": str(conversation.inbox_id) if conversation.inbox_id is not None else None,
                "account_id": str(payload.account.id) if payload.account else None,
                "message_type": payload.message_type,
                "is_outgoing": payload.message_type == "outgoing",
                "chat": {"type": "private"},
                "sender": {
                    "id": str(sender.id) if sender.id is not None else None,
                    "name": sender.name,
                    "type": sender.type,
                    "is_bot": sender.type == "agent_bot",
                },
            },
        )
