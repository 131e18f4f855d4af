from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from chatbridge.domain.errors import ValidationError


class Platform(str, Enum):
    TELEGRAM = "telegram"
    CHATWOOT = "chatwoot"
    DIFY = "dify"


@dataclass(frozen=True)
class Message:
    """Normalized message as produced by a platform normalizer.

    ``metadata`` carries the platform specifics the engine needs: chat and
    sender attributes, the receiving bot or account id, group flags.
    """

    id: str
    content: str
    sender_id: str
    conversation_id: str
    platform: Platform
    sender_name: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> "Message":
        errors = []
        if not self.id:
            errors.append("id is required")
        if not (self.content or "").strip():
            errors.append("content is required")
        if not self.sender_id:
            errors.append("sender_id is required")
        if not self.conversation_id:
            errors.append("conversation_id is required")
        if not self.platform:
            errors.append("platform is required")
        elif not isinstance(self.platform, Platform):
            errors.append(f"unknown platform {self.platform!r}")
        if errors:
            raise ValidationError("Message", errors)
        return self

    @property
    def is_group_message(self) -> bool:
        return bool(self.metadata.get("is_group_chat"))

    @property
    def formatted_content(self) -> str:
        if self.is_group_message:
            return f"[{self.sender_name}]: {self.content}"
        return self.content

    @property
    def sender(self) -> dict[str, Any]:
        return self.metadata.get("sender") or {}

    @property
    def chat(self) -> dict[str, Any]:
        return self.metadata.get("chat") or {}

    @property
    def is_from_bot(self) -> bool:
        sender = self.sender
        return sender.get("is_bot") is True or sender.get("type") == "agent_bot"


class MessageStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"


@dataclass
class StoredMessage:
    """Persisted copy of an inbound message, linked to its bridged conversation."""

    message: Message
    conversation_id: str
    status: MessageStatus = MessageStatus.RECEIVED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    processed_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.message.id
