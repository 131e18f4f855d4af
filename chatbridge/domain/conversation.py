from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from chatbridge.domain.errors import ValidationError


class ChatType(str, Enum):
    PRIVATE = "private"
    GROUP = "group"
    SUPERGROUP = "supergroup"
    CHANNEL = "channel"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    BLOCKED = "blocked"
    DELETED = "deleted"


GROUP_CHAT_TYPES = {ChatType.GROUP, ChatType.SUPERGROUP, ChatType.CHANNEL}

SENDER_FIELDS = (
    "sender_id",
    "sender_username",
    "sender_first_name",
    "sender_last_name",
    "sender_language_code",
    "sender_is_bot",
    "sender_email",
)
CHAT_FIELDS = ("chat_title", "chat_username", "chat_description")
GROUP_FIELDS = (
    "group_id",
    "group_title",
    "group_username",
    "group_description",
    "group_member_count",
    "group_is_verified",
    "group_is_restricted",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_conversation_id(platform: str, chat_id: str) -> str:
    return f"{platform}_{chat_id}"


@dataclass
class Participant:
    id: str
    name: str = ""
    role: str = "user"

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "role": self.role}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Participant":
        return cls(id=str(data["id"]), name=data.get("name") or "", role=data.get("role") or "user")


@dataclass
class Conversation:
    """Bridge record tying one logical conversation to every platform it lives on."""

    platform: str
    chat_id: str
    chat_type: ChatType = ChatType.PRIVATE
    id: str = ""

    chat_title: Optional[str] = None
    chat_username: Optional[str] = None
    chat_description: Optional[str] = None

    sender_id: Optional[str] = None
    sender_username: Optional[str] = None
    sender_first_name: Optional[str] = None
    sender_last_name: Optional[str] = None
    sender_language_code: Optional[str] = None
    sender_is_bot: Optional[bool] = None
    sender_email: Optional[str] = None

    group_id: Optional[str] = None
    group_title: Optional[str] = None
    group_username: Optional[str] = None
    group_description: Optional[str] = None
    group_member_count: Optional[int] = None
    group_is_verified: Optional[bool] = None
    group_is_restricted: Optional[bool] = None

    chatwoot_id: Optional[str] = None
    chatwoot_inbox_id: Optional[str] = None
    dify_id: Optional[str] = None

    participants: list[Participant] = field(default_factory=list)
    platform_metadata: dict[str, Any] = field(default_factory=dict)
    chatwoot_metadata: dict[str, Any] = field(default_factory=dict)

    status: ConversationStatus = ConversationStatus.ACTIVE
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_message_at: Optional[datetime] = None

    def __post_init__(self):
        self.platform = str(getattr(self.platform, "value", self.platform))
        self.chat_id = str(self.chat_id)
        try:
            self.chat_type = ChatType(self.chat_type)
        except ValueError:
            pass  # reported by validate()
        if not self.id:
            self.id = build_conversation_id(self.platform, self.chat_id)

    @property
    def is_group_chat(self) -> bool:
        return self.chat_type in GROUP_CHAT_TYPES

    @property
    def sender_display_name(self) -> str:
        full_name = " ".join(p for p in (self.sender_first_name, self.sender_last_name) if p)
        return full_name or self.sender_username or f"User {self.sender_id}"

    @property
    def chat_display_name(self) -> str:
        if self.is_group_chat:
            return self.group_title or self.chat_title or f"Group {self.chat_id}"
        return self.chat_title or self.sender_display_name

    def add_participant(self, participant: Participant) -> bool:
        """Add participant if not yet known. Returns True when added."""
        if any(p.id == participant.id for p in self.participants):
            return False
        self.participants.append(participant)
        return True

    def touch(self, at: Optional[datetime] = None) -> None:
        self.last_message_at = at or utcnow()
        self.updated_at = utcnow()

    def merge_missing(self, values: dict[str, Any]) -> dict[str, Any]:
        """Fill fields that are still empty. Known values are never overwritten.

        Returns the subset of ``values`` that was actually applied.
        """
        applied = {}
        for name, value in values.items():
            if value is None:
                continue
            if name in GROUP_FIELDS and not self.is_group_chat:
                continue
            current = getattr(self, name)
            if current is None or current == "" or current == {}:
                setattr(self, name, value)
                applied[name] = value
        return applied

    def validate(self) -> "Conversation":
        errors = []
        if not self.platform:
            errors.append("platform is required")
        if not self.chat_id:
            errors.append("chat_id is required")
        try:
            self.chat_type = ChatType(self.chat_type)
        except ValueError:
            errors.append(f"invalid chat_type {self.chat_type!r}")
        try:
            self.status = ConversationStatus(self.status)
        except ValueError:
            errors.append(f"invalid status {self.status!r}")
        if not errors and not self.is_group_chat:
            present = [name for name in GROUP_FIELDS if getattr(self, name) is not None]
            if present:
                errors.append(f"group fields set on {self.chat_type.value} chat: {', '.join(present)}")
        if errors:
            raise ValidationError("Conversation", errors)
        return self
