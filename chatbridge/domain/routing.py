from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RoutingFlags:
    telegram_to_chatwoot: bool = False
    telegram_to_dify: bool = False
    chatwoot_to_telegram: bool = False
    dify_to_chatwoot: bool = False
    dify_to_telegram: bool = False

    @classmethod
    def derive(cls, has_chatwoot: bool, has_dify: bool) -> "RoutingFlags":
        """Flags implied by which destinations a mapping points at."""
        return cls(
            telegram_to_chatwoot=has_chatwoot,
            telegram_to_dify=has_dify,
            chatwoot_to_telegram=has_chatwoot,
            dify_to_chatwoot=has_chatwoot and has_dify,
            dify_to_telegram=has_dify,
        )


@dataclass(frozen=True)
class AutoConnect:
    telegram_chatwoot: bool = False
    telegram_dify: bool = False


@dataclass(frozen=True)
class TelegramEndpoint:
    bot_id: str
    bot_token: str
    bot_username: Optional[str] = None


@dataclass(frozen=True)
class ChatwootEndpoint:
    account_id: str
    api_url: str
    api_token: str
    inbox_id: Optional[str] = None


@dataclass(frozen=True)
class DifyEndpoint:
    app_id: str
    api_url: str
    api_key: str


@dataclass(frozen=True)
class MappingRoute:
    id: str
    telegram_bot_id: Optional[str] = None
    chatwoot_account_id: Optional[str] = None
    dify_app_id: Optional[str] = None
    routing: RoutingFlags = field(default_factory=RoutingFlags)
    auto_connect: AutoConnect = field(default_factory=AutoConnect)
    telegram: Optional[TelegramEndpoint] = None
    chatwoot: Optional[ChatwootEndpoint] = None
    dify: Optional[DifyEndpoint] = None

    @property
    def forwards_to_chatwoot(self) -> bool:
        return self.routing.telegram_to_chatwoot or self.auto_connect.telegram_chatwoot

    @property
    def forwards_to_dify(self) -> bool:
        return self.routing.telegram_to_dify or self.auto_connect.telegram_dify


@dataclass(frozen=True)
class RoutingConfiguration:
    has_mapping: bool
    mappings: tuple[MappingRoute, ...] = ()

    @staticmethod
    def empty() -> "RoutingConfiguration":
        return RoutingConfiguration(has_mapping=False)

    @staticmethod
    def of(mappings: list[MappingRoute]) -> "RoutingConfiguration":
        return RoutingConfiguration(has_mapping=bool(mappings), mappings=tuple(mappings))


ROUTED = "routed"
PARTIAL = "partial"
DUPLICATE = "duplicate"
SKIPPED = "skipped"


@dataclass
class RoutingResult:
    """Outcome of routing one inbound message.

    ``ok`` is False only for partial results (no mapping, missing downstream
    id); duplicates and skipped bot messages are successful no-ops.
    """

    ok: bool
    status: str
    message_id: str
    conversation_id: Optional[str] = None
    deliveries: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    @staticmethod
    def duplicate(message_id: str) -> "RoutingResult":
        return RoutingResult(ok=True, status=DUPLICATE, message_id=message_id, notes=["duplicate, skipped"])

    @staticmethod
    def skipped(message_id: str, reason: str, conversation_id: Optional[str] = None) -> "RoutingResult":
        return RoutingResult(
            ok=True, status=SKIPPED, message_id=message_id, conversation_id=conversation_id, notes=[reason]
        )

    @staticmethod
    def partial(message_id: str, conversation_id: str, reason: str) -> "RoutingResult":
        return RoutingResult(
            ok=False, status=PARTIAL, message_id=message_id, conversation_id=conversation_id, notes=[reason]
        )

    def delivered(self, destination: str) -> None:
        self.deliveries.append(destination)

    def note(self, text: str) -> None:
        self.notes.append(text)
