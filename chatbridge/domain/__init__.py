from chatbridge.domain.conversation import ChatType, Conversation, ConversationStatus, Participant
from chatbridge.domain.errors import (
    BridgeError,
    ConfigurationError,
    DuplicateConversationError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from chatbridge.domain.message import Message, MessageStatus, Platform, StoredMessage
from chatbridge.domain.routing import (
    AutoConnect,
    ChatwootEndpoint,
    DifyEndpoint,
    MappingRoute,
    RoutingConfiguration,
    RoutingFlags,
    RoutingResult,
    TelegramEndpoint,
)

__all__ = [
    "AutoConnect",
    "BridgeError",
    "ChatType",
    "ConfigurationError",
    "Conversation",
    "ChatwootEndpoint",
    "ConversationStatus",
    "DifyEndpoint",
    "DuplicateConversationError",
    "MappingRoute",
    "Message",
    "MessageStatus",
    "NotFoundError",
    "Participant",
    "Platform",
    "RoutingConfiguration",
    "RoutingFlags",
    "RoutingResult",
    "StoredMessage",
    "TelegramEndpoint",
    "UpstreamError",
    "ValidationError",
]
