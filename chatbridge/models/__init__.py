from chatbridge.models.accounts import ChatwootAccount, DifyApp, TelegramBot
from chatbridge.models.conversation import ConversationRecord
from chatbridge.models.message import MessageRecord
from chatbridge.models.platform_mapping import PlatformMapping

__all__ = [
    "ChatwootAccount",
    "ConversationRecord",
    "DifyApp",
    "MessageRecord",
    "PlatformMapping",
    "TelegramBot",
]
