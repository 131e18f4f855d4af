from typing import Optional


class BridgeError(Exception):
    """Base class for bridge failures."""


class ValidationError(BridgeError):
    def __init__(self, subject: str, errors: list[str]):
        self.subject = subject
        self.errors = errors
        super().__init__(f"{subject} validation failed: {', '.join(errors)}")


class NotFoundError(BridgeError):
    pass


class DuplicateConversationError(BridgeError):
    def __init__(self, platform: str, chat_id: str):
        self.platform = platform
        self.chat_id = chat_id
        super().__init__(f"Conversation already exists for {platform}/{chat_id}")


class UpstreamError(BridgeError):
    """An adapter call to an external platform failed."""

    def __init__(self, platform: str, message: str, status_code: Optional[int] = None):
        self.platform = platform
        self.status_code = status_code
        super().__init__(f"{platform}: {message}")


class ConfigurationError(BridgeError):
    pass
