from typing import Optional

from pydantic import BaseModel, ConfigDict


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str  # private, group, supergroup, channel
    title: Optional[str] = None
    username: Optional[str] = None
    description: Optional[str] = None


class TelegramMessageEntity(BaseModel):
    type: str  # mention, text_mention, bot_command, ...
    offset: int
    length: int
    user: Optional[TelegramUser] = None


class TelegramMessage(BaseModel):
    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = None  # "from" is reserved in Python
    text: Optional[str] = None
    entities: Optional[list[TelegramMessageEntity]] = None

    model_config = ConfigDict(populate_by_name=True)

    def __init__(self, **data):
        if "from" in data:
            data["from_user"] = data.pop("from")
        super().__init__(**data)


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None


class WebhookResponse(BaseModel):
    success: bool
    status: Optional[str] = None
    message: Optional[str] = None
    conversation_id: Optional[str] = None
