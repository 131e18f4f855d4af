from typing import Optional

from pydantic import BaseModel, ConfigDict


class ChatwootSender(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    type: Optional[str] = None  # user, contact, agent_bot


class ChatwootAccountRef(BaseModel):
    id: int
    name: Optional[str] = None


class ChatwootConversationRef(BaseModel):
    id: int
    inbox_id: Optional[int] = None
    status: Optional[str] = None


class ChatwootWebhook(BaseModel):
    """Chatwoot webhook body. Only message_created carries a routable message."""

    event: str
    id: Optional[int] = None
    content: Optional[str] = None
    message_type: Optional[str] = None  # incoming, outgoing, activity, template
    private: bool = False
    sender: Optional[ChatwootSender] = None
    conversation: Optional[ChatwootConversationRef] = None
    account: Optional[ChatwootAccountRef] = None

    model_config = ConfigDict(extra="ignore")
