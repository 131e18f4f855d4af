from sqlalchemy import JSON, Boolean, CheckConstraint, Column, Index, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

from chatbridge.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ConversationRecord(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("platform", "chat_id", name="uq_conversations_platform_chat"),
        CheckConstraint("chat_type IN ('private', 'group', 'supergroup', 'channel')", name="ck_conversations_chat_type"),
        CheckConstraint("status IN ('active', 'archived', 'blocked', 'deleted')", name="ck_conversations_status"),
        Index("ix_conversations_chatwoot_id", "chatwoot_id"),
        Index("ix_conversations_dify_id", "dify_id"),
    )

    id = Column(Text, primary_key=True)  # <platform>_<chat_id>
    platform = Column(Text, nullable=False)  # telegram, chatwoot
    chat_type = Column(Text, nullable=False, default="private")
    chat_id = Column(Text, nullable=False)
    chat_title = Column(Text)
    chat_username = Column(Text)
    chat_description = Column(Text)

    sender_id = Column(Text)
    sender_username = Column(Text)
    sender_first_name = Column(Text)
    sender_last_name = Column(Text)
    sender_language_code = Column(Text)
    sender_is_bot = Column(Boolean)
    sender_email = Column(Text)  # set by the /email command

    group_id = Column(Text)
    group_title = Column(Text)
    group_username = Column(Text)
    group_description = Column(Text)
    group_member_count = Column(Integer)
    group_is_verified = Column(Boolean)
    group_is_restricted = Column(Boolean)

    chatwoot_id = Column(Text)
    chatwoot_inbox_id = Column(Text)
    dify_id = Column(Text)

    participants = Column(JSONType, nullable=False, default=list)
    platform_metadata = Column(JSONType, nullable=False, default=dict)
    chatwoot_metadata = Column(JSONType, nullable=False, default=dict)

    status = Column(Text, nullable=False, default="active")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_message_at = Column(TIMESTAMP(timezone=True))
