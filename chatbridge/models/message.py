from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from chatbridge.database import Base
from chatbridge.models.conversation import JSONType


class MessageRecord(Base):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("status IN ('received', 'processed')", name="ck_messages_status"),
        Index("ix_messages_conversation_id", "conversation_id"),
    )

    id = Column(Text, primary_key=True)  # normalized message id, unique per platform
    conversation_id = Column(Text, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    platform = Column(Text, nullable=False)
    source_conversation_id = Column(Text, nullable=False)
    sender_id = Column(Text, nullable=False)
    sender_name = Column(Text)
    content = Column(Text, nullable=False)
    message_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    status = Column(Text, nullable=False, default="received")
    sent_at = Column(TIMESTAMP(timezone=True), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    processed_at = Column(TIMESTAMP(timezone=True))
