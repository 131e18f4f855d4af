"""Message Store: durable record of every inbound message the bridge accepted.

A message is saved as ``received`` once its conversation is known and turns
``processed`` after fan-out. A record left at ``received`` by a failed pass is
reset by the next delivery of the same id, so webhook redelivery can retry it.
"""

import copy
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatbridge.domain.conversation import utcnow
from chatbridge.domain.errors import NotFoundError
from chatbridge.domain.message import Message, MessageStatus, Platform, StoredMessage
from chatbridge.logging_config import get_logger
from chatbridge.models.message import MessageRecord

logger = get_logger("message_store")


class MessageStore(Protocol):
    async def save(self, message: Message, conversation_id: str) -> StoredMessage: ...

    async def exists(self, message_id: str) -> bool: ...

    async def is_processed(self, message_id: str) -> bool: ...

    async def mark(self, message_id: str, status: MessageStatus) -> None: ...

    async def find_by_id(self, message_id: str) -> Optional[StoredMessage]: ...

    async def list_for_conversation(self, conversation_id: str) -> list[StoredMessage]: ...


class InMemoryMessageStore:
    def __init__(self):
        self._by_id: dict[str, StoredMessage] = {}

    async def save(self, message: Message, conversation_id: str) -> StoredMessage:
        previous = self._by_id.get(message.id)
        stored = StoredMessage(message=message, conversation_id=conversation_id)
        if previous is not None:
            stored.created_at = previous.created_at
        self._by_id[message.id] = copy.deepcopy(stored)
        return stored

    async def exists(self, message_id: str) -> bool:
        return message_id in self._by_id

    async def is_processed(self, message_id: str) -> bool:
        stored = self._by_id.get(message_id)
        return stored is not None and stored.status == MessageStatus.PROCESSED

    async def mark(self, message_id: str, status: MessageStatus) -> None:
        stored = self._by_id.get(message_id)
        if stored is None:
            raise NotFoundError(f"Message not found: {message_id}")
        stored.status = status
        stored.processed_at = utcnow() if status == MessageStatus.PROCESSED else None

    async def find_by_id(self, message_id: str) -> Optional[StoredMessage]:
        stored = self._by_id.get(message_id)
        return copy.deepcopy(stored) if stored else None

    async def list_for_conversation(self, conversation_id: str) -> list[StoredMessage]:
        found = [copy.deepcopy(s) for s in self._by_id.values() if s.conversation_id == conversation_id]
        return sorted(found, key=lambda s: s.message.timestamp)


def _to_domain(record: MessageRecord) -> StoredMessage:
    return StoredMessage(
        message=Message(
            id=record.id,
            content=record.content,
            sender_id=record.sender_id,
            sender_name=record.sender_name or "",
            conversation_id=record.source_conversation_id,
            platform=Platform(record.platform),
            timestamp=record.sent_at,
            metadata=dict(record.message_metadata or {}),
        ),
        conversation_id=record.conversation_id,
        status=MessageStatus(record.status),
        created_at=record.created_at,
        processed_at=record.processed_at,
    )


def _fill(record: MessageRecord, message: Message, conversation_id: str) -> None:
    record.conversation_id = conversation_id
    record.platform = message.platform.value
    record.source_conversation_id = message.conversation_id
    record.sender_id = message.sender_id
    record.sender_name = message.sender_name
    record.content = message.content
    record.message_metadata = dict(message.metadata)
    record.sent_at = message.timestamp
    record.status = MessageStatus.RECEIVED.value
    record.processed_at = None


class SqlMessageStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, message: Message, conversation_id: str) -> StoredMessage:
        async with self.session_factory() as session:
            record = await session.get(MessageRecord, message.id)
            if record is None:
                record = MessageRecord(id=message.id, created_at=utcnow())
                session.add(record)
            else:
                logger.info(
                    "Message redelivered, resetting record",
                    extra={"context": {"message_id": message.id, "previous_status": record.status}},
                )
            _fill(record, message, conversation_id)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise NotFoundError(f"Conversation not found: {conversation_id}") from e
            return _to_domain(record)

    async def exists(self, message_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(select(MessageRecord.id).where(MessageRecord.id == message_id))
            return result.scalar() is not None

    async def is_processed(self, message_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(select(MessageRecord.status).where(MessageRecord.id == message_id))
            return result.scalar() == MessageStatus.PROCESSED.value

    async def mark(self, message_id: str, status: MessageStatus) -> None:
        async with self.session_factory() as session:
            record = await session.get(MessageRecord, message_id)
            if record is None:
                raise NotFoundError(f"Message not found: {message_id}")
            record.status = status.value
            record.processed_at = utcnow() if status == MessageStatus.PROCESSED else None
            await session.commit()

    async def find_by_id(self, message_id: str) -> Optional[StoredMessage]:
        async with self.session_factory() as session:
            record = await session.get(MessageRecord, message_id)
            return _to_domain(record) if record else None

    async def list_for_conversation(self, conversation_id: str) -> list[StoredMessage]:
        query = (
            select(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .order_by(MessageRecord.sent_at)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_domain(record) for record in result.scalars().all()]
