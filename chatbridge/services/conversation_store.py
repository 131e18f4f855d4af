"""Conversation Store: durable (platform, chat_id) -> Conversation mapping."""

import copy
from dataclasses import fields
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy import update as sql_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatbridge.domain.conversation import ChatType, Conversation, ConversationStatus, Participant, utcnow
from chatbridge.domain.errors import DuplicateConversationError, NotFoundError, ValidationError
from chatbridge.logging_config import get_logger
from chatbridge.models.conversation import ConversationRecord

logger = get_logger("conversation_store")

CONVERSATION_FIELDS = tuple(f.name for f in fields(Conversation))
IMMUTABLE_FIELDS = {"id", "platform", "chat_id", "created_at"}


class ConversationStore(Protocol):
    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]: ...

    async def find_by_platform_chat_id(self, platform: str, chat_id: str) -> Optional[Conversation]: ...

    async def find_by_foreign_id(self, chatwoot_id: str) -> Optional[Conversation]: ...

    async def save(self, conversation: Conversation) -> Conversation: ...

    async def update(self, conversation_id: str, changes: dict[str, Any]) -> Conversation: ...

    async def list_conversations(
        self, platform: Optional[str] = None, active_only: bool = False
    ) -> list[Conversation]: ...


def _check_changes(changes: dict[str, Any]) -> None:
    unknown = [name for name in changes if name not in CONVERSATION_FIELDS]
    frozen = [name for name in changes if name in IMMUTABLE_FIELDS]
    errors = [f"unknown field {name}" for name in unknown] + [f"field {name} is immutable" for name in frozen]
    if errors:
        raise ValidationError("Conversation", errors)


def _apply(conversation: Conversation, changes: dict[str, Any]) -> Conversation:
    updated = copy.deepcopy(conversation)
    for name, value in changes.items():
        setattr(updated, name, value)
    if "updated_at" not in changes:
        updated.updated_at = utcnow()
    return updated.validate()


class InMemoryConversationStore:
    """Process-local store. Used in tests and single-instance setups."""

    def __init__(self):
        self._by_id: dict[str, Conversation] = {}

    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]:
        found = self._by_id.get(conversation_id)
        return copy.deepcopy(found) if found else None

    async def find_by_platform_chat_id(self, platform: str, chat_id: str) -> Optional[Conversation]:
        for conversation in self._by_id.values():
            if conversation.platform == platform and conversation.chat_id == str(chat_id):
                return copy.deepcopy(conversation)
        return None

    async def find_by_foreign_id(self, chatwoot_id: str) -> Optional[Conversation]:
        for conversation in self._by_id.values():
            if conversation.chatwoot_id == str(chatwoot_id):
                return copy.deepcopy(conversation)
        return None

    async def save(self, conversation: Conversation) -> Conversation:
        conversation.validate()
        for existing in self._by_id.values():
            if existing.platform == conversation.platform and existing.chat_id == conversation.chat_id:
                raise DuplicateConversationError(conversation.platform, conversation.chat_id)
        self._by_id[conversation.id] = copy.deepcopy(conversation)
        return copy.deepcopy(conversation)

    async def update(self, conversation_id: str, changes: dict[str, Any]) -> Conversation:
        _check_changes(changes)
        current = self._by_id.get(conversation_id)
        if current is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")
        updated = _apply(current, changes)
        self._by_id[conversation_id] = updated
        return copy.deepcopy(updated)

    async def list_conversations(self, platform: Optional[str] = None, active_only: bool = False) -> list[Conversation]:
        result = []
        for conversation in self._by_id.values():
            if platform and conversation.platform != platform:
                continue
            if active_only and not (conversation.is_active and conversation.status == ConversationStatus.ACTIVE):
                continue
            result.append(copy.deepcopy(conversation))
        return sorted(result, key=lambda c: c.updated_at, reverse=True)


def _to_column(name: str, value: Any) -> Any:
    if name == "participants":
        return [p.to_dict() if isinstance(p, Participant) else p for p in value or []]
    if name in ("chat_type", "status"):
        return getattr(value, "value", value)
    return value


def _to_domain(record: ConversationRecord) -> Conversation:
    return Conversation(
        id=record.id,
        platform=record.platform,
        chat_id=record.chat_id,
        chat_type=ChatType(record.chat_type),
        chat_title=record.chat_title,
        chat_username=record.chat_username,
        chat_description=record.chat_description,
        sender_id=record.sender_id,
        sender_username=record.sender_username,
        sender_first_name=record.sender_first_name,
        sender_last_name=record.sender_last_name,
        sender_language_code=record.sender_language_code,
        sender_is_bot=record.sender_is_bot,
        sender_email=record.sender_email,
        group_id=record.group_id,
        group_title=record.group_title,
        group_username=record.group_username,
        group_description=record.group_description,
        group_member_count=record.group_member_count,
        group_is_verified=record.group_is_verified,
        group_is_restricted=record.group_is_restricted,
        chatwoot_id=record.chatwoot_id,
        chatwoot_inbox_id=record.chatwoot_inbox_id,
        dify_id=record.dify_id,
        participants=[Participant.from_dict(p) for p in record.participants or []],
        platform_metadata=dict(record.platform_metadata or {}),
        chatwoot_metadata=dict(record.chatwoot_metadata or {}),
        status=ConversationStatus(record.status),
        is_active=record.is_active,
        created_at=record.created_at,
        updated_at=record.updated_at,
        last_message_at=record.last_message_at,
    )


def _to_record(conversation: Conversation) -> ConversationRecord:
    return ConversationRecord(**{name: _to_column(name, getattr(conversation, name)) for name in CONVERSATION_FIELDS})


class SqlConversationStore:
    """SQLAlchemy-backed store.

    The unique (platform, chat_id) constraint is the arbiter for concurrent
    creation: the losing insert raises DuplicateConversationError and the
    caller re-reads the winner. ``update`` writes only the changed columns.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _first(self, *criteria) -> Optional[Conversation]:
        async with self.session_factory() as session:
            result = await session.execute(select(ConversationRecord).where(*criteria).limit(1))
            record = result.scalars().first()
            return _to_domain(record) if record else None

    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]:
        return await self._first(ConversationRecord.id == conversation_id)

    async def find_by_platform_chat_id(self, platform: str, chat_id: str) -> Optional[Conversation]:
        return await self._first(ConversationRecord.platform == platform, ConversationRecord.chat_id == str(chat_id))

    async def find_by_foreign_id(self, chatwoot_id: str) -> Optional[Conversation]:
        return await self._first(ConversationRecord.chatwoot_id == str(chatwoot_id))

    async def save(self, conversation: Conversation) -> Conversation:
        conversation.validate()
        async with self.session_factory() as session:
            session.add(_to_record(conversation))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.info(
                    "Conversation insert lost race",
                    extra={"context": {"conversation_id": conversation.id, "error": str(e.orig)}},
                )
                raise DuplicateConversationError(conversation.platform, conversation.chat_id) from e
        return conversation

    async def update(self, conversation_id: str, changes: dict[str, Any]) -> Conversation:
        _check_changes(changes)
        current = await self.find_by_id(conversation_id)
        if current is None:
            raise NotFoundError(f"Conversation not found: {conversation_id}")
        updated = _apply(current, changes)

        columns = {name: _to_column(name, getattr(updated, name)) for name in changes}
        columns["updated_at"] = updated.updated_at
        async with self.session_factory() as session:
            result = await session.execute(
                sql_update(ConversationRecord).where(ConversationRecord.id == conversation_id).values(**columns)
            )
            await session.commit()
            if result.rowcount == 0:
                raise NotFoundError(f"Conversation not found: {conversation_id}")
        return updated

    async def list_conversations(self, platform: Optional[str] = None, active_only: bool = False) -> list[Conversation]:
        query = select(ConversationRecord)
        if platform:
            query = query.where(ConversationRecord.platform == platform)
        if active_only:
            query = query.where(ConversationRecord.is_active.is_(True), ConversationRecord.status == "active")
        query = query.order_by(ConversationRecord.updated_at.desc())
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_domain(record) for record in result.scalars().all()]
