from unittest.mock import AsyncMock

import pytest

from chatbridge.domain.message import Platform
from chatbridge.domain.routing import MappingRoute
from chatbridge.services.conversation_store import InMemoryConversationStore
from chatbridge.services.dedup_service import DedupCooldownController, InMemoryBridgeState
from chatbridge.services.dify_service import DifyReply
from chatbridge.services.message_router import MessageRouter
from chatbridge.services.message_store import InMemoryMessageStore
from chatbridge.services.platforms import PlatformRegistry
from chatbridge.services.routing_resolver import StaticRoutingResolver
from tests.factories import FALLBACK, FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def messages():
    return InMemoryMessageStore()


@pytest.fixture
def dedup(clock):
    return DedupCooldownController(InMemoryBridgeState(clock=clock), cooldown_ms=5000, clock=clock)


@pytest.fixture
def telegram():
    service = AsyncMock()
    service.send_message.return_value = {"message_id": 77}
    return service


@pytest.fixture
def chatwoot():
    service = AsyncMock()
    service.create_or_update_conversation.return_value = {"id": "cw-1", "inbox_id": "5", "message_id": "800"}
    service.send_message.return_value = {"id": 901}
    return service


@pytest.fixture
def dify():
    service = AsyncMock()
    service.send_message.return_value = DifyReply(conversation_id="d1", answer="Hi Bob!")
    return service


@pytest.fixture
def platforms(telegram, chatwoot, dify):
    return PlatformRegistry({Platform.TELEGRAM: telegram, Platform.CHATWOOT: chatwoot, Platform.DIFY: dify})


@pytest.fixture
def make_router(store, messages, dedup, platforms):
    def _make(*mappings: MappingRoute, alerts=None) -> MessageRouter:
        resolver = StaticRoutingResolver({"7": list(mappings)} if mappings else {})
        return MessageRouter(
            store=store,
            messages=messages,
            resolver=resolver,
            dedup=dedup,
            platforms=platforms,
            cooldown_ms=5000,
            ai_fallback_reply=FALLBACK,
            alerts=alerts,
        )

    return _make
