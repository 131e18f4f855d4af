"""Builds a MessageRouter and its collaborators from Settings."""

from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from chatbridge.config import Settings
from chatbridge.database import build_session_factory, create_engine_from_settings
from chatbridge.domain.errors import ConfigurationError
from chatbridge.domain.message import Platform
from chatbridge.logging_config import get_logger
from chatbridge.services.alert_service import AlertService
from chatbridge.services.chatwoot_service import ChatwootService
from chatbridge.services.conversation_store import InMemoryConversationStore, SqlConversationStore
from chatbridge.services.dedup_service import DedupCooldownController, InMemoryBridgeState, RedisBridgeState
from chatbridge.services.dify_service import DifyService
from chatbridge.services.message_router import MessageRouter
from chatbridge.services.message_store import InMemoryMessageStore, SqlMessageStore
from chatbridge.services.platforms import PlatformRegistry
from chatbridge.services.routing_resolver import SqlRoutingResolver, StaticRoutingResolver
from chatbridge.services.telegram_service import TelegramService

logger = get_logger("bridge_factory")


@dataclass
class Bridge:
    router: MessageRouter
    http_client: httpx.AsyncClient
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        await self.router.dedup.close()
        await self.http_client.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_state_backend(settings: Settings):
    if settings.state_backend == "redis":
        return RedisBridgeState.from_url(settings.redis_url)
    if settings.state_backend == "memory":
        return InMemoryBridgeState(max_entries=settings.processed_message_max_entries)
    raise ConfigurationError(f"Unknown state backend: {settings.state_backend}")


def build_bridge(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> Bridge:
    client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    timeout = settings.http_timeout_seconds

    platforms = PlatformRegistry(
        {
            Platform.TELEGRAM: TelegramService(client, api_base=settings.telegram_api_base, timeout=timeout),
            Platform.CHATWOOT: ChatwootService(client, timeout=timeout),
            Platform.DIFY: DifyService(client, timeout=timeout),
        }
    )

    engine = None
    if settings.store_backend == "database":
        engine = create_engine_from_settings(settings)
        session_factory = build_session_factory(engine)
        store = SqlConversationStore(session_factory)
        messages = SqlMessageStore(session_factory)
        resolver = SqlRoutingResolver(session_factory)
    elif settings.store_backend == "memory":
        store = InMemoryConversationStore()
        messages = InMemoryMessageStore()
        resolver = StaticRoutingResolver.from_settings(settings.static_mappings)
    else:
        raise ConfigurationError(f"Unknown store backend: {settings.store_backend}")

    dedup = DedupCooldownController(
        build_state_backend(settings),
        cooldown_ms=settings.get_cooldown_period(),
        processed_ttl_seconds=settings.processed_message_ttl_seconds,
    )
    alerts = AlertService(client, settings.alert_bot_token, settings.alert_chat_id, api_base=settings.telegram_api_base)

    router = MessageRouter(
        store=store,
        messages=messages,
        resolver=resolver,
        dedup=dedup,
        platforms=platforms,
        cooldown_ms=settings.get_cooldown_period(),
        ai_fallback_reply=settings.ai_fallback_reply,
        alerts=alerts,
    )
    logger.info(
        "Bridge built",
        extra={"context": {"store_backend": settings.store_backend, "state_backend": settings.state_backend}},
    )
    return Bridge(router=router, http_client=client, engine=engine)
