"""Routing Configuration Resolver.

Read-only lookups from a receiving entity (Telegram bot id, Chatwoot account
id) to the mappings that say where its messages go. Unknown or disabled
entities resolve to an empty configuration, never to an exception.
"""

from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatbridge.config import StaticMapping
from chatbridge.domain.routing import (
    AutoConnect,
    ChatwootEndpoint,
    DifyEndpoint,
    MappingRoute,
    RoutingConfiguration,
    RoutingFlags,
    TelegramEndpoint,
)
from chatbridge.logging_config import get_logger
from chatbridge.models import ChatwootAccount, DifyApp, PlatformMapping, TelegramBot

logger = get_logger("routing_resolver")


class RoutingResolver(Protocol):
    async def resolve(self, source_entity_id: str) -> RoutingConfiguration: ...

    async def resolve_for_support_account(self, external_account_id: str) -> RoutingConfiguration: ...

    async def identify_telegram_bot(self, bot_id: str) -> Optional[TelegramEndpoint]: ...


def _flags(row, has_chatwoot: bool, has_dify: bool) -> RoutingFlags:
    """Stored ``enable_*`` overrides on top of the derived defaults."""
    derived = RoutingFlags.derive(has_chatwoot, has_dify)

    def pick(stored: Optional[bool], fallback: bool) -> bool:
        return fallback if stored is None else bool(stored)

    return RoutingFlags(
        telegram_to_chatwoot=pick(row.enable_telegram_to_chatwoot, derived.telegram_to_chatwoot),
        telegram_to_dify=pick(row.enable_telegram_to_dify, derived.telegram_to_dify),
        chatwoot_to_telegram=pick(row.enable_chatwoot_to_telegram, derived.chatwoot_to_telegram),
        dify_to_chatwoot=pick(row.enable_dify_to_chatwoot, derived.dify_to_chatwoot),
        dify_to_telegram=pick(row.enable_dify_to_telegram, derived.dify_to_telegram),
    )


def _is_live(row) -> bool:
    return row is not None and row.is_active and row.deleted_at is None


class SqlRoutingResolver:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def resolve(self, source_entity_id: str) -> RoutingConfiguration:
        if not source_entity_id:
            return RoutingConfiguration.empty()
        query = select(PlatformMapping).where(
            PlatformMapping.source_platform == "telegram",
            PlatformMapping.source_id == str(source_entity_id),
        )
        return await self._load(query, {"bot_id": source_entity_id})

    async def resolve_for_support_account(self, external_account_id: str) -> RoutingConfiguration:
        if not external_account_id:
            return RoutingConfiguration.empty()
        accounts = select(ChatwootAccount.id).where(
            ChatwootAccount.account_id == str(external_account_id),
            ChatwootAccount.is_active.is_(True),
            ChatwootAccount.deleted_at.is_(None),
        )
        query = select(PlatformMapping).where(PlatformMapping.chatwoot_account_id.in_(accounts))
        return await self._load(query, {"chatwoot_account_id": external_account_id})

    async def identify_telegram_bot(self, bot_id: str) -> Optional[TelegramEndpoint]:
        if not str(bot_id).isdigit():
            return None
        async with self.session_factory() as session:
            bot = await session.get(TelegramBot, int(bot_id))
        if not _is_live(bot):
            return None
        return TelegramEndpoint(bot_id=str(bot.id), bot_token=bot.bot_token, bot_username=bot.bot_username)

    async def _load(self, query, log_context: dict) -> RoutingConfiguration:
        query = query.where(PlatformMapping.is_active.is_(True), PlatformMapping.deleted_at.is_(None))
        async with self.session_factory() as session:
            rows = (await session.execute(query.order_by(PlatformMapping.id))).scalars().all()
            routes = [route for route in [await self._to_route(session, row) for row in rows] if route]

        if not routes:
            logger.info("No platform mapping configured", extra={"context": log_context})
            return RoutingConfiguration.empty()
        return RoutingConfiguration.of(routes)

    async def _to_route(self, session: AsyncSession, row: PlatformMapping) -> Optional[MappingRoute]:
        bot = await session.get(TelegramBot, int(row.source_id)) if row.source_id.isdigit() else None
        if not _is_live(bot):
            return None

        account = await session.get(ChatwootAccount, row.chatwoot_account_id) if row.chatwoot_account_id else None
        app = await session.get(DifyApp, row.dify_app_id) if row.dify_app_id else None
        account = account if _is_live(account) else None
        app = app if _is_live(app) else None

        return MappingRoute(
            id=str(row.id),
            telegram_bot_id=str(bot.id),
            chatwoot_account_id=account.account_id if account else None,
            dify_app_id=str(app.id) if app else None,
            routing=_flags(row, account is not None, app is not None),
            auto_connect=AutoConnect(
                telegram_chatwoot=bool(row.auto_connect_telegram_chatwoot),
                telegram_dify=bool(row.auto_connect_telegram_dify),
            ),
            telegram=TelegramEndpoint(bot_id=str(bot.id), bot_token=bot.bot_token, bot_username=bot.bot_username),
            chatwoot=(
                ChatwootEndpoint(
                    account_id=account.account_id,
                    api_url=account.api_url,
                    api_token=account.api_access_token,
                    inbox_id=account.inbox_id,
                )
                if account
                else None
            ),
            dify=DifyEndpoint(app_id=str(app.id), api_url=app.api_url, api_key=app.api_key) if app else None,
        )


class StaticRoutingResolver:
    """Resolver over mappings declared up front, keyed by Telegram bot id."""

    def __init__(self, mappings: Optional[dict[str, list[MappingRoute]]] = None):
        self.mappings = {str(k): list(v) for k, v in (mappings or {}).items()}

    @classmethod
    def from_settings(cls, declared: list[StaticMapping]) -> "StaticRoutingResolver":
        mappings: dict[str, list[MappingRoute]] = {}
        for position, item in enumerate(declared, start=1):
            mappings.setdefault(str(item.bot_id), []).append(_static_route(str(position), item))
        logger.info("Static mappings loaded", extra={"context": {"mappings": len(declared), "bots": len(mappings)}})
        return cls(mappings)

    async def resolve(self, source_entity_id: str) -> RoutingConfiguration:
        return RoutingConfiguration.of(self.mappings.get(str(source_entity_id), []))

    async def resolve_for_support_account(self, external_account_id: str) -> RoutingConfiguration:
        routes = [
            route
            for routes in self.mappings.values()
            for route in routes
            if route.chatwoot_account_id and route.chatwoot_account_id == str(external_account_id)
        ]
        return RoutingConfiguration.of(routes)

    async def identify_telegram_bot(self, bot_id: str) -> Optional[TelegramEndpoint]:
        for route in self.mappings.get(str(bot_id), []):
            if route.telegram is not None:
                return route.telegram
        return None


def _static_route(mapping_id: str, item: StaticMapping) -> MappingRoute:
    chatwoot = (
        ChatwootEndpoint(
            account_id=item.chatwoot_account_id,
            api_url=item.chatwoot_api_url,
            api_token=item.chatwoot_api_token,
            inbox_id=item.chatwoot_inbox_id,
        )
        if item.has_chatwoot
        else None
    )
    dify = None
    if item.has_dify:
        dify = DifyEndpoint(app_id=item.dify_app_id, api_url=item.dify_api_url, api_key=item.dify_api_key)

    return MappingRoute(
        id=mapping_id,
        telegram_bot_id=str(item.bot_id),
        chatwoot_account_id=item.chatwoot_account_id if chatwoot else None,
        dify_app_id=item.dify_app_id if dify else None,
        routing=_flags(item, chatwoot is not None, dify is not None),
        auto_connect=AutoConnect(
            telegram_chatwoot=item.auto_connect_telegram_chatwoot,
            telegram_dify=item.auto_connect_telegram_dify,
        ),
        telegram=TelegramEndpoint(bot_id=str(item.bot_id), bot_token=item.bot_token, bot_username=item.bot_username),
        chatwoot=chatwoot,
        dify=dify,
    )
