"""Message Routing Engine.

``MessageRouter.route`` takes one normalized message through:

1. claim the message id (duplicates, and ids already stored as processed, stop here)
2. drop bot-authored and self-echoed support-desk messages
3. create or merge the bridged Conversation and persist the message
4. resolve the routing configuration for the receiving bot/account
5. handle source commands (``/email``) or fan out per mapping and direction,
   persisting new foreign ids
6. mark the message processed

AI failures degrade to a fallback reply. Store and support-desk/source
failures propagate after the claim is released, so a redelivered webhook
can retry.
"""

import html
import re
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Optional

from chatbridge.domain.conversation import Conversation, Participant
from chatbridge.domain.errors import DuplicateConversationError, UpstreamError
from chatbridge.domain.message import Message, MessageStatus, Platform
from chatbridge.domain.routing import PARTIAL, ROUTED, MappingRoute, RoutingConfiguration, RoutingResult
from chatbridge.logging_config import ConversationLogger, get_logger
from chatbridge.services.alert_service import AlertService
from chatbridge.services.conversation_store import ConversationStore
from chatbridge.services.dedup_service import DedupCooldownController
from chatbridge.services.dify_service import DifyReply
from chatbridge.services.message_store import MessageStore
from chatbridge.services.platforms import PlatformRegistry
from chatbridge.services.routing_resolver import RoutingResolver

logger = get_logger("message_router")

BOT_SUFFIX = re.compile(r"^(?P<chat>.+)_bot_(?P<bot>\d+)$")
GROUP_TYPES = ("group", "supergroup", "channel")

EMAIL_COMMAND = re.compile(r"^/email(?:@\w+)?(?:\s+(?P<address>.*))?$", re.IGNORECASE | re.DOTALL)
EMAIL_ADDRESS = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

EMAIL_HELP = (
    "📧 <b>Email command</b>\n\n"
    "<code>/email your.email@example.com</code>\n\n"
    "The address is used for your contact in our support desk."
)
EMAIL_INVALID = "❌ <b>Invalid email address.</b>\n\nPlease use the format:\n<code>/email your.email@example.com</code>"
EMAIL_SAVED = (
    "✅ <b>Email updated.</b>\n\n"
    "Email: <code>{email}</code>\n\n"
    "It will be used for your contact in our support desk."
)


def split_source_chat_id(chat_id: str) -> tuple[str, Optional[str]]:
    """``"-100123_bot_7"`` -> ``("-100123", "7")``."""
    match = BOT_SUFFIX.match(chat_id or "")
    if not match:
        return chat_id, None
    return match.group("chat"), match.group("bot")


def parse_email_command(content: str) -> Optional[str]:
    """Address argument of an ``/email`` command, ``""`` when it is missing.

    Returns None when ``content`` is not an ``/email`` command.
    """
    match = EMAIL_COMMAND.match((content or "").strip())
    if not match:
        return None
    return (match.group("address") or "").strip().lower()


def telegram_fields(message: Message) -> dict[str, Any]:
    chat, sender = message.chat, message.sender
    chat_type = chat.get("type") or "private"
    fields = {
        "chat_type": chat_type,
        "chat_title": chat.get("title"),
        "chat_username": chat.get("username"),
        "chat_description": chat.get("description"),
        "sender_id": sender.get("id") or message.sender_id,
        "sender_username": sender.get("username"),
        "sender_first_name": sender.get("first_name"),
        "sender_last_name": sender.get("last_name"),
        "sender_language_code": sender.get("language_code"),
        "sender_is_bot": sender.get("is_bot"),
        "platform_metadata": {"bot_id": message.metadata.get("bot_id")},
    }
    if chat_type in GROUP_TYPES:
        fields.update(
            group_id=chat.get("id"),
            group_title=chat.get("title"),
            group_username=chat.get("username"),
            group_description=chat.get("description"),
        )
    return fields


def chatwoot_fields(message: Message) -> dict[str, Any]:
    metadata = message.metadata
    return {
        "chat_type": message.chat.get("type") or "private",
        "chat_title": message.sender_name or None,
        "sender_id": message.sender_id,
        "sender_first_name": message.sender_name or None,
        "chatwoot_id": metadata.get("conversation_id") or message.conversation_id,
        "chatwoot_inbox_id": metadata.get("inbox_id"),
        "chatwoot_metadata": {"account_id": metadata.get("account_id")},
    }


ENRICHERS: dict[Platform, Callable[[Message], dict[str, Any]]] = {
    Platform.TELEGRAM: telegram_fields,
    Platform.CHATWOOT: chatwoot_fields,
}


class MessageRouter:
    def __init__(
        self,
        store: ConversationStore,
        messages: MessageStore,
        resolver: RoutingResolver,
        dedup: DedupCooldownController,
        platforms: PlatformRegistry,
        cooldown_ms: int = 5000,
        ai_fallback_reply: str = "",
        alerts: Optional[AlertService] = None,
    ):
        self.store = store
        self.messages = messages
        self.resolver = resolver
        self.dedup = dedup
        self.platforms = platforms
        self.cooldown_ms = cooldown_ms
        self.ai_fallback_reply = ai_fallback_reply
        self.alerts = alerts
        self._resolvers: dict[Platform, Callable[[Message], Awaitable[RoutingConfiguration]]] = {
            Platform.TELEGRAM: lambda m: self.resolver.resolve(m.metadata.get("bot_id")),
            Platform.CHATWOOT: lambda m: self.resolver.resolve_for_support_account(m.metadata.get("account_id")),
        }
        self._fan_out: dict[Platform, Callable[..., Awaitable[None]]] = {
            Platform.TELEGRAM: self._route_from_source,
            Platform.CHATWOOT: self._route_from_desk,
        }

    @property
    def telegram(self):
        return self.platforms.get(Platform.TELEGRAM)

    @property
    def chatwoot(self):
        return self.platforms.get(Platform.CHATWOOT)

    @property
    def dify(self):
        return self.platforms.get(Platform.DIFY)

    async def route(self, message: Message) -> RoutingResult:
        message.validate()
        log = ConversationLogger(logger, {"message_id": message.id, "platform": message.platform.value})

        if not await self.dedup.claim(message.id):
            log.info("Duplicate message skipped")
            return RoutingResult.duplicate(message.id)
        if await self.messages.is_processed(message.id):
            await self.dedup.mark_processed(message.id)
            log.info("Message already stored as processed, skipped")
            return RoutingResult.duplicate(message.id)

        try:
            result = await self._route_claimed(message, log)
        except Exception:
            await self.dedup.release(message.id)
            raise

        await self.dedup.mark_processed(message.id)
        log.info(
            "Message routed",
            context={"status": result.status, "deliveries": result.deliveries, "notes": result.notes},
        )
        return result

    async def _route_claimed(self, message: Message, log: ConversationLogger) -> RoutingResult:
        if message.is_from_bot:
            log.info("Bot message skipped", context={"sender": message.sender})
            return RoutingResult.skipped(message.id, "bot message skipped")

        remote_id = message.metadata.get("message_id")
        if message.platform == Platform.CHATWOOT and remote_id and await self.dedup.is_own_outgoing(str(remote_id)):
            log.info("Bridge echo skipped", context={"chatwoot_message_id": remote_id})
            return RoutingResult.skipped(message.id, "bridge echo skipped")

        conversation = await self._resolve_conversation(message)
        await self.messages.save(message, conversation.id)
        log = ConversationLogger(logger, {**log.extra, "conversation_id": conversation.id})

        result = await self._dispatch(message, conversation, log)
        await self.messages.mark(message.id, MessageStatus.PROCESSED)
        return result

    async def _dispatch(self, message: Message, conversation: Conversation, log: ConversationLogger) -> RoutingResult:
        resolve = self._resolvers.get(message.platform)
        if resolve is None:
            return RoutingResult.partial(message.id, conversation.id, f"no inbound routing for {message.platform.value}")
        routing = await resolve(message)
        if not routing.has_mapping:
            log.info("No routing mapping, stored only")
            return RoutingResult.partial(message.id, conversation.id, "no routing mapping configured; stored only")

        result = RoutingResult(ok=True, status=ROUTED, message_id=message.id, conversation_id=conversation.id)
        await self._fan_out[message.platform](message, conversation, routing, result, log)
        return result

    # Conversation resolution

    async def _resolve_conversation(self, message: Message) -> Conversation:
        platform = message.platform.value
        enrich = ENRICHERS.get(message.platform)
        fields = enrich(message) if enrich else {}
        participant = Participant(
            id=message.sender_id,
            name=message.sender_name,
            role="agent" if message.metadata.get("is_outgoing") else "user",
        )

        existing = None
        if message.platform == Platform.CHATWOOT:
            existing = await self.store.find_by_foreign_id(message.conversation_id)
        if existing is None:
            existing = await self.store.find_by_platform_chat_id(platform, message.conversation_id)

        if existing is None:
            created = Conversation(platform=platform, chat_id=message.conversation_id, **fields)
            created.add_participant(participant)
            created.touch()
            try:
                saved = await self.store.save(created)
                logger.info(
                    "Conversation created",
                    extra={"context": {"conversation_id": saved.id, "chat_type": saved.chat_type.value}},
                )
                return saved
            except DuplicateConversationError:
                existing = await self.store.find_by_platform_chat_id(platform, message.conversation_id)
                if existing is None:
                    raise

        changes = {}
        if existing.platform == platform:
            changes = existing.merge_missing({k: v for k, v in fields.items() if k != "chat_type"})
        if existing.add_participant(participant):
            changes["participants"] = existing.participants
        existing.touch()
        changes["last_message_at"] = existing.last_message_at
        return await self.store.update(existing.id, changes)

    async def _set_foreign_ids(self, conversation: Conversation, **ids: Optional[str]) -> Conversation:
        changes = {k: v for k, v in ids.items() if v and getattr(conversation, k) != v}
        if not changes:
            return conversation
        return await self.store.update(conversation.id, changes)

    # Source platform (Telegram) inbound

    async def _route_from_source(
        self,
        message: Message,
        conversation: Conversation,
        routing: RoutingConfiguration,
        result: RoutingResult,
        log: ConversationLogger,
    ) -> None:
        address = parse_email_command(message.content)
        if address is not None:
            await self._handle_email_command(address, conversation, routing, result, log)
            return

        for mapping in routing.mappings:
            log.info(
                "Processing mapping",
                context={"mapping_id": mapping.id, "routing": asdict(mapping.routing)},
            )
            if mapping.forwards_to_chatwoot:
                conversation = await self._source_to_desk(mapping, message, conversation, result)

            if not mapping.forwards_to_dify:
                continue
            if not message.metadata.get("should_respond_with_ai", True):
                result.note("ai skipped: bot not mentioned in group")
                continue
            conversation = await self._source_to_ai(mapping, message, conversation, result, log)

    async def _source_to_desk(
        self, mapping: MappingRoute, message: Message, conversation: Conversation, result: RoutingResult
    ) -> Conversation:
        if mapping.chatwoot is None:
            self._partial(result, f"mapping {mapping.id}: chatwoot account not available")
            return conversation

        remote = await self.chatwoot.create_or_update_conversation(mapping.chatwoot, conversation, message)
        if remote.get("message_id"):
            await self.dedup.track_outgoing(str(remote["message_id"]))
        conversation = await self._set_foreign_ids(
            conversation, chatwoot_id=remote.get("id"), chatwoot_inbox_id=remote.get("inbox_id")
        )
        result.delivered("chatwoot")
        return conversation

    async def _source_to_ai(
        self,
        mapping: MappingRoute,
        message: Message,
        conversation: Conversation,
        result: RoutingResult,
        log: ConversationLogger,
    ) -> Conversation:
        if mapping.dify is None:
            self._partial(result, f"mapping {mapping.id}: dify app not available")
            return conversation

        reply = await self._ask_ai(mapping, conversation, message.formatted_content, log)
        if reply is None:
            result.note("ai request failed")
            if mapping.routing.dify_to_chatwoot:
                await self._ai_to_desk(mapping, conversation, self.ai_fallback_reply, result, label="chatwoot:fallback")
            return conversation

        conversation = await self._set_foreign_ids(conversation, dify_id=reply.conversation_id)
        result.delivered("dify")

        if mapping.routing.dify_to_telegram:
            await self._ai_to_source(mapping, conversation, reply.answer, result)
        if mapping.routing.dify_to_chatwoot:
            await self._ai_to_desk(mapping, conversation, reply.answer, result)
        return conversation

    async def _ask_ai(
        self, mapping: MappingRoute, conversation: Conversation, query: str, log: ConversationLogger
    ) -> Optional[DifyReply]:
        try:
            return await self.dify.send_message(
                mapping.dify, query, user=f"user-{conversation.id}", conversation_id=conversation.dify_id
            )
        except UpstreamError as e:
            log.error("AI request failed, degrading to fallback", context={"error": str(e)})
            if self.alerts:
                await self.alerts.alert_error(
                    "Dify request failed", {"conversation_id": conversation.id, "app_id": mapping.dify_app_id, "error": str(e)}
                )
            return None

    async def _ai_to_desk(
        self,
        mapping: MappingRoute,
        conversation: Conversation,
        text: str,
        result: RoutingResult,
        label: str = "chatwoot:ai_reply",
    ) -> None:
        if mapping.chatwoot is None or not conversation.chatwoot_id:
            result.note("ai reply not mirrored: no chatwoot conversation bridged")
            return
        if not (text or "").strip():
            result.note("empty ai reply skipped")
            return
        if not await self.dedup.try_acquire_cooldown(conversation.id, self.cooldown_ms, destination="chatwoot"):
            result.note("ai reply to chatwoot suppressed by cooldown")
            return

        sent = await self.chatwoot.send_message(
            mapping.chatwoot, conversation.chatwoot_id, text, message_type="outgoing"
        )
        if sent.get("id"):
            await self.dedup.track_outgoing(str(sent["id"]))
        result.delivered(label)

    async def _ai_to_source(
        self, mapping: MappingRoute, conversation: Conversation, text: str, result: RoutingResult
    ) -> None:
        if not (text or "").strip():
            result.note("empty ai reply skipped")
            return
        endpoint, chat_id = self._source_target(mapping, conversation)
        if endpoint is None:
            result.note(f"mapping {mapping.id}: conversation belongs to another bot")
            return
        if not await self.dedup.try_acquire_cooldown(conversation.id, self.cooldown_ms, destination="telegram"):
            result.note("ai reply to telegram suppressed by cooldown")
            return
        await self.telegram.send_message(endpoint, chat_id, text)
        result.delivered("telegram:ai_reply")

    async def _handle_email_command(
        self,
        address: str,
        conversation: Conversation,
        routing: RoutingConfiguration,
        result: RoutingResult,
        log: ConversationLogger,
    ) -> None:
        """Store the sender's email for the support-desk contact and confirm in the chat."""
        endpoint, chat_id = next(
            (target for target in (self._source_target(m, conversation) for m in routing.mappings) if target[0]),
            (None, None),
        )
        if endpoint is None:
            self._partial(result, "email command: no bot available to reply")
            return

        if not address:
            text = EMAIL_HELP
            result.note("email command: help sent")
        elif not EMAIL_ADDRESS.match(address):
            text = EMAIL_INVALID
            result.note("email command: invalid address")
        else:
            await self.store.update(conversation.id, {"sender_email": address})
            log.info("Sender email updated", context={"email": address})
            text = EMAIL_SAVED.format(email=html.escape(address))
            result.note("email command: address saved")

        await self.telegram.send_message(endpoint, chat_id, text, parse_mode="HTML")
        result.delivered("telegram:email_reply")

    @staticmethod
    def _source_target(mapping: MappingRoute, conversation: Conversation):
        if mapping.telegram is None or conversation.platform != Platform.TELEGRAM.value:
            return None, None
        chat_id, bot_id = split_source_chat_id(conversation.chat_id)
        if bot_id is not None and bot_id != mapping.telegram.bot_id:
            return None, None
        return mapping.telegram, chat_id

    # Support desk (Chatwoot) inbound

    async def _route_from_desk(
        self,
        message: Message,
        conversation: Conversation,
        routing: RoutingConfiguration,
        result: RoutingResult,
        log: ConversationLogger,
    ) -> None:
        if message.metadata.get("is_outgoing"):
            await self._desk_to_source(message, conversation, routing, result, log)
            return

        if conversation.platform != Platform.CHATWOOT.value:
            # Mirror of a source-platform message the bridge itself posted.
            result.note("mirrored source message, not re-routed")
            return

        mapping = next((m for m in routing.mappings if m.dify is not None and m.routing.dify_to_chatwoot), None)
        if mapping is None:
            result.note("no ai mapping for support desk conversation")
            return

        reply = await self._ask_ai(mapping, conversation, message.content, log)
        if reply is None:
            result.note("ai request failed")
            await self._ai_to_desk(mapping, conversation, self.ai_fallback_reply, result, label="chatwoot:fallback")
            return
        conversation = await self._set_foreign_ids(conversation, dify_id=reply.conversation_id)
        result.delivered("dify")
        await self._ai_to_desk(mapping, conversation, reply.answer, result)

    async def _desk_to_source(
        self,
        message: Message,
        conversation: Conversation,
        routing: RoutingConfiguration,
        result: RoutingResult,
        log: ConversationLogger,
    ) -> None:
        if conversation.platform != Platform.TELEGRAM.value:
            result.note("no bridged source conversation for agent message")
            return

        for mapping in routing.mappings:
            if not mapping.routing.chatwoot_to_telegram:
                continue
            endpoint, chat_id = self._source_target(mapping, conversation)
            if endpoint is None:
                continue
            await self.telegram.send_message(endpoint, chat_id, message.content)
            log.info("Agent message forwarded to Telegram", context={"chat_id": chat_id, "bot_id": endpoint.bot_id})
            result.delivered("telegram")
            return

        result.note("no mapping forwards agent messages to this conversation")

    @staticmethod
    def _partial(result: RoutingResult, note: str) -> None:
        logger.warning("Routing incomplete", extra={"context": {"message_id": result.message_id, "note": note}})
        result.ok = False
        result.status = PARTIAL
        result.note(note)
