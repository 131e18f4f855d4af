from dataclasses import replace

import pytest

from chatbridge.domain.conversation import ChatType, Conversation, ConversationStatus, Participant
from chatbridge.domain.errors import ValidationError
from chatbridge.domain.message import Message, Platform
from chatbridge.domain.routing import AutoConnect, RoutingConfiguration, RoutingFlags, RoutingResult
from tests.factories import make_mapping


class TestMessage:
    def test_valid_message(self):
        message = Message(id="1", content="hi", sender_id="u", conversation_id="c", platform=Platform.TELEGRAM)
        assert message.validate() is message

    def test_missing_fields_are_reported_together(self):
        message = Message(id="", content="", sender_id="u", conversation_id="", platform=Platform.TELEGRAM)
        with pytest.raises(ValidationError) as exc:
            message.validate()
        assert exc.value.errors == ["id is required", "content is required", "conversation_id is required"]
        assert "Message validation failed" in str(exc.value)

    def test_whitespace_content_is_rejected(self):
        message = Message(id="1", content="  \n\t", sender_id="u", conversation_id="c", platform=Platform.TELEGRAM)
        with pytest.raises(ValidationError) as exc:
            message.validate()
        assert exc.value.errors == ["content is required"]

    def test_group_formatting(self):
        message = Message(
            id="1",
            content="hi",
            sender_id="u",
            sender_name="Alice",
            conversation_id="c",
            platform=Platform.TELEGRAM,
            metadata={"is_group_chat": True},
        )
        assert message.formatted_content == "[Alice]: hi"

    def test_private_formatting(self):
        message = Message(id="1", content="hi", sender_id="u", conversation_id="c", platform=Platform.TELEGRAM)
        assert message.formatted_content == "hi"

    def test_bot_detection(self):
        flagged = Message(
            id="1", content="x", sender_id="u", conversation_id="c", platform=Platform.CHATWOOT,
            metadata={"sender": {"is_bot": True}},
        )
        agent_bot = Message(
            id="2", content="x", sender_id="u", conversation_id="c", platform=Platform.CHATWOOT,
            metadata={"sender": {"type": "agent_bot"}},
        )
        human = Message(
            id="3", content="x", sender_id="u", conversation_id="c", platform=Platform.CHATWOOT,
            metadata={"sender": {"type": "user", "is_bot": False}},
        )
        assert flagged.is_from_bot is True
        assert agent_bot.is_from_bot is True
        assert human.is_from_bot is False


class TestConversation:
    def test_deterministic_id(self):
        conversation = Conversation(platform=Platform.TELEGRAM, chat_id=555)
        assert conversation.id == "telegram_555"
        assert conversation.chat_id == "555"
        assert conversation.platform == "telegram"

    def test_invalid_enums_rejected(self):
        conversation = Conversation(platform="telegram", chat_id="1", chat_type="forum", status="gone")
        with pytest.raises(ValidationError) as exc:
            conversation.validate()
        assert len(exc.value.errors) == 2

    def test_private_chat_cannot_carry_group_fields(self):
        conversation = Conversation(platform="telegram", chat_id="1", group_title="Team")
        with pytest.raises(ValidationError):
            conversation.validate()

    def test_group_chat_may_carry_group_fields(self):
        conversation = Conversation(platform="telegram", chat_id="1", chat_type="supergroup", group_title="Team")
        assert conversation.validate().chat_type is ChatType.SUPERGROUP
        assert conversation.is_group_chat is True
        assert conversation.chat_display_name == "Team"

    def test_add_participant_dedupes_by_id(self):
        conversation = Conversation(platform="telegram", chat_id="1")
        assert conversation.add_participant(Participant(id="1", name="A")) is True
        assert conversation.add_participant(Participant(id="1", name="B")) is False
        assert len(conversation.participants) == 1

    def test_merge_missing_keeps_known_values(self):
        conversation = Conversation(platform="telegram", chat_id="1", sender_first_name="Bob", sender_is_bot=False)
        applied = conversation.merge_missing(
            {"sender_first_name": "Robert", "sender_last_name": "Smith", "sender_is_bot": True, "group_title": "X"}
        )
        assert applied == {"sender_last_name": "Smith"}
        assert conversation.sender_first_name == "Bob"
        assert conversation.sender_is_bot is False
        assert conversation.group_title is None

    def test_display_names(self):
        conversation = Conversation(platform="telegram", chat_id="1", sender_id="9", sender_username="bob")
        assert conversation.sender_display_name == "bob"
        conversation.sender_first_name = "Bob"
        conversation.sender_last_name = "Stone"
        assert conversation.sender_display_name == "Bob Stone"
        assert conversation.chat_display_name == "Bob Stone"

    def test_status_defaults(self):
        conversation = Conversation(platform="telegram", chat_id="1")
        assert conversation.status is ConversationStatus.ACTIVE
        assert conversation.is_active is True
        assert conversation.last_message_at is None


class TestRouting:
    def test_derived_flags(self):
        flags = RoutingFlags.derive(has_chatwoot=True, has_dify=False)
        assert flags.telegram_to_chatwoot is True
        assert flags.chatwoot_to_telegram is True
        assert flags.telegram_to_dify is False
        assert flags.dify_to_chatwoot is False

    def test_forwarding_needs_direction_or_auto_connect(self):
        mapping = make_mapping(chatwoot_to_telegram=True)
        assert mapping.forwards_to_chatwoot is False
        assert replace(mapping, auto_connect=AutoConnect(telegram_chatwoot=True)).forwards_to_chatwoot is True
        # an enabled leg stays enabled when its endpoint is gone; the router reports it partial
        enabled = RoutingFlags(telegram_to_chatwoot=True)
        orphaned = replace(mapping, chatwoot_account_id=None, chatwoot=None, routing=enabled)
        assert orphaned.forwards_to_chatwoot is True

    def test_empty_configuration(self):
        config = RoutingConfiguration.empty()
        assert config.has_mapping is False
        assert config.mappings == ()
        assert RoutingConfiguration.of([]).has_mapping is False

    def test_result_constructors(self):
        assert RoutingResult.duplicate("m").status == "duplicate"
        skipped = RoutingResult.skipped("m", "bot message skipped")
        assert skipped.ok is True and skipped.notes == ["bot message skipped"]
        assert RoutingResult.partial("m", "c", "x").ok is False
