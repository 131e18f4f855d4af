from chatbridge.domain.message import Platform
from chatbridge.services.normalizers import ChatwootNormalizer, TelegramNormalizer


def telegram_update(chat_type="private", text="hello", entities=None, **message):
    chat = {"id": 555, "type": chat_type}
    if chat_type != "private":
        chat = {"id": -1001, "type": chat_type, "title": "Team"}
    payload = {
        "message_id": 10,
        "date": 1702000000,
        "chat": chat,
        "from": {"id": 555, "is_bot": False, "first_name": "Bob", "last_name": "Stone", "username": "bob"},
        "text": text,
    }
    if entities is not None:
        payload["entities"] = entities
    payload.update(message)
    return {"update_id": 1, "message": payload}


def chatwoot_payload(**overrides):
    payload = {
        "event": "message_created",
        "id": 901,
        "content": "We are on it",
        "message_type": "outgoing",
        "private": False,
        "sender": {"id": 4, "name": "Agent Smith", "type": "user"},
        "conversation": {"id": 77, "inbox_id": 5},
        "account": {"id": 42, "name": "Desk"},
    }
    payload.update(overrides)
    return payload


class TestTelegramNormalizer:
    def test_private_message(self):
        message = TelegramNormalizer().normalize(telegram_update(), bot_id="7")

        assert message.platform is Platform.TELEGRAM
        assert message.conversation_id == "555_bot_7"
        assert message.id == "10_555_bot_7"
        assert message.sender_name == "Bob Stone"
        assert message.metadata["is_group_chat"] is False
        assert message.metadata["should_respond_with_ai"] is True
        assert message.metadata["chat"]["type"] == "private"
        assert message.metadata["sender"]["username"] == "bob"
        assert message.timestamp.year == 2023

    def test_group_message_without_mention(self):
        message = TelegramNormalizer().normalize(telegram_update("supergroup"), bot_id="7", bot_username="@support_bot")

        assert message.conversation_id == "-1001_bot_7"
        assert message.metadata["is_group_chat"] is True
        assert message.metadata["should_respond_with_ai"] is False

    def test_group_message_with_username_mention(self):
        update = telegram_update("group", text="@support_bot help")
        message = TelegramNormalizer().normalize(update, bot_id="7", bot_username="support_bot")

        assert message.metadata["is_bot_mentioned"] is True
        assert message.metadata["should_respond_with_ai"] is True
        assert message.formatted_content == "[Bob Stone]: @support_bot help"

    def test_group_message_with_text_mention_entity(self):
        entities = [{"type": "text_mention", "offset": 0, "length": 3, "user": {"id": 7, "is_bot": True, "first_name": "Bot"}}]
        update = telegram_update("group", text="Bot help", entities=entities)
        message = TelegramNormalizer().normalize(update, bot_id="7")

        assert message.metadata["is_bot_mentioned"] is True

    def test_sender_name_falls_back_to_username_then_id(self):
        update = telegram_update()
        update["message"]["from"] = {"id": 9, "first_name": "", "username": "anon"}
        assert TelegramNormalizer().normalize(update, bot_id="7").sender_name == "anon"

        update["message"]["from"] = {"id": 9, "first_name": ""}
        assert TelegramNormalizer().normalize(update, bot_id="7").sender_name == "User 9"

    def test_non_text_update_is_ignored(self):
        assert TelegramNormalizer().normalize(telegram_update(text=None), bot_id="7") is None
        assert TelegramNormalizer().normalize({"update_id": 2}, bot_id="7") is None

    def test_malformed_update_is_ignored(self):
        assert TelegramNormalizer().normalize({"message": {}}, bot_id="7") is None


class TestChatwootNormalizer:
    def test_outgoing_agent_message(self):
        message = ChatwootNormalizer().normalize(chatwoot_payload())

        assert message.platform is Platform.CHATWOOT
        assert message.id == "901_chatwoot"
        assert message.conversation_id == "77"
        assert message.sender_name == "Agent Smith"
        assert message.metadata["account_id"] == "42"
        assert message.metadata["inbox_id"] == "5"
        assert message.metadata["is_outgoing"] is True
        assert message.is_from_bot is False

    def test_agent_bot_is_flagged(self):
        message = ChatwootNormalizer().normalize(chatwoot_payload(sender={"id": 1, "name": "Bot", "type": "agent_bot"}))
        assert message.is_from_bot is True

    def test_ignored_events(self):
        normalizer = ChatwootNormalizer()
        assert normalizer.normalize(chatwoot_payload(event="conversation_status_changed")) is None
        assert normalizer.normalize(chatwoot_payload(private=True)) is None
        assert normalizer.normalize(chatwoot_payload(message_type="activity")) is None
        assert normalizer.normalize(chatwoot_payload(content="")) is None
        assert normalizer.normalize({"id": 1}) is None
