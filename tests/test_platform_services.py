import asyncio
import json
import logging

import httpx
import pytest

from chatbridge.domain.conversation import Conversation
from chatbridge.domain.errors import ConfigurationError, UpstreamError
from chatbridge.domain.message import Platform
from chatbridge.domain.routing import ChatwootEndpoint, DifyEndpoint, TelegramEndpoint
from chatbridge.logging_config import JSONFormatter
from chatbridge.services.chatwoot_service import ChatwootService
from chatbridge.services.dify_service import DifyService
from chatbridge.services.platforms import PlatformRegistry
from chatbridge.services.telegram_service import TelegramService
from tests.factories import telegram_message

TELEGRAM = TelegramEndpoint(bot_id="7", bot_token="bot-token")
CHATWOOT = ChatwootEndpoint(account_id="42", api_url="https://desk.example/", api_token="cw-token")
DIFY = DifyEndpoint(app_id="2", api_url="https://ai.example", api_key="dify-key")


def call_with(handler, make_service, action):
    """Run ``action(service)`` with HTTP served by ``handler``; return (result, requests)."""
    requests = []

    def recording(request):
        requests.append(request)
        return handler(request)

    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recording)) as client:
            return await action(make_service(client))

    return asyncio.run(_run()), requests


class TestTelegramService:
    def test_send_message(self):
        result, requests = call_with(
            lambda r: httpx.Response(200, json={"ok": True, "result": {"message_id": 5}}),
            TelegramService,
            lambda s: s.send_message(TELEGRAM, "555", "hi"),
        )

        assert result == {"message_id": 5}
        assert str(requests[0].url) == "https://api.telegram.org/botbot-token/sendMessage"
        assert json.loads(requests[0].content) == {"chat_id": "555", "text": "hi"}

    def test_api_error_raises(self):
        with pytest.raises(UpstreamError) as exc:
            call_with(
                lambda r: httpx.Response(200, json={"ok": False, "description": "chat not found"}),
                TelegramService,
                lambda s: s.send_message(TELEGRAM, "555", "hi"),
            )
        assert exc.value.platform == "telegram"
        assert "chat not found" in str(exc.value)

    def test_transport_error_raises(self):
        def boom(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(UpstreamError):
            call_with(boom, TelegramService, lambda s: s.send_message(TELEGRAM, "555", "hi"))

    def test_set_webhook_with_secret(self):
        result, requests = call_with(
            lambda r: httpx.Response(200, json={"ok": True, "result": True}),
            TelegramService,
            lambda s: s.set_webhook(TELEGRAM, "https://bridge.example/webhook/telegram/7", secret_token="s3cret"),
        )

        assert result is True
        assert json.loads(requests[0].content)["secret_token"] == "s3cret"

    def test_error_logs_do_not_leak_bot_token(self, caplog):
        endpoint = TelegramEndpoint(bot_id="7", bot_token="7:SECRET-TOKEN")

        with caplog.at_level(logging.ERROR, logger="chatbridge.platforms"), pytest.raises(UpstreamError):
            call_with(
                lambda r: httpx.Response(500, text="bad gateway"),
                TelegramService,
                lambda s: s.send_message(endpoint, "555", "hi"),
            )

        assert caplog.records
        for record in caplog.records:
            assert "SECRET-TOKEN" not in record.getMessage()
            assert "SECRET-TOKEN" not in json.dumps(getattr(record, "context", {}))
            assert "SECRET-TOKEN" not in JSONFormatter().format(record)
        assert caplog.records[0].context["endpoint"] == "api.telegram.org/bot***/sendMessage"


class TestDifyService:
    def test_blocking_chat_message(self):
        result, requests = call_with(
            lambda r: httpx.Response(200, json={"conversation_id": "d1", "answer": "Hi Bob!", "message_id": "x"}),
            DifyService,
            lambda s: s.send_message(DIFY, "hello", user="user-telegram_1", conversation_id="d0"),
        )

        assert (result.conversation_id, result.answer) == ("d1", "Hi Bob!")
        request = requests[0]
        assert str(request.url) == "https://ai.example/v1/chat-messages"
        assert request.headers["Authorization"] == "Bearer dify-key"
        assert json.loads(request.content) == {
            "inputs": {},
            "query": "hello",
            "response_mode": "blocking",
            "user": "user-telegram_1",
            "conversation_id": "d0",
        }

    def test_new_conversation_omits_id(self):
        _, requests = call_with(
            lambda r: httpx.Response(200, json={"conversation_id": "d1", "answer": ""}),
            DifyService,
            lambda s: s.send_message(DIFY, "hello", user="u"),
        )
        assert "conversation_id" not in json.loads(requests[0].content)

    def test_http_error_raises(self):
        with pytest.raises(UpstreamError) as exc:
            call_with(lambda r: httpx.Response(500, text="boom"), DifyService, lambda s: s.send_message(DIFY, "q", user="u"))
        assert exc.value.status_code == 500


class TestChatwootService:
    def test_creates_inbox_conversation_and_posts_message(self):
        def handler(request):
            path, method = request.url.path, request.method
            if path.endswith("/inboxes") and method == "GET":
                return httpx.Response(200, json={"payload": []})
            if path.endswith("/inboxes") and method == "POST":
                return httpx.Response(200, json={"id": 5})
            if path.endswith("/conversations") and method == "GET":
                return httpx.Response(200, json={"data": {"payload": []}})
            if path.endswith("/conversations") and method == "POST":
                return httpx.Response(200, json={"id": 77, "inbox_id": 5})
            if path.endswith("/conversations/77/messages"):
                return httpx.Response(200, json={"id": 800})
            return httpx.Response(404)

        conversation = Conversation(platform="telegram", chat_id="555_bot_7", sender_id="555", sender_first_name="Bob")
        result, requests = call_with(
            handler,
            ChatwootService,
            lambda s: s.create_or_update_conversation(CHATWOOT, conversation, telegram_message()),
        )

        assert result == {"id": "77", "inbox_id": "5", "message_id": "800"}
        assert all(r.headers["api_access_token"] == "cw-token" for r in requests)
        assert requests[0].url.path == "/api/v1/accounts/42/inboxes"
        created = json.loads(requests[3].content)
        assert created["source_id"] == "telegram_555_bot_7"
        assert created["contact"]["name"] == "Bob"
        assert "email" not in created["contact"]
        posted = json.loads(requests[4].content)
        assert posted["message_type"] == "incoming"
        assert posted["content"] == "hello"

    def test_contact_carries_sender_email(self):
        conversation = Conversation(
            platform="telegram", chat_id="555_bot_7", sender_id="555", sender_email="bob@example.com"
        )
        _, requests = call_with(
            lambda r: httpx.Response(200, json={"id": 77, "inbox_id": 5}),
            ChatwootService,
            lambda s: s.create_conversation(CHATWOOT, conversation, telegram_message(), "5"),
        )

        contact = json.loads(requests[0].content)["contact"]
        assert contact["email"] == "bob@example.com"
        assert contact["identifier"] == "555"

    def test_reuses_bridged_conversation(self):
        def handler(request):
            if request.url.path.endswith("/conversations/77") and request.method == "GET":
                return httpx.Response(200, json={"id": 77, "inbox_id": 9})
            if request.url.path.endswith("/messages"):
                return httpx.Response(200, json={"id": 801})
            return httpx.Response(500)

        endpoint = ChatwootEndpoint(account_id="42", api_url="https://desk.example", api_token="t", inbox_id="9")
        conversation = Conversation(platform="telegram", chat_id="555_bot_7", chatwoot_id="77")
        result, requests = call_with(
            handler,
            ChatwootService,
            lambda s: s.create_or_update_conversation(endpoint, conversation, telegram_message()),
        )

        assert result["id"] == "77"
        assert len(requests) == 2

    def test_send_outgoing_message(self):
        result, requests = call_with(
            lambda r: httpx.Response(200, json={"id": 901}),
            ChatwootService,
            lambda s: s.send_message(CHATWOOT, "77", "Hi Bob!", message_type="outgoing"),
        )

        assert result["id"] == 901
        body = json.loads(requests[0].content)
        assert body == {"content": "Hi Bob!", "message_type": "outgoing", "private": False, "content_type": "text"}

    def test_desk_error_raises(self):
        with pytest.raises(UpstreamError):
            call_with(lambda r: httpx.Response(401), ChatwootService, lambda s: s.send_message(CHATWOOT, "77", "x"))


class TestPlatformRegistry:
    def test_lookup(self):
        service = object()
        registry = PlatformRegistry({Platform.DIFY: service})
        assert registry.get(Platform.DIFY) is service
        assert Platform.DIFY in registry
        assert Platform.TELEGRAM not in registry

    def test_missing_platform(self):
        with pytest.raises(ConfigurationError):
            PlatformRegistry().get(Platform.TELEGRAM)
