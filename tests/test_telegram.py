"""
Test Telegram Source

Tests for source matching, update handling and notification delivery via
the Bot API.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from tgwa_bridge.core.bus import EventBus
from tgwa_bridge.channels.telegram import TelegramSource, normalize_source, notification_chat_id


def api_response(result=None, ok=True, description="error"):
    resp = MagicMock()
    resp.status_code = 200 if ok else 400
    data = {"ok": ok, "result": result}
    if not ok:
        data["description"] = description
    resp.json = MagicMock(return_value=data)
    return resp


class TestSourceHelpers:
    """Tests for source normalization"""

    def test_normalize_source(self):
        assert normalize_source("@News_Channel") == "news_channel"
        assert normalize_source(None) == ""

    def test_notification_chat_id(self):
        assert notification_chat_id("news") == "@news"
        assert notification_chat_id("@news") == "@news"
        assert notification_chat_id("123456") == "123456"
        assert notification_chat_id("-100123") == "-100123"
        assert notification_chat_id("") is None


class TestTelegramSource:
    """Tests for TelegramSource"""

    def setup_method(self):
        self.bus = EventBus()
        self.relayed = []
        self.bus.tg_message.subscribe(self.relayed.append)
        self.client = MagicMock()
        self.client.post = AsyncMock(return_value=api_response({"username": "relay_bot"}))
        self.client.aclose = AsyncMock()
        self.source = TelegramSource("123:abc", "@news", self.bus, client=self.client)

    def test_subscribes_to_notifications(self):
        assert self.bus.wa_notification.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_start_without_token(self):
        source = TelegramSource(None, "news", self.bus, client=self.client)

        assert await source.start() is False
        self.client.post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_with_bad_token(self):
        self.client.post = AsyncMock(return_value=api_response(ok=False, description="Unauthorized"))

        assert await self.source.start() is False
        assert self.source.is_active is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        assert await self.source.start() is True
        assert self.source.is_active is True
        assert self.source.bot_username == "relay_bot"
        self.client.post.assert_any_await("https://api.telegram.org/bot123:abc/getMe", json={})

        await self.source.stop()

        assert self.source.is_active is False
        self.client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_message_from_source_is_published(self):
        update = {"update_id": 1, "message": {"text": "alert", "from": {"id": 42, "username": "News"}}}

        assert await self.source.handle_update(update) is True
        assert self.relayed == ["alert"]

    @pytest.mark.asyncio
    async def test_channel_post_matched_by_id(self):
        source = TelegramSource("t", "-100123", self.bus, client=self.client)
        update = {"channel_post": {"text": "post", "sender_chat": {"id": 100123}}}

        assert await source.handle_update(update) is True
        assert self.relayed == ["post"]

    @pytest.mark.asyncio
    async def test_other_sender_is_ignored(self):
        update = {"message": {"text": "spam", "from": {"id": 7, "username": "someone"}}}

        assert await self.source.handle_update(update) is False
        assert self.relayed == []

    @pytest.mark.asyncio
    async def test_non_text_is_ignored(self):
        update = {"message": {"photo": [{}], "from": {"username": "news"}}}

        assert await self.source.handle_update(update) is False

    @pytest.mark.asyncio
    async def test_notification_requires_active_client(self):
        assert await self.source.send_notification("QR") is False
        self.client.post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notification_sent_to_source_chat(self):
        self.source.is_active = True
        self.client.post = AsyncMock(return_value=api_response({"message_id": 1}))

        await self.bus.wa_notification.publish("New QR")

        self.client.post.assert_awaited_once_with(
            "https://api.telegram.org/bot123:abc/sendMessage",
            json={"chat_id": "@news", "text": "New QR"},
        )

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self):
        self.source.is_active = True
        self.client.post = AsyncMock(side_effect=RuntimeError("network"))

        assert await self.source.send_notification("x") is False

    def test_status(self):
        assert self.source.status() == {"telegram": "disconnected", "bot": None, "source": "@news"}
