"""
Test Core Bridge State

Tests for group name matching, the shared context read model and the
event bus.
"""

import pytest

from tgwa_bridge.core.bus import Channel, EventBus
from tgwa_bridge.core.context import (
    MAX_ACTIVITY,
    ActivityCache,
    BridgeContext,
    ConnectionStatus,
    GroupDescriptor,
    ServiceState,
)
from tgwa_bridge.core.names import match_group, normalize_name, strip_non_alnum, to_group_jid


class TestGroupNames:
    """Tests for normalization and match_group"""

    def test_to_group_jid(self):
        assert to_group_jid("123") == "123@g.us"
        assert to_group_jid("123@g.us") == "123@g.us"
        assert to_group_jid(" 123 ") == "123@g.us"
        assert to_group_jid("") is None
        assert to_group_jid(None) is None

    def test_normalize_name(self):
        assert normalize_name('  "Team Chat" ') == "team chat"
        assert normalize_name(None) == ""

    def test_strip_non_alnum_keeps_cyrillic(self):
        assert strip_non_alnum("Радар-Чат!") == "радарчат"

    def test_id_wins_over_name(self):
        groups = [GroupDescriptor("999@g.us", "My Team Chat"), GroupDescriptor("123@g.us", "Other")]

        match = match_group(groups, configured_id="123", configured_name="team")

        assert match.group.id == "123@g.us"
        assert match.strategy == "id"

    def test_exact_name_before_prefix(self):
        groups = [GroupDescriptor("1@g.us", "Team Chat"), GroupDescriptor("2@g.us", "Team")]

        match = match_group(groups, configured_name="team")

        assert match.group.id == "2@g.us"
        assert match.strategy == "name"

    def test_prefix_before_contains(self):
        groups = [GroupDescriptor("1@g.us", "My Team"), GroupDescriptor("2@g.us", "Team Chat")]

        match = match_group(groups, configured_name="Team")

        assert match.group.id == "2@g.us"
        assert match.strategy == "prefix"

    def test_contains(self):
        groups = [GroupDescriptor("1@g.us", "Alpha"), GroupDescriptor("2@g.us", "My Team")]

        match = match_group(groups, configured_name="team")

        assert match.strategy == "contains"
        assert match.group.id == "2@g.us"

    def test_alnum_match(self):
        groups = [GroupDescriptor("1@g.us", "Радар-Чат!"), GroupDescriptor("2@g.us", "Другое")]

        match = match_group(groups, configured_name="радар чат")

        assert match.group.id == "1@g.us"
        assert match.strategy == "alnum"

    def test_sole_group_fallback(self):
        groups = [GroupDescriptor("1@g.us", "Anything")]

        match = match_group(groups, configured_name="Nonexistent")

        assert match.strategy == "sole"

    def test_no_match(self):
        groups = [GroupDescriptor("1@g.us", "Alpha"), GroupDescriptor("2@g.us", "Beta")]

        assert match_group(groups, configured_name="Gamma") is None
        assert match_group([], configured_id="1") is None


class TestBridgeContext:
    """Tests for ActivityCache and the status snapshot"""

    def test_activity_cache_is_bounded(self):
        cache = ActivityCache()
        for i in range(MAX_ACTIVITY + 1):
            cache.append(f"m{i}")

        entries = cache.newest_first()
        assert len(entries) == MAX_ACTIVITY
        assert entries[0].text == f"m{MAX_ACTIVITY}"
        assert entries[-1].text == "m1"

    def test_activity_entry_dict(self):
        cache = ActivityCache()
        entry = cache.append("hi", "5@s.whatsapp.net")

        data = entry.to_dict()
        assert data["text"] == "hi"
        assert data["counterparty"] == "5@s.whatsapp.net"
        assert isinstance(data["ts"], int)

    def test_is_connected_needs_socket_and_status(self):
        ctx = BridgeContext()
        ctx.status = ConnectionStatus.CONNECTED
        assert ctx.is_connected is False

        ctx.sock = object()
        assert ctx.is_connected is True

    def test_status_snapshot(self):
        ctx = BridgeContext(configured_group_id="123")
        ctx.cached_group_jid = "123@g.us"
        ctx.cached_group = GroupDescriptor("123@g.us", "Team")
        ctx.last_qr = "qr"
        ctx.pending_service_state = ServiceState.OFF

        snapshot = ctx.status_snapshot()

        assert snapshot["whatsapp"] == "disconnected"
        assert snapshot["qrPending"] is True
        assert snapshot["waGroup"] == {"id": "123@g.us", "name": "Team"}
        assert snapshot["configuredGroupId"] == "123"
        assert snapshot["configuredGroupName"] is None
        assert snapshot["radarActive"] is True
        assert snapshot["lastServiceState"] is None
        assert snapshot["pendingServiceState"] == "off"
        assert snapshot["conflictCount"] == 0

    def test_snapshot_without_group(self):
        assert BridgeContext().status_snapshot()["waGroup"] is None


class TestEventBus:
    """Tests for Channel publish/subscribe"""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        channel = Channel("test")
        received = []

        async def async_handler(value):
            received.append(("async", value))

        channel.subscribe(received.append)
        channel.subscribe(async_handler)

        await channel.publish("x")

        assert received == ["x", ("async", "x")]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_delivery(self):
        channel = Channel("test")
        received = []

        def broken(value):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(received.append)

        await channel.publish("x")

        assert received == ["x"]

    def test_subscribe_is_deduplicated(self):
        channel = Channel("test")
        handler = lambda value: None

        channel.subscribe(handler)
        channel.subscribe(handler)
        assert channel.subscriber_count == 1

        channel.unsubscribe(handler)
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_bus_topics_are_independent(self):
        bus = EventBus()
        notices = []
        bus.wa_notification.subscribe(notices.append)

        await bus.tg_message.publish("relay me")
        await bus.wa_notification.publish("QR")

        assert notices == ["QR"]
