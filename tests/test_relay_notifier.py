"""
Test Relay, Service Notifier and Group Resolver

Tests for forwarding preconditions, radar announcements with dedup and
pending slot, and destination group resolution.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from tgwa_bridge.core.context import BridgeContext, ConnectionStatus, GroupDescriptor, ServiceState
from tgwa_bridge.channels.whatsapp.groups import GroupResolver
from tgwa_bridge.channels.whatsapp.notifier import SERVICE_TEXTS, TEST_MODE_TEXTS, ServiceNotifier
from tgwa_bridge.channels.whatsapp.relay import TEST_MODE_BANNER, RelayEngine


def connected_context(**kwargs) -> BridgeContext:
    ctx = BridgeContext(**kwargs)
    ctx.sock = MagicMock()
    ctx.sock.send_message = AsyncMock(return_value={})
    ctx.status = ConnectionStatus.CONNECTED
    return ctx


class TestRelayEngine:
    """Tests for RelayEngine"""

    def setup_method(self):
        self.ctx = connected_context()
        self.ctx.cached_group_jid = "1@g.us"
        self.relay = RelayEngine(self.ctx)

    @pytest.mark.asyncio
    async def test_forward_sends_and_records(self):
        assert await self.relay.forward("hello") is True

        self.ctx.sock.send_message.assert_awaited_once_with("1@g.us", "hello")
        assert [e.text for e in self.ctx.forwarded.newest_first()] == ["hello"]

    @pytest.mark.asyncio
    async def test_forward_requires_connected_status(self):
        self.ctx.status = ConnectionStatus.AWAITING_QR

        assert await self.relay.forward("hello") is False

        self.ctx.sock.send_message.assert_not_awaited()
        assert len(self.ctx.forwarded) == 0

    @pytest.mark.asyncio
    async def test_forward_without_socket(self):
        self.ctx.sock = None

        assert await self.relay.forward("hello") is False

    @pytest.mark.asyncio
    async def test_falls_back_to_configured_id(self):
        self.ctx.cached_group_jid = None
        self.ctx.configured_group_id = "123"

        assert await self.relay.forward("hello") is True

        self.ctx.sock.send_message.assert_awaited_once_with("123@g.us", "hello")

    @pytest.mark.asyncio
    async def test_no_destination(self):
        self.ctx.cached_group_jid = None

        assert await self.relay.forward("hello") is False
        self.ctx.sock.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self):
        self.ctx.sock.send_message = AsyncMock(side_effect=ConnectionError("bridge down"))

        assert await self.relay.forward("hello") is False
        assert len(self.ctx.forwarded) == 0

    @pytest.mark.asyncio
    async def test_test_mode_sends_banner_first(self):
        self.ctx.radar_test_mode = True

        await self.relay.forward("hello")

        sent = [call.args for call in self.ctx.sock.send_message.await_args_list]
        assert sent == [("1@g.us", TEST_MODE_BANNER), ("1@g.us", "hello")]

    @pytest.mark.asyncio
    async def test_send_raw_not_recorded(self):
        assert await self.relay.send_raw("service") is True
        assert len(self.ctx.forwarded) == 0

    @pytest.mark.asyncio
    async def test_messages_upsert_keeps_plain_text_only(self):
        payload = {"messages": [
            {"key": {"remoteJid": "1@g.us", "participant": "5@s.whatsapp.net"},
             "message": {"conversation": "plain"}},
            {"key": {"remoteJid": "7@s.whatsapp.net"},
             "message": {"extendedTextMessage": {"text": "extended"}}},
            {"key": {"remoteJid": "1@g.us"},
             "message": {"imageMessage": {"caption": "photo"}}},
            {"key": {"remoteJid": "1@g.us", "fromMe": True},
             "message": {"conversation": "mine"}},
        ]}

        assert await self.relay.on_messages_upsert(payload) == 2

        entries = self.ctx.received.newest_first()
        assert [e.text for e in entries] == ["extended", "plain"]
        assert entries[0].counterparty == "7@s.whatsapp.net"
        assert entries[1].counterparty == "5@s.whatsapp.net"

    @pytest.mark.asyncio
    async def test_telegram_message_dropped_when_radar_off(self):
        self.ctx.radar_active = False

        await self.relay.on_telegram_message("hello")

        self.ctx.sock.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_telegram_message_relayed_when_radar_on(self):
        await self.relay.on_telegram_message("hello")

        self.ctx.sock.send_message.assert_awaited_once_with("1@g.us", "hello")


class TestServiceNotifier:
    """Tests for ServiceNotifier"""

    def setup_method(self):
        self.ctx = connected_context()
        self.ctx.cached_group_jid = "1@g.us"
        self.relay = RelayEngine(self.ctx)
        self.notifier = ServiceNotifier(self.ctx, self.relay)

    def sent_texts(self):
        return [call.args[1] for call in self.ctx.sock.send_message.await_args_list]

    @pytest.mark.asyncio
    async def test_announce_is_idempotent(self):
        assert await self.notifier.announce(ServiceState.ON) is True
        assert await self.notifier.announce(ServiceState.ON) is False

        assert self.sent_texts() == [SERVICE_TEXTS[ServiceState.ON]]
        assert self.ctx.last_sent_state == ServiceState.ON

    @pytest.mark.asyncio
    async def test_announce_different_state_sends(self):
        await self.notifier.announce(ServiceState.ON)
        await self.notifier.announce(ServiceState.OFF)

        assert self.sent_texts() == [SERVICE_TEXTS[ServiceState.ON], SERVICE_TEXTS[ServiceState.OFF]]

    @pytest.mark.asyncio
    async def test_announce_queues_when_disconnected(self):
        self.ctx.status = ConnectionStatus.DISCONNECTED

        assert await self.notifier.announce(ServiceState.OFF) is False

        assert self.ctx.pending_service_state == ServiceState.OFF
        assert self.ctx.last_sent_state is None
        self.ctx.sock.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_slot_keeps_latest(self):
        self.ctx.status = ConnectionStatus.DISCONNECTED

        await self.notifier.announce(ServiceState.OFF)
        await self.notifier.announce(ServiceState.ON)

        assert self.ctx.pending_service_state == ServiceState.ON

    @pytest.mark.asyncio
    async def test_announce_queues_on_send_failure(self):
        self.ctx.sock.send_message = AsyncMock(side_effect=ConnectionError("boom"))

        assert await self.notifier.announce(ServiceState.ON) is False
        assert self.ctx.pending_service_state == ServiceState.ON

    @pytest.mark.asyncio
    async def test_force_bypasses_dedup(self):
        await self.notifier.announce(ServiceState.ON)

        assert await self.notifier.announce(ServiceState.ON, force=True) is True
        assert len(self.sent_texts()) == 2

    @pytest.mark.asyncio
    async def test_drain_pending_delivers_once(self):
        self.ctx.pending_service_state = ServiceState.OFF

        assert await self.notifier.drain_pending() is True
        assert await self.notifier.drain_pending() is False

        assert self.sent_texts() == [SERVICE_TEXTS[ServiceState.OFF]]
        assert self.ctx.pending_service_state is None

    @pytest.mark.asyncio
    async def test_drain_pending_requeues_on_failure(self):
        self.ctx.pending_service_state = ServiceState.ON
        self.ctx.sock.send_message = AsyncMock(side_effect=ConnectionError("boom"))

        assert await self.notifier.drain_pending() is False
        assert self.ctx.pending_service_state == ServiceState.ON

    @pytest.mark.asyncio
    async def test_set_radar_off(self):
        assert await self.notifier.set_radar(False) is True

        assert self.ctx.radar_active is False
        assert self.sent_texts() == [SERVICE_TEXTS[ServiceState.OFF]]

    @pytest.mark.asyncio
    async def test_set_radar_on_starts_when_disconnected(self):
        manager = MagicMock()
        manager.request_start = AsyncMock()
        self.notifier.bind(manager=manager)
        self.ctx.status = ConnectionStatus.DISCONNECTED
        self.ctx.radar_active = False

        await self.notifier.set_radar(True)

        assert self.ctx.radar_active is True
        manager.request_start.assert_awaited_once()
        assert self.ctx.pending_service_state == ServiceState.ON

    @pytest.mark.asyncio
    async def test_set_radar_on_does_not_restart_live_connection(self):
        manager = MagicMock()
        manager.request_start = AsyncMock()
        self.notifier.bind(manager=manager)

        await self.notifier.set_radar(True)

        manager.request_start.assert_not_awaited()
        assert self.sent_texts() == [SERVICE_TEXTS[ServiceState.ON]]

    @pytest.mark.asyncio
    async def test_set_radar_on_restarts_after_conflict(self):
        manager = MagicMock()
        manager.request_start = AsyncMock()
        self.notifier.bind(manager=manager)
        self.ctx.status = ConnectionStatus.CONFLICT
        self.ctx.radar_active = False

        await self.notifier.set_radar(True)

        manager.request_start.assert_awaited_once()
        assert self.ctx.pending_service_state == ServiceState.ON

    @pytest.mark.asyncio
    async def test_set_radar_on_leaves_pairing_alone(self):
        manager = MagicMock()
        manager.request_start = AsyncMock()
        self.notifier.bind(manager=manager)
        self.ctx.status = ConnectionStatus.AWAITING_QR

        await self.notifier.set_radar(True)

        manager.request_start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_radar_test_banners_are_not_deduplicated(self):
        await self.notifier.set_radar_test(True)
        await self.notifier.set_radar_test(True)

        assert self.ctx.radar_test_mode is True
        assert self.sent_texts() == [TEST_MODE_TEXTS[True], TEST_MODE_TEXTS[True]]

    @pytest.mark.asyncio
    async def test_reannounce_resolves_and_forces(self):
        resolver = MagicMock()
        resolver.resolve = AsyncMock()
        self.notifier.bind(resolver=resolver)
        await self.notifier.announce(ServiceState.ON)

        assert await self.notifier.reannounce() is True

        resolver.resolve.assert_awaited_once()
        assert len(self.sent_texts()) == 2


class TestGroupResolver:
    """Tests for GroupResolver"""

    def setup_method(self):
        self.ctx = connected_context(configured_group_id="123", configured_group_name="Team")
        self.notifier = MagicMock()
        self.notifier.announce = AsyncMock(return_value=True)
        self.resolver = GroupResolver(self.ctx, self.notifier)

    def set_groups(self, groups):
        self.ctx.sock.group_fetch_all_participating = AsyncMock(return_value=groups)

    @pytest.mark.asyncio
    async def test_id_match_beats_name_substring(self):
        self.set_groups({
            "123@g.us": {"id": "123@g.us", "subject": "Other"},
            "999@g.us": {"id": "999@g.us", "subject": "My Team Chat"},
        })

        group = await self.resolver.resolve()

        assert group.id == "123@g.us"
        assert self.ctx.cached_group_jid == "123@g.us"

    @pytest.mark.asyncio
    async def test_sole_group_fallback(self):
        self.ctx.configured_group_id = None
        self.ctx.configured_group_name = "Nonexistent"
        self.set_groups({"1@g.us": {"id": "1@g.us", "subject": "Anything"}})

        group = await self.resolver.resolve()

        assert group.id == "1@g.us"

    @pytest.mark.asyncio
    async def test_no_match_clears_cache(self):
        self.ctx.cached_group_jid = "old@g.us"
        self.ctx.configured_group_id = None
        self.ctx.configured_group_name = "Missing"
        self.set_groups([
            {"id": "1@g.us", "subject": "First"},
            {"id": "2@g.us", "subject": "Second"},
        ])

        assert await self.resolver.resolve() is None
        assert self.ctx.cached_group_jid is None

    @pytest.mark.asyncio
    async def test_not_connected_skips_fetch(self):
        self.ctx.status = ConnectionStatus.CONNECTING
        self.set_groups({})

        assert await self.resolver.resolve() is None
        self.ctx.sock.group_fetch_all_participating.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_error_is_not_fatal(self):
        self.ctx.sock.group_fetch_all_participating = AsyncMock(side_effect=ConnectionError("boom"))

        assert await self.resolver.resolve() is None

    @pytest.mark.asyncio
    async def test_welcome_when_radar_active(self):
        self.set_groups({"123@g.us": {"id": "123@g.us", "subject": "Team"}})

        await self.resolver.resolve(send_welcome=True)

        self.notifier.announce.assert_awaited_once_with(ServiceState.ON)

    @pytest.mark.asyncio
    async def test_no_welcome_when_radar_off(self):
        self.ctx.radar_active = False
        self.set_groups({"123@g.us": {"id": "123@g.us", "subject": "Team"}})

        await self.resolver.resolve(send_welcome=True)

        self.notifier.announce.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_welcome_failure_is_logged(self):
        self.notifier.announce = AsyncMock(side_effect=RuntimeError("boom"))
        self.set_groups({"123@g.us": {"id": "123@g.us", "subject": "Team"}})

        group = await self.resolver.resolve(send_welcome=True)

        assert group.id == "123@g.us"

    @pytest.mark.asyncio
    async def test_list_groups(self):
        self.set_groups({"1@g.us": {"id": "1@g.us", "subject": "A"}})

        assert await self.resolver.list_groups() == [GroupDescriptor("1@g.us", "A")]

        self.ctx.status = ConnectionStatus.DISCONNECTED
        assert await self.resolver.list_groups() is None
