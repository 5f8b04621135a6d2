"""
Service Notifier

Posts radar on/off announcements into the destination group. Repeats of
the last delivered state are suppressed; an announcement that cannot be
delivered is parked in a single pending slot and retried after the next
successful connect.
"""

import logging
from typing import TYPE_CHECKING, Optional

from ...core.context import BridgeContext, ConnectionStatus, ServiceState
from .relay import RelayEngine

if TYPE_CHECKING:
    from .groups import GroupResolver
    from .lifecycle import ConnectionManager

logger = logging.getLogger(__name__)

SERVICE_TEXTS = {
    ServiceState.ON: "[🔧service🔧]\n[🌎подключено🌎]\n[🚨РАДАР АКТИВЕН🚨]",
    ServiceState.OFF: "[🔧service🔧]\n[💤РАДАР ВЫКЛЮЧЕН💤]",
}

TEST_MODE_TEXTS = {
    True: "[🔧service🔧]\n[🛠testON🛠]\n[🤚ручной режим🤚]",
    False: "[🔧service🔧]\n[🛠testOFF🛠]\n🤖автоматический режим🤖",
}

_RESTARTABLE = (ConnectionStatus.DISCONNECTED, ConnectionStatus.CONFLICT)


class ServiceNotifier:
    """Idempotent radar announcements with a one-slot retry queue."""

    def __init__(self, ctx: BridgeContext, relay: RelayEngine):
        self.ctx = ctx
        self.relay = relay
        self.manager: Optional["ConnectionManager"] = None
        self.resolver: Optional["GroupResolver"] = None

    def bind(
        self,
        manager: Optional["ConnectionManager"] = None,
        resolver: Optional["GroupResolver"] = None,
    ) -> None:
        """Attach the collaborators created after the notifier."""
        if manager is not None:
            self.manager = manager
        if resolver is not None:
            self.resolver = resolver

    async def announce(self, state: ServiceState, force: bool = False) -> bool:
        """
        Announce a radar state.

        Args:
            state: ServiceState.ON or ServiceState.OFF
            force: Send even if this state was the last one delivered

        Returns:
            True only if a message was delivered by this call
        """
        state = ServiceState(state)

        if not force and self.ctx.last_sent_state == state:
            logger.debug(f"Service state '{state.value}' already announced")
            if self.ctx.pending_service_state is not None:
                self.ctx.pending_service_state = None
            return False

        if self.ctx.is_connected and self.relay.destination_jid():
            if await self.relay.send_raw(SERVICE_TEXTS[state]):
                self.ctx.last_sent_state = state
                self.ctx.pending_service_state = None
                logger.info(f"Announced radar {state.value}")
                return True

        self.ctx.pending_service_state = state
        logger.info(f"Radar {state.value} announcement queued until WhatsApp is ready")
        return False

    async def drain_pending(self) -> bool:
        """Deliver the queued announcement, if any. Called once per connect."""
        state = self.ctx.pending_service_state
        if state is None:
            return False

        self.ctx.pending_service_state = None
        logger.info(f"Flushing queued radar {state.value} announcement")
        return await self.announce(state)

    async def set_radar(self, enabled: bool) -> bool:
        """Operator radar toggle."""
        self.ctx.radar_active = bool(enabled)
        logger.info(f"Radar turned {'ON' if enabled else 'OFF'}")

        if enabled:
            # A live or in-progress session is left alone; a conflict needs a fresh start
            if self.manager is not None and self.ctx.status in _RESTARTABLE:
                await self.manager.request_start()
            return await self.announce(ServiceState.ON)

        return await self.announce(ServiceState.OFF)

    async def set_radar_test(self, enabled: bool) -> bool:
        """Toggle test mode; each forwarded message is then preceded by a banner."""
        self.ctx.radar_test_mode = bool(enabled)
        logger.info(f"Radar test mode turned {'ON' if enabled else 'OFF'}")
        return await self.relay.send_raw(TEST_MODE_TEXTS[bool(enabled)])

    async def reannounce(self) -> bool:
        """Re-resolve the destination group and repeat the current radar state."""
        if self.resolver is not None:
            await self.resolver.resolve()
        state = ServiceState.ON if self.ctx.radar_active else ServiceState.OFF
        return await self.announce(state, force=True)
