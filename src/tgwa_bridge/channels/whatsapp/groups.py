"""
Group Resolver

Runs after every successful connection open and picks the destination
group out of the groups the account currently participates in.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

from ...core.context import BridgeContext, ConnectionStatus, GroupDescriptor, ServiceState
from ...core.names import match_group, to_group_jid

if TYPE_CHECKING:
    from .notifier import ServiceNotifier

logger = logging.getLogger(__name__)


class GroupResolver:
    """Resolves and caches the destination group id."""

    def __init__(self, ctx: BridgeContext, notifier: Optional["ServiceNotifier"] = None):
        self.ctx = ctx
        self.notifier = notifier

    async def fetch_groups(self) -> List[GroupDescriptor]:
        """Fetch all participating groups from the live handle."""
        raw = await self.ctx.sock.group_fetch_all_participating()
        records = raw.values() if isinstance(raw, dict) else (raw or [])
        return [GroupDescriptor.from_bridge(r) for r in records if isinstance(r, dict)]

    async def list_groups(self) -> Optional[List[GroupDescriptor]]:
        """Groups for the control surface, or None when not connected."""
        if not self.ctx.is_connected:
            return None
        return await self.fetch_groups()

    async def resolve(self, send_welcome: bool = False) -> Optional[GroupDescriptor]:
        """
        Resolve the destination group and cache its id.

        Args:
            send_welcome: Announce radar ON once the group is known

        Returns:
            The selected group, or None if not connected, the fetch failed,
            or nothing matched
        """
        if not self.ctx.is_connected:
            logger.warning("WhatsApp not connected - skipping group resolution")
            return None

        try:
            groups = await self.fetch_groups()
        except Exception as e:
            logger.error(f"Failed to fetch WhatsApp groups: {e}")
            return None

        logger.info(f"Found {len(groups)} group(s)")
        logger.info(
            f"Looking for group id={to_group_jid(self.ctx.configured_group_id)} "
            f"name=\"{self.ctx.configured_group_name or ''}\""
        )

        match = match_group(groups, self.ctx.configured_group_id, self.ctx.configured_group_name)
        if match is None:
            self.ctx.cached_group_jid = None
            self.ctx.cached_group = None
            candidates = ", ".join(f"\"{g.name}\" ({g.id})" for g in groups) or "none"
            logger.warning(f"Destination group not found. Candidates: {candidates}")
            return None

        group = match.group
        self.ctx.cached_group_jid = group.id
        self.ctx.cached_group = group
        logger.info(f"Cached group ({match.strategy}): {group.name} ({group.id})")

        if send_welcome and self.ctx.radar_active and self.notifier is not None:
            try:
                await self.notifier.announce(ServiceState.ON)
            except Exception as e:
                logger.warning(f"Failed to send welcome message: {e}")

        return group
