"""
Bridge Core

Shared state, event bus and group-name matching.
"""

from .context import (
    ActivityCache,
    ActivityEntry,
    BridgeContext,
    ConnectionStatus,
    GroupDescriptor,
    ServiceState,
    MAX_ACTIVITY,
)
from .bus import Channel, EventBus
from .names import GroupMatch, match_group, normalize_name, strip_non_alnum, to_group_jid

__all__ = [
    # Context
    "ActivityCache",
    "ActivityEntry",
    "BridgeContext",
    "ConnectionStatus",
    "GroupDescriptor",
    "ServiceState",
    "MAX_ACTIVITY",
    # Bus
    "Channel",
    "EventBus",
    # Names
    "GroupMatch",
    "match_group",
    "normalize_name",
    "strip_non_alnum",
    "to_group_jid",
]
