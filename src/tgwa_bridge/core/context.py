"""
Bridge Context

Process-wide state shared by the WhatsApp lifecycle manager, the relay,
the service notifier and the control surface. One instance is created at
startup and passed by reference to every component.

Each field has a single writer:
- status, sock, last_qr, conflict_count: ConnectionManager
- cached_group_jid, cached_group: GroupResolver
- radar_active, radar_test_mode, last_sent_state, pending_service_state: ServiceNotifier
- forwarded, received: RelayEngine
"""

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

MAX_ACTIVITY = 200


class ConnectionStatus(str, Enum):
    """WhatsApp connection status"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_QR = "awaiting_qr"
    CONNECTED = "connected"
    CONFLICT = "conflict"


class ServiceState(str, Enum):
    """Radar state announced into the destination group"""
    ON = "on"
    OFF = "off"


@dataclass
class GroupDescriptor:
    """A WhatsApp group the account participates in"""
    id: str
    name: str = ""

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "GroupDescriptor":
        """Create from the bridge's group metadata record."""
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("subject") or data.get("name") or ""),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name}


@dataclass
class ActivityEntry:
    """One relayed or observed message"""
    text: str
    counterparty: Optional[str] = None
    ts: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "counterparty": self.counterparty, "ts": self.ts}


class ActivityCache:
    """Bounded FIFO of recent messages; reads come back newest first."""

    def __init__(self, capacity: int = MAX_ACTIVITY):
        self.capacity = capacity
        self._items: Deque[ActivityEntry] = deque(maxlen=capacity)

    def append(self, text: str, counterparty: Optional[str] = None) -> ActivityEntry:
        entry = ActivityEntry(text=str(text), counterparty=counterparty)
        self._items.append(entry)
        return entry

    def newest_first(self) -> List[ActivityEntry]:
        return list(reversed(self._items))

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


@dataclass
class BridgeContext:
    """Shared state for one bridge process."""

    # Static configuration
    configured_group_id: Optional[str] = None
    configured_group_name: Optional[str] = None

    # Connection (ConnectionManager)
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    sock: Optional[Any] = None
    last_qr: Optional[str] = None
    conflict_count: int = 0

    # Destination group (GroupResolver)
    cached_group_jid: Optional[str] = None
    cached_group: Optional[GroupDescriptor] = None

    # Radar (ServiceNotifier)
    radar_active: bool = True
    radar_test_mode: bool = False
    last_sent_state: Optional[ServiceState] = None
    pending_service_state: Optional[ServiceState] = None

    # Activity (RelayEngine)
    forwarded: ActivityCache = field(default_factory=ActivityCache)
    received: ActivityCache = field(default_factory=ActivityCache)

    @property
    def is_connected(self) -> bool:
        return self.sock is not None and self.status == ConnectionStatus.CONNECTED

    def status_snapshot(self) -> Dict[str, Any]:
        """Read model for the control surface."""
        group = None
        if self.cached_group_jid:
            group = {"id": self.cached_group_jid}
            if self.cached_group and self.cached_group.id == self.cached_group_jid:
                group["name"] = self.cached_group.name

        return {
            "whatsapp": self.status.value,
            "qrPending": bool(self.last_qr),
            "waGroup": group,
            "configuredGroupId": self.configured_group_id or None,
            "configuredGroupName": self.configured_group_name or None,
            "radarActive": self.radar_active,
            "radarTestMode": self.radar_test_mode,
            "lastServiceState": self.last_sent_state.value if self.last_sent_state else None,
            "pendingServiceState": (
                self.pending_service_state.value if self.pending_service_state else None
            ),
            "conflictCount": self.conflict_count,
        }
