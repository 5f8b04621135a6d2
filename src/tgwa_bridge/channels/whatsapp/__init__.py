"""
WhatsApp Channel

Connection lifecycle, group resolution, relay and service announcements
on top of the Node.js WhatsApp bridge.
"""

from .auth_state import MultiFileAuthState, list_auth_files, reset_auth_dir, use_multi_file_auth_state
from .client import (
    DisconnectReason,
    WhatsAppBridgeError,
    WhatsAppBridgeSocket,
    WhatsAppMessage,
    disconnect_status_code,
    make_bridge_socket_factory,
)
from .groups import GroupResolver
from .lifecycle import CloseAction, ConnectionManager, classify_close_code, restart_delay
from .notifier import SERVICE_TEXTS, TEST_MODE_TEXTS, ServiceNotifier
from .qr import render_qr_ascii, render_qr_svg
from .relay import TEST_MODE_BANNER, RelayEngine

__all__ = [
    "MultiFileAuthState",
    "list_auth_files",
    "reset_auth_dir",
    "use_multi_file_auth_state",
    "DisconnectReason",
    "WhatsAppBridgeError",
    "WhatsAppBridgeSocket",
    "WhatsAppMessage",
    "disconnect_status_code",
    "make_bridge_socket_factory",
    "GroupResolver",
    "CloseAction",
    "ConnectionManager",
    "classify_close_code",
    "restart_delay",
    "SERVICE_TEXTS",
    "TEST_MODE_TEXTS",
    "ServiceNotifier",
    "render_qr_ascii",
    "render_qr_svg",
    "TEST_MODE_BANNER",
    "RelayEngine",
]
