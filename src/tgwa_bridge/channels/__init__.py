"""
Bridge Channels

- whatsapp: destination side (lifecycle, groups, relay, service notices)
- telegram: source side (Bot API long-poll)
- web_server: HTTP control surface
"""

from .telegram import TelegramSource
from .web_server import ControlServer

__all__ = ["TelegramSource", "ControlServer"]
