"""
WhatsApp Relay

Forwards Telegram text into the destination group and keeps the two
recent-activity rings (forwarded out, observed in).
"""

import logging
from typing import Any, Dict, Optional

from ...core.context import BridgeContext
from ...core.names import to_group_jid
from .client import WhatsAppMessage

logger = logging.getLogger(__name__)

TEST_MODE_BANNER = "[🔧service🔧]\n[🛠режим тестирования🛠]"


def _preview(text: str, limit: int = 200) -> str:
    return str(text)[:limit]


class RelayEngine:
    """Sends into the destination group once connected and resolved."""

    def __init__(self, ctx: BridgeContext):
        self.ctx = ctx

    def destination_jid(self) -> Optional[str]:
        """Resolved group, else the statically configured id."""
        return self.ctx.cached_group_jid or to_group_jid(self.ctx.configured_group_id)

    def _ready_jid(self) -> Optional[str]:
        if not self.ctx.is_connected:
            logger.warning("WhatsApp not ready - message not sent")
            return None
        jid = self.destination_jid()
        if not jid:
            logger.error("No destination group id - message not sent")
            return None
        return jid

    async def forward(self, text: str, counterparty: Optional[str] = None) -> bool:
        """
        Relay text into the destination group.

        Returns:
            True if the bridge accepted the message
        """
        jid = self._ready_jid()
        if jid is None:
            return False

        sock = self.ctx.sock
        try:
            if self.ctx.radar_test_mode:
                try:
                    await sock.send_message(jid, TEST_MODE_BANNER)
                except Exception as e:
                    logger.warning(f"Failed to send test-mode banner: {e}")

            await sock.send_message(jid, str(text))
        except Exception as e:
            logger.error(f"Failed to send to WhatsApp: {e}")
            return False

        self.ctx.forwarded.append(str(text), counterparty)
        logger.info(f"Sent to WhatsApp: {_preview(text)}")
        return True

    async def send_raw(self, text: str) -> bool:
        """Send a service message; not recorded as forwarded activity."""
        jid = self._ready_jid()
        if jid is None:
            return False

        try:
            await self.ctx.sock.send_message(jid, str(text))
        except Exception as e:
            logger.error(f"Failed to send service message to WhatsApp: {e}")
            return False

        logger.info(f"Service message sent: {_preview(text).splitlines()[-1] if text else ''}")
        return True

    async def on_messages_upsert(self, payload: Dict[str, Any]) -> int:
        """
        Record plain-text messages seen on WhatsApp.

        Returns:
            Number of messages recorded
        """
        recorded = 0
        for raw in (payload or {}).get("messages") or []:
            if not isinstance(raw, dict):
                continue
            message = WhatsAppMessage.from_bridge(raw)
            if message.from_me or not message.text or not message.text.strip():
                continue
            self.ctx.received.append(message.text, message.sender_id or message.chat_id or None)
            recorded += 1
        return recorded

    async def on_telegram_message(self, text: str) -> None:
        """tg.message subscriber: relay only while the radar is on."""
        if not self.ctx.radar_active:
            logger.info(f"Radar off - dropping Telegram message: {_preview(text, 80)}")
            return
        logger.info(f"Received from Telegram: {_preview(text)}")
        await self.forward(text)
