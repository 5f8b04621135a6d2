"""
Telegram Source

Long-polls the Telegram Bot API and publishes text from the configured
source account onto the bus (tg.message). WhatsApp lifecycle notices from
the bus (wa.notification) are sent back to the source chat.

Environment Variables:
    TELEGRAM_BOT_TOKEN: Bot API token
    TELEGRAM_SOURCE: Username (with or without @) or numeric id of the source
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..core.bus import EventBus

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
POLL_TIMEOUT_SECONDS = 25
POLL_ERROR_BACKOFF_SECONDS = 5.0


def normalize_source(source: Optional[str]) -> str:
    return str(source or "").strip().lstrip("@").lower()


def notification_chat_id(source: Optional[str]) -> Optional[str]:
    """Chat to send notices to: ids as-is, usernames as @name."""
    source = str(source or "").strip()
    if not source:
        return None
    if source.startswith("-") or source.isdigit():
        return source
    return "@" + source.lstrip("@")


class TelegramSource:
    """
    Telegram Bot API event source.

    Example:
        source = TelegramSource(token, "news_channel", bus)
        await source.start()
        ...
        await source.stop()
    """

    def __init__(
        self,
        token: Optional[str],
        source: Optional[str],
        bus: EventBus,
        api_url: str = TELEGRAM_API_URL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.token = token
        self.source = source
        self.bus = bus
        self.api_url = api_url.rstrip("/")
        self._client = client
        self._offset = 0
        self._poll_task: Optional[asyncio.Task] = None
        self.is_active = False
        self.bot_username: Optional[str] = None

        self.bus.wa_notification.subscribe(self.send_notification)

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=POLL_TIMEOUT_SECONDS + 10)
        return self._client

    async def _api(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Call a Bot API method and return its result."""
        resp = await self._get_client().post(
            f"{self.api_url}/bot{self.token}/{method}",
            json=params or {},
        )
        data = resp.json()
        if not data.get("ok"):
            raise RuntimeError(f"Telegram {method} failed: {data.get('description', resp.status_code)}")
        return data.get("result")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> bool:
        """Verify the token and start polling; False if Telegram is unavailable."""
        if not self.configured:
            logger.warning("TELEGRAM_BOT_TOKEN not set - Telegram source disabled")
            return False

        logger.info("Connecting to Telegram...")
        try:
            me = await self._api("getMe")
        except Exception as e:
            logger.error(f"Telegram error: {e}")
            return False

        self.bot_username = (me or {}).get("username")
        self.is_active = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"Telegram connected as @{self.bot_username}")
        return True

    async def stop(self) -> None:
        self.is_active = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Telegram source stopped")

    async def _poll_loop(self) -> None:
        while self.is_active:
            try:
                updates = await self._api("getUpdates", {
                    "offset": self._offset,
                    "timeout": POLL_TIMEOUT_SECONDS,
                    "allowed_updates": ["message", "channel_post"],
                })
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Telegram poll failed: {e}")
                await asyncio.sleep(POLL_ERROR_BACKOFF_SECONDS)
                continue

            for update in updates or []:
                self._offset = max(self._offset, int(update.get("update_id", 0)) + 1)
                try:
                    await self.handle_update(update)
                except Exception as e:
                    logger.error(f"Error handling Telegram update: {e}")

    # =========================================================================
    # INBOUND
    # =========================================================================

    def is_from_source(self, message: Dict[str, Any]) -> bool:
        """Match the sender (or posting channel) against the configured source."""
        source = normalize_source(self.source)
        if not source:
            return False

        senders: List[Dict[str, Any]] = [
            s for s in (message.get("from"), message.get("sender_chat")) if isinstance(s, dict)
        ]
        for sender in senders:
            sender_id = str(sender.get("id") or "")
            username = normalize_source(sender.get("username"))
            if username and username == source:
                return True
            if sender_id and (sender_id == source or "-" + sender_id == source):
                return True
        return False

    async def handle_update(self, update: Dict[str, Any]) -> bool:
        """
        Publish the update's text if it comes from the source.

        Returns:
            True if a tg.message event was published
        """
        message = update.get("message") or update.get("channel_post")
        if not message:
            return False

        text = message.get("text")
        if not isinstance(text, str) or not text.strip():
            return False
        if not self.is_from_source(message):
            return False

        logger.info(f"Received from Telegram: {text[:200]}")
        await self.bus.tg_message.publish(text)
        return True

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    async def send_message(self, chat_id: str, text: str) -> bool:
        try:
            await self._api("sendMessage", {"chat_id": chat_id, "text": str(text)})
            return True
        except Exception as e:
            logger.error(f"Failed to send Telegram message: {e}")
            return False

    async def send_notification(self, text: str) -> bool:
        """wa.notification subscriber: notify the source chat."""
        if not self.is_active:
            logger.warning("Telegram not connected - notification not sent")
            return False
        chat_id = notification_chat_id(self.source)
        if not chat_id:
            logger.warning("TELEGRAM_SOURCE not set - notification not sent")
            return False

        if await self.send_message(chat_id, text):
            logger.info(f"Notification sent to Telegram: {str(text)[:200]}")
            return True
        return False

    def status(self) -> Dict[str, Any]:
        return {
            "telegram": "connected" if self.is_active else "disconnected",
            "bot": self.bot_username,
            "source": self.source or None,
        }
