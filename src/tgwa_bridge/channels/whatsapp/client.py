"""
WhatsApp Bridge Client

Connection handle for the Node.js WhatsApp bridge (Baileys multi-device).
One instance is one WhatsApp session; the lifecycle manager builds a new
instance for every (re)connect and never reuses an ended one.

Architecture:
    Bridge process <-> WhatsAppBridgeSocket <-> ConnectionManager

HTTP API:
    POST /session/start   {"authDir", "files"}
    POST /session/end
    GET  /groups          {"groups": {jid: {"id", "subject"}}}
    POST /send            {"chatId", "message"}

WebSocket events ({"type": ..., "update"/"files"/"messages": ...}):
    connection.update     {"connection", "qr", "lastDisconnect"}
    creds.update          {"files": {name: content-or-null}}
    messages.upsert       {"messages": [...], "type"}
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from .auth_state import MultiFileAuthState

logger = logging.getLogger(__name__)


class DisconnectReason:
    """Close codes reported by the bridge (Baileys DisconnectReason)."""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    CONFLICT = 409
    BAD_SESSION = 500
    RESTART_REQUIRED = 515


class WhatsAppBridgeError(ConnectionError):
    """The bridge rejected a request or could not be reached."""


def disconnect_status_code(last_disconnect: Optional[Dict[str, Any]]) -> Optional[int]:
    """
    Read the numeric close code from a structured disconnect cause.

    Accepts the shapes the bridge emits:
        {"statusCode": 440}
        {"error": {"output": {"statusCode": 440}}}
        {"output": {"statusCode": 440}}
    """
    if not isinstance(last_disconnect, dict):
        return None

    candidates = [
        last_disconnect.get("statusCode"),
        last_disconnect.get("status_code"),
        (last_disconnect.get("output") or {}).get("statusCode"),
    ]
    error = last_disconnect.get("error")
    if isinstance(error, dict):
        candidates.append(error.get("statusCode"))
        candidates.append((error.get("output") or {}).get("statusCode"))

    for value in candidates:
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


@dataclass
class WhatsAppMessage:
    """Incoming message from a messages.upsert event."""
    id: str
    chat_id: str
    sender_id: Optional[str] = None
    text: Optional[str] = None
    timestamp: int = 0
    from_me: bool = False
    push_name: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")

    @classmethod
    def from_bridge(cls, data: Dict[str, Any]) -> "WhatsAppMessage":
        """Create from a Baileys WAMessage record."""
        key = data.get("key") or {}
        content = data.get("message") or {}

        text = None
        if isinstance(content.get("conversation"), str):
            text = content["conversation"]
        elif isinstance((content.get("extendedTextMessage") or {}).get("text"), str):
            text = content["extendedTextMessage"]["text"]
        elif data.get("type") == "chat" and isinstance(data.get("body"), str):
            # whatsapp-web.js style record
            text = data["body"]

        chat_id = key.get("remoteJid") or data.get("from") or ""

        try:
            timestamp = int(data.get("messageTimestamp") or data.get("timestamp") or 0)
        except (TypeError, ValueError):
            timestamp = 0

        return cls(
            id=key.get("id") or data.get("id") or "",
            chat_id=chat_id,
            sender_id=key.get("participant") or chat_id or None,
            text=text,
            timestamp=timestamp,
            from_me=bool(key.get("fromMe", data.get("fromMe", False))),
            push_name=data.get("pushName"),
        )


EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class WhatsAppBridgeSocket:
    """
    One WhatsApp session driven through the bridge.

    Example:
        sock = WhatsAppBridgeSocket(http_url, ws_url, auth_state)
        sock.on("connection.update", handle_update)
        await sock.connect()
        groups = await sock.group_fetch_all_participating()
        await sock.send_message("1203630@g.us", "hello")
        await sock.end()
    """

    def __init__(
        self,
        http_url: str = "http://localhost:3001",
        ws_url: str = "ws://localhost:3001/ws",
        auth_state: Optional[MultiFileAuthState] = None,
        request_timeout: float = 30.0,
    ):
        self.http_url = http_url.rstrip("/")
        self.ws_url = ws_url
        self.auth_state = auth_state
        self.request_timeout = request_timeout
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._ws = None
        self._listener: Optional[asyncio.Task] = None
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._ended = False

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a handler for a bridge event type."""
        self._handlers.setdefault(event, []).append(handler)

    @property
    def ended(self) -> bool:
        return self._ended

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def connect(self) -> None:
        """Open the session on the bridge and start listening for events."""
        self._http_session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout)
        )

        payload: Dict[str, Any] = {"authDir": None, "files": {}}
        if self.auth_state is not None:
            payload["authDir"] = str(self.auth_state.folder)
            payload["files"] = dict(self.auth_state.files)

        try:
            self._ws = await self._http_session.ws_connect(self.ws_url)
            await self._post("/session/start", payload)
        except Exception as e:
            await self._close_transport()
            raise WhatsAppBridgeError(
                f"Cannot start WhatsApp session on bridge at {self.http_url}: {e}"
            ) from e

        logger.info(f"Connected to WhatsApp bridge WebSocket: {self.ws_url}")
        self._listener = asyncio.create_task(self._listen())

    async def end(self) -> None:
        """End the session; safe to call more than once."""
        if self._ended:
            return
        self._ended = True

        if self._listener and self._listener is not asyncio.current_task():
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
        self._listener = None

        if self._http_session and not self._http_session.closed:
            try:
                await self._post("/session/end", {})
            except Exception as e:
                logger.debug(f"Bridge session end failed: {e}")

        await self._close_transport()

    async def _close_transport(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # =========================================================================
    # HTTP API
    # =========================================================================

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._http_session is None:
            raise WhatsAppBridgeError("Not connected. Call connect() first.")
        async with self._http_session.post(f"{self.http_url}{path}", json=payload) as resp:
            if resp.status != 200:
                error = await resp.text()
                raise WhatsAppBridgeError(f"Bridge {path} returned {resp.status}: {error}")
            return await resp.json()

    async def group_fetch_all_participating(self) -> Dict[str, Dict[str, Any]]:
        """Get metadata for every group the account is in, keyed by JID."""
        if self._http_session is None:
            raise WhatsAppBridgeError("Not connected. Call connect() first.")
        async with self._http_session.get(f"{self.http_url}/groups") as resp:
            if resp.status != 200:
                error = await resp.text()
                raise WhatsAppBridgeError(f"Bridge /groups returned {resp.status}: {error}")
            data = await resp.json()

        groups = data.get("groups", data) if isinstance(data, dict) else data
        if isinstance(groups, list):
            return {str(g.get("id")): g for g in groups if isinstance(g, dict)}
        return groups or {}

    async def send_message(self, chat_id: str, text: str) -> Dict[str, Any]:
        """
        Send a text message.

        Args:
            chat_id: WhatsApp JID (e.g. "120363123456789@g.us")
            text: Message body

        Returns:
            Bridge response with the message key
        """
        return await self._post("/send", {"chatId": chat_id, "message": str(text)})

    # =========================================================================
    # WEBSOCKET EVENTS
    # =========================================================================

    async def _listen(self) -> None:
        """Dispatch bridge events until the socket closes."""
        closed_by_bridge = False

        while not self._ended and self._ws is not None:
            try:
                msg = await self._ws.receive()

                if msg.type == aiohttp.WSMsgType.TEXT:
                    data = json.loads(msg.data)
                    await self._dispatch(data)

                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSED,
                    aiohttp.WSMsgType.ERROR,
                ):
                    logger.warning("WhatsApp bridge WebSocket closed")
                    closed_by_bridge = True
                    break

            except asyncio.CancelledError:
                raise
            except json.JSONDecodeError as e:
                logger.warning(f"Malformed bridge event: {e}")
            except Exception as e:
                logger.error(f"Error in WhatsApp bridge listener: {e}")
                closed_by_bridge = True
                break

        if closed_by_bridge and not self._ended:
            await self._emit("connection.update", {
                "connection": "close",
                "lastDisconnect": {"statusCode": DisconnectReason.CONNECTION_LOST},
            })

    async def _dispatch(self, data: Dict[str, Any]) -> None:
        event_type = data.get("type")

        if event_type == "connection.update":
            await self._emit(event_type, data.get("update") or {})
        elif event_type == "creds.update":
            await self._emit(event_type, {"files": data.get("files") or {}})
        elif event_type == "messages.upsert":
            await self._emit(event_type, {
                "messages": data.get("messages") or [],
                "type": data.get("upsertType", "notify"),
            })
        else:
            logger.debug(f"Unknown bridge event type: {event_type}")

    async def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {event} handler: {e}")


def make_bridge_socket_factory(http_url: str, ws_url: str) -> Callable[[MultiFileAuthState], WhatsAppBridgeSocket]:
    """Build the socket factory the lifecycle manager uses on every start."""

    def factory(auth_state: MultiFileAuthState) -> WhatsAppBridgeSocket:
        return WhatsAppBridgeSocket(http_url=http_url, ws_url=ws_url, auth_state=auth_state)

    return factory
