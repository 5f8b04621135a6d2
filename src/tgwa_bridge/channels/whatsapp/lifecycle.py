"""
WhatsApp Connection Lifecycle

Owns the one live WhatsApp handle. Drives start, QR pairing, open and close
handling, credential reset and the backoff restart timer.

State machine (ctx.status):
    disconnected -> connecting              start()
    connecting   -> awaiting_qr             bridge sends a pairing QR
    connecting/awaiting_qr -> connected     session open
    connected    -> disconnected            close; restart scheduled
    connected    -> conflict                close 440; waits for relogin
"""

import asyncio
import functools
import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Union

from ...core.bus import EventBus
from ...core.context import BridgeContext, ConnectionStatus
from .auth_state import MultiFileAuthState, reset_auth_dir, use_multi_file_auth_state
from .client import DisconnectReason, disconnect_status_code
from .qr import render_qr_ascii

if TYPE_CHECKING:
    from ...storage.gist_store import GistCredentialStore
    from .groups import GroupResolver
    from .notifier import ServiceNotifier
    from .relay import RelayEngine

logger = logging.getLogger(__name__)


class CloseAction(str, Enum):
    """What to do after the connection closes"""
    RESET = "reset"          # session invalidated remotely; wipe auth and re-pair
    CONFLICT = "conflict"    # another session took over; wait for operator
    BENIGN = "benign"
    UNKNOWN = "unknown"


def classify_close_code(code: Optional[int]) -> CloseAction:
    """Map a disconnect status code to a recovery path."""
    if code in (DisconnectReason.LOGGED_OUT, DisconnectReason.CONNECTION_CLOSED):
        return CloseAction.RESET
    if code == DisconnectReason.CONNECTION_REPLACED:
        return CloseAction.CONFLICT
    if code == DisconnectReason.CONFLICT:
        return CloseAction.BENIGN
    return CloseAction.UNKNOWN


def restart_delay(retry_count: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """Exponential backoff: 2^n * base seconds, capped."""
    return min(max_delay, (2 ** retry_count) * base)


class ConnectionManager:
    """
    Starts and restarts the WhatsApp session.

    Only one start runs at a time and only one restart timer is ever
    pending. Nothing here raises to the caller: failures end in a logged
    status change and, where appropriate, a scheduled restart.
    """

    MAX_RETRY = 8

    def __init__(
        self,
        ctx: BridgeContext,
        bus: EventBus,
        socket_factory: Callable[[MultiFileAuthState], Any],
        auth_dir: Union[str, Path],
        credential_store: Optional["GistCredentialStore"] = None,
        resolver: Optional["GroupResolver"] = None,
        notifier: Optional["ServiceNotifier"] = None,
        relay: Optional["RelayEngine"] = None,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
    ):
        self.ctx = ctx
        self.bus = bus
        self.socket_factory = socket_factory
        self.auth_dir = Path(auth_dir)
        self.credential_store = credential_store
        self.resolver = resolver
        self.notifier = notifier
        self.relay = relay
        self.base_delay = base_delay
        self.max_delay = max_delay

        self.retry_count = 0
        self.auth_state: Optional[MultiFileAuthState] = None
        self._starting = False
        self._restart_task: Optional[asyncio.Task] = None

    @property
    def starting(self) -> bool:
        return self._starting

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    # =========================================================================
    # START / STOP
    # =========================================================================

    async def start(self, reset: bool = False) -> None:
        """
        Start a WhatsApp session.

        Args:
            reset: Wipe local auth first so the bridge asks for a new QR
        """
        if self._starting:
            logger.info("WhatsApp start already in progress - skipping")
            return

        self._starting = True
        self.ctx.status = ConnectionStatus.CONNECTING
        logger.info(f"Starting WhatsApp (reset={reset})")

        await self._end_sock()

        try:
            self.auth_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create auth dir {self.auth_dir}: {e}")

        if not reset:
            if self.credential_store is not None:
                await self.credential_store.load(self.auth_dir)
        else:
            try:
                reset_auth_dir(self.auth_dir)
            except OSError as e:
                logger.warning(f"Failed to wipe auth dir {self.auth_dir}: {e}")
            self.ctx.last_qr = None
            logger.info("Prepared empty auth dir for a new login")

        try:
            self.auth_state = use_multi_file_auth_state(self.auth_dir)
        except Exception as e:
            logger.error(f"Failed to load auth state: {e}")
            self._start_failed()
            return

        try:
            sock = self.socket_factory(self.auth_state)
            sock.on("connection.update", functools.partial(self._on_connection_update, sock))
            sock.on("creds.update", functools.partial(self._on_creds_update, sock))
            sock.on("messages.upsert", functools.partial(self._on_messages_upsert, sock))
            self.ctx.sock = sock
            await sock.connect()
        except Exception as e:
            logger.error(f"Failed to create WhatsApp socket: {e}")
            self.ctx.sock = None
            self._start_failed()

    def _start_failed(self) -> None:
        self.ctx.status = ConnectionStatus.DISCONNECTED
        self._starting = False
        self.schedule_restart(reset=False)

    async def request_start(self, reset: bool = False) -> None:
        """Operator start: drops any pending automatic restart first."""
        self.cancel_restart()
        await self.start(reset=reset)

    async def stop(self) -> None:
        """Shut down the session and flush pending credential saves."""
        self.cancel_restart()
        await self._end_sock()
        self.ctx.status = ConnectionStatus.DISCONNECTED
        self._starting = False
        if self.credential_store is not None:
            await self.credential_store.flush()
        logger.info("WhatsApp connection stopped")

    async def _end_sock(self) -> None:
        sock, self.ctx.sock = self.ctx.sock, None
        if sock is None:
            return
        try:
            await sock.end()
        except Exception as e:
            logger.debug(f"Error ending WhatsApp socket: {e}")

    # =========================================================================
    # RESTART TIMER
    # =========================================================================

    def schedule_restart(self, reset: bool = False) -> bool:
        """
        Arm the restart timer.

        Returns:
            False if a restart is already pending (nothing scheduled)
        """
        if self.restart_pending:
            logger.debug("Restart already scheduled")
            return False

        self.retry_count = min(self.retry_count + 1, self.MAX_RETRY)
        delay = restart_delay(self.retry_count, self.base_delay, self.max_delay)
        logger.info(
            f"Scheduling WhatsApp restart in {delay:.0f}s "
            f"(reset={reset}, retryCount={self.retry_count})"
        )
        self._restart_task = asyncio.create_task(self._restart_after(delay, reset))
        return True

    async def _restart_after(self, delay: float, reset: bool) -> None:
        await asyncio.sleep(delay)
        self._restart_task = None
        try:
            await self.start(reset=reset)
        except Exception as e:
            logger.warning(f"Automatic WhatsApp restart failed: {e}")

    def cancel_restart(self) -> None:
        if self.restart_pending:
            self._restart_task.cancel()
        self._restart_task = None

    # =========================================================================
    # SOCKET EVENTS
    # =========================================================================

    async def _on_connection_update(self, sock: Any, update: Dict[str, Any]) -> None:
        if sock is not self.ctx.sock:
            logger.debug("Ignoring connection.update from a replaced socket")
            return

        try:
            qr = update.get("qr")
            connection = update.get("connection")

            if qr:
                await self._handle_qr(qr)

            if connection == "open":
                await self._handle_open()
            elif connection == "close":
                await self._handle_close(sock, update.get("lastDisconnect"))

        except Exception as e:
            logger.error(f"Error handling connection.update: {e}")
            self._starting = False
            self.schedule_restart(reset=False)

    async def _handle_qr(self, qr: str) -> None:
        self.ctx.last_qr = qr
        self.ctx.status = ConnectionStatus.AWAITING_QR
        logger.info("WhatsApp QR generated (available at /wa/qr)")
        try:
            logger.info("\n" + render_qr_ascii(qr))
        except Exception as e:
            logger.debug(f"Could not render QR to log: {e}")
        await self.bus.wa_notification.publish("⚠️ New WhatsApp QR code")

    async def _handle_open(self) -> None:
        self.ctx.status = ConnectionStatus.CONNECTED
        self.retry_count = 0
        self.ctx.conflict_count = 0
        logger.info("WhatsApp connected")

        self._persist_creds()

        if self.resolver is not None:
            await self.resolver.resolve(send_welcome=True)
        if self.notifier is not None:
            await self.notifier.drain_pending()

        self.ctx.last_qr = None
        self._starting = False

    async def _handle_close(self, sock: Any, last_disconnect: Optional[Dict[str, Any]]) -> None:
        self.ctx.status = ConnectionStatus.DISCONNECTED
        self._starting = False

        code = disconnect_status_code(last_disconnect)
        logger.warning(f"WhatsApp connection closed ({code or 'unknown'})")

        try:
            await sock.end()
        except Exception as e:
            logger.debug(f"Error ending closed socket: {e}")
        if self.ctx.sock is sock:
            self.ctx.sock = None

        action = classify_close_code(code)
        if action == CloseAction.CONFLICT:
            self.ctx.conflict_count += 1
            self.ctx.status = ConnectionStatus.CONFLICT
            await self.bus.wa_notification.publish(
                f"⚠️ WhatsApp conflict (440), count={self.ctx.conflict_count}. Relogin required."
            )
            return

        self.schedule_restart(reset=action == CloseAction.RESET)

    def _persist_creds(self) -> None:
        if self.auth_state is not None:
            try:
                self.auth_state.save_creds()
            except OSError as e:
                logger.warning(f"Failed to save creds locally: {e}")
        if self.credential_store is not None:
            self.credential_store.schedule_save(self.auth_dir)

    async def _on_creds_update(self, sock: Any, payload: Dict[str, Any]) -> None:
        if sock is not self.ctx.sock or self.auth_state is None:
            return
        try:
            self.auth_state.update(payload.get("files") or {})
        except OSError as e:
            logger.warning(f"Failed to write auth files: {e}")
        if self.credential_store is not None:
            self.credential_store.schedule_save(self.auth_dir)

    async def _on_messages_upsert(self, sock: Any, payload: Dict[str, Any]) -> None:
        if sock is not self.ctx.sock or self.relay is None:
            return
        await self.relay.on_messages_upsert(payload)
