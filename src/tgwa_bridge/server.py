"""
Bridge Host

Wires the bridge components together and runs them on one event loop:
Telegram source -> bus -> relay -> WhatsApp, lifecycle notices back to
Telegram, and the HTTP control surface.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .channels.telegram import TelegramSource
from .channels.web_server import ControlServer
from .channels.whatsapp.client import make_bridge_socket_factory
from .channels.whatsapp.groups import GroupResolver
from .channels.whatsapp.lifecycle import ConnectionManager
from .channels.whatsapp.notifier import ServiceNotifier
from .channels.whatsapp.relay import RelayEngine
from .config import BridgeConfig, load_config
from .core.bus import EventBus
from .core.context import BridgeContext
from .storage.gist_store import GistCredentialStore

logger = logging.getLogger(__name__)


@dataclass
class Bridge:
    """All components of one bridge process."""
    config: BridgeConfig
    ctx: BridgeContext
    bus: EventBus
    credential_store: GistCredentialStore
    relay: RelayEngine
    notifier: ServiceNotifier
    resolver: GroupResolver
    manager: ConnectionManager
    telegram: TelegramSource
    web: ControlServer


def build_bridge(
    config: BridgeConfig,
    socket_factory: Optional[Callable[[Any], Any]] = None,
) -> Bridge:
    """
    Create and connect every component; nothing is started.

    Args:
        config: Bridge configuration
        socket_factory: Override the WhatsApp handle factory (tests)
    """
    ctx = BridgeContext(
        configured_group_id=config.whatsapp.group_id,
        configured_group_name=config.whatsapp.group_name,
    )
    bus = EventBus()

    credential_store = GistCredentialStore(
        token=config.gist.token,
        gist_id=config.gist.gist_id,
        api_url=config.gist.api_url,
        debounce_seconds=config.gist.debounce_seconds,
    )

    relay = RelayEngine(ctx)
    notifier = ServiceNotifier(ctx, relay)
    resolver = GroupResolver(ctx, notifier)

    if socket_factory is None:
        socket_factory = make_bridge_socket_factory(
            config.whatsapp.bridge_http_url,
            config.whatsapp.bridge_ws_url,
        )

    manager = ConnectionManager(
        ctx,
        bus,
        socket_factory,
        auth_dir=config.whatsapp.auth_dir,
        credential_store=credential_store,
        resolver=resolver,
        notifier=notifier,
        relay=relay,
        base_delay=config.whatsapp.restart_base_delay,
        max_delay=config.whatsapp.restart_max_delay,
    )
    notifier.bind(manager=manager, resolver=resolver)

    telegram = TelegramSource(
        config.telegram.bot_token,
        config.telegram.source,
        bus,
        api_url=config.telegram.api_url,
    )
    bus.tg_message.subscribe(relay.on_telegram_message)

    web = ControlServer(
        ctx,
        manager,
        resolver,
        relay,
        notifier,
        telegram=telegram,
        auth_dir=config.whatsapp.auth_dir,
        admin_token=config.web.admin_token,
        log_file=config.logging.file,
        host=config.web.host,
        port=config.web.port,
    )

    return Bridge(
        config=config,
        ctx=ctx,
        bus=bus,
        credential_store=credential_store,
        relay=relay,
        notifier=notifier,
        resolver=resolver,
        manager=manager,
        telegram=telegram,
        web=web,
    )


async def run_bridge(config: Optional[BridgeConfig] = None, debug: bool = False):
    """
    Run the bridge until the control server exits.

    Telegram and WhatsApp start in the background; the control server is
    up immediately so the QR can be fetched while pairing.
    """
    if config is None:
        config = load_config()

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    bridge = build_bridge(config)

    print("=" * 60)
    print("  TG -> WA Bridge")
    print("=" * 60)
    print(f"   Control:    http://{config.web.host}:{config.web.port}")
    print(f"   WA bridge:  {config.whatsapp.bridge_http_url}")
    print(f"   WA group:   {config.whatsapp.group_id or config.whatsapp.group_name or '(auto)'}")
    print(f"   TG source:  {config.telegram.source or '(not set)'}")
    print(f"   Gist:       {'configured' if config.gist.configured else 'disabled'}")
    print("=" * 60)

    startup = asyncio.create_task(_start_sources(bridge))
    try:
        await bridge.web.start()
    finally:
        logger.info("Shutting down bridge...")
        startup.cancel()
        try:
            await startup
        except asyncio.CancelledError:
            pass
        await bridge.telegram.stop()
        await bridge.manager.stop()
        await bridge.credential_store.close()


async def _start_sources(bridge: Bridge) -> None:
    await bridge.telegram.start()
    await bridge.manager.start()
