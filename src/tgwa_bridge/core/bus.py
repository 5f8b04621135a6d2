"""
Event Bus

Decouples the Telegram and WhatsApp sides. Each topic is its own channel
object so subscribers and publishers agree on the payload type:

- wa_notification: WhatsApp lifecycle notices for the operator (to Telegram)
- tg_message: text received from the Telegram source (to WhatsApp)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, List, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], Union[None, Awaitable[None]]]


class Channel(Generic[T]):
    """A single publish/subscribe topic."""

    def __init__(self, name: str):
        self.name = name
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        """Register a handler (sync or async)."""
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def publish(self, value: T) -> None:
        """
        Deliver value to every subscriber in registration order.

        A failing handler is logged and does not stop delivery to the rest.
        """
        for handler in list(self._handlers):
            try:
                result = handler(value)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in {self.name} handler: {e}")


class EventBus:
    """Process-wide bus with the two bridge topics."""

    def __init__(self):
        self.wa_notification: Channel[str] = Channel("wa.notification")
        self.tg_message: Channel[str] = Channel("tg.message")
