"""Listener fan-out for upload queue events (toasts, sync indicator, WebSocket)."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Union

from fieldmedia.schemas.ws_messages import QueueEvent

logger = logging.getLogger(__name__)

Listener = Callable[[QueueEvent], Union[Awaitable[None], None]]


class QueueNotifier:
    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def broadcast(self, event: QueueEvent):
        """Deliver an event to every listener. Listeners that raise are dropped."""
        dead = []
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Queue listener failed on %s; unsubscribing it", event.event)
                dead.append(listener)
        for listener in dead:
            self.unsubscribe(listener)
