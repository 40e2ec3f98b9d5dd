"""Event notifier — in-process pub/sub for session lifecycle events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

QRCODE_CREATED = "qrcode.created"
CLIENT_READY = "client.ready"
CLIENT_DISCONNECTED = "client.disconnected"

EVENT_KINDS = frozenset({QRCODE_CREATED, CLIENT_READY, CLIENT_DISCONNECTED})


@dataclass(frozen=True)
class LifecycleEvent:
    """Payload delivered to subscribers.

    ``payload`` carries the raw pairing code for ``qrcode.created`` and is
    ``None`` for the other kinds.
    """

    kind: str
    tenant_id: str
    payload: str | None = None


Handler = Callable[[LifecycleEvent], Awaitable[None] | None]


class EventNotifier:
    """Fire-and-forget publish/subscribe channel.

    Each emission reaches every handler subscribed at that moment, at most
    once.  Late subscribers get no replay.  A failing handler is logged and
    never affects the emitter or the other handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, kind: str, handler: Handler) -> None:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind!r}")
        self._handlers[kind].append(handler)

    def unsubscribe(self, kind: str, handler: Handler) -> None:
        try:
            self._handlers[kind].remove(handler)
        except ValueError:
            pass

    def emit(self, kind: str, tenant_id: str, payload: str | None = None) -> None:
        event = LifecycleEvent(kind=kind, tenant_id=tenant_id, payload=payload)
        logger.debug("[%s] Emitting %s", tenant_id, kind)
        for handler in list(self._handlers.get(kind, ())):
            try:
                result = handler(event)
            except Exception:
                logger.exception("[%s] %s handler %r failed", tenant_id, kind, handler)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event handler failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for async handlers still in flight."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
