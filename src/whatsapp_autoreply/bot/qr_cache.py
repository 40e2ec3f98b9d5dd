"""Latest pairing code per tenant, kept for the QR image and stream routes."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from whatsapp_autoreply.services.notifier import (
    CLIENT_DISCONNECTED,
    CLIENT_READY,
    QRCODE_CREATED,
    EventNotifier,
    LifecycleEvent,
)

logger = logging.getLogger(__name__)


class QrCodeCache:
    """Remembers the last QR of each tenant and fans updates out to streams.

    An update is the QR string, or ``None`` once the tenant is ready or
    disconnected.
    """

    def __init__(self) -> None:
        self._codes: dict[str, str | None] = {}
        self._listeners: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def attach(self, notifier: EventNotifier) -> None:
        notifier.subscribe(QRCODE_CREATED, self._on_qr_created)
        notifier.subscribe(CLIENT_READY, self._on_cleared)
        notifier.subscribe(CLIENT_DISCONNECTED, self._on_cleared)

    def get(self, tenant_id: str) -> str | None:
        return self._codes.get(tenant_id)

    def listen(self, tenant_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners[tenant_id].add(queue)
        return queue

    def unlisten(self, tenant_id: str, queue: asyncio.Queue) -> None:
        listeners = self._listeners.get(tenant_id)
        if listeners is None:
            return
        listeners.discard(queue)
        if not listeners:
            del self._listeners[tenant_id]

    def _publish(self, tenant_id: str, qr: str | None) -> None:
        for queue in self._listeners.get(tenant_id, ()):
            queue.put_nowait(qr)

    def _on_qr_created(self, event: LifecycleEvent) -> None:
        self._codes[event.tenant_id] = event.payload
        self._publish(event.tenant_id, event.payload)
        logger.info("[%s] QR stored", event.tenant_id)

    def _on_cleared(self, event: LifecycleEvent) -> None:
        if event.tenant_id not in self._codes:
            return
        self._publish(event.tenant_id, None)
        if event.kind == CLIENT_DISCONNECTED:
            del self._codes[event.tenant_id]
        else:
            self._codes[event.tenant_id] = None
        logger.info("[%s] QR cleared (%s)", event.tenant_id, event.kind)
