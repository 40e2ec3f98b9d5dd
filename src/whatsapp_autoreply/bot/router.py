"""Bot control routes — start/stop tenant sessions and expose their QR code."""

from __future__ import annotations

import asyncio
import io
import json
import logging
from collections.abc import AsyncIterator

import qrcode
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from whatsapp_autoreply.bot.qr_cache import QrCodeCache
from whatsapp_autoreply.runtime import get_manager, get_qr_cache
from whatsapp_autoreply.services.lifecycle import SessionLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bot", tags=["bot"])

# Seconds between keep-alive comments on an idle QR stream.
KEEPALIVE_SECONDS = 15.0


class BotMessage(BaseModel):
    message: str


# ──────────────────────────────────────────────────────────────
# POST /bot/initialize/{tenant_id}
# ──────────────────────────────────────────────────────────────
@router.post("/initialize/{tenant_id}", status_code=status.HTTP_202_ACCEPTED)
async def initialize(
    tenant_id: str,
    background_tasks: BackgroundTasks,
    manager: SessionLifecycleManager = Depends(get_manager),
) -> BotMessage:
    """Start the tenant's session without waiting for it to come up."""
    background_tasks.add_task(manager.initialize, tenant_id)
    return BotMessage(
        message=(
            f"Initialization process started for enterprise {tenant_id}. "
            f"Check GET /bot/qrcode/image/{tenant_id} for QR code."
        )
    )


# ──────────────────────────────────────────────────────────────
# POST /bot/disconnect/{tenant_id}
# ──────────────────────────────────────────────────────────────
@router.post("/disconnect/{tenant_id}")
async def disconnect(
    tenant_id: str,
    manager: SessionLifecycleManager = Depends(get_manager),
) -> BotMessage:
    found = await manager.disconnect(tenant_id)
    if not found:
        return BotMessage(message=f"No active client for enterprise {tenant_id}.")
    return BotMessage(message=f"Disconnect process completed for enterprise {tenant_id}.")


# ──────────────────────────────────────────────────────────────
# GET /bot/qrcode/image/{tenant_id}
# ──────────────────────────────────────────────────────────────
@router.get("/qrcode/image/{tenant_id}")
async def qrcode_image(
    tenant_id: str,
    manager: SessionLifecycleManager = Depends(get_manager),
    cache: QrCodeCache = Depends(get_qr_cache),
) -> Response:
    """Render the tenant's latest pairing code as a PNG."""
    qr = cache.get(tenant_id)
    if not qr:
        raise HTTPException(status_code=404, detail=await _client_status(manager, tenant_id))

    image = qrcode.make(qr)
    buffer = io.BytesIO()
    image.save(buffer)
    return Response(content=buffer.getvalue(), media_type="image/png")


async def _client_status(manager: SessionLifecycleManager, tenant_id: str) -> str:
    client = manager.get_client(tenant_id)
    if client is None:
        return "Client not initialized for this enterprise."
    try:
        state = await client.get_state()
    except Exception as exc:
        logger.debug("[%s] State query failed: %s", tenant_id, exc)
        return "Client not running or in error state. Try initializing."
    if state in ("open", "CONNECTED"):
        return "Client is already connected."
    return f"Client status: {state or 'UNKNOWN'}. Try initializing."


# ──────────────────────────────────────────────────────────────
# GET /bot/qrcode/stream/{tenant_id} — server-sent events
# ──────────────────────────────────────────────────────────────
@router.get("/qrcode/stream/{tenant_id}")
async def qrcode_stream(
    tenant_id: str,
    request: Request,
    cache: QrCodeCache = Depends(get_qr_cache),
) -> StreamingResponse:
    return StreamingResponse(
        qr_event_stream(request, tenant_id, cache),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def qr_event_stream(
    request: Request,
    tenant_id: str,
    cache: QrCodeCache,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Current QR first, then every update for *tenant_id* until the client leaves."""
    queue = cache.listen(tenant_id)
    try:
        yield _sse("initial_state", {"qr": cache.get(tenant_id)})
        while not await request.is_disconnected():
            try:
                qr = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield _sse("qr_update", {"qr": qr})
    finally:
        cache.unlisten(tenant_id, queue)
