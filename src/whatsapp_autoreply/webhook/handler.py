"""Gateway webhook handler — feeds gateway events into tenant sessions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from whatsapp_autoreply.config import settings
from whatsapp_autoreply.runtime import get_manager
from whatsapp_autoreply.services.lifecycle import SessionLifecycleManager
from whatsapp_autoreply.transport.gateway import GatewayTransport

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


def _api_key_valid(request: Request, expected: str) -> bool:
    """Accept the key in an ``apikey`` header or as a bearer token."""
    if request.headers.get("apikey") == expected:
        return True
    auth = request.headers.get("authorization", "")
    return auth.startswith("Bearer ") and auth[7:] == expected


# ──────────────────────────────────────────────────────────────
# POST /webhook/gateway — events from the WhatsApp gateway
# ──────────────────────────────────────────────────────────────
@router.post("/webhook/gateway", response_model=None)
async def receive_gateway_event(
    request: Request,
    manager: SessionLifecycleManager = Depends(get_manager),
) -> dict | Response:
    """Route one gateway event to the session of the instance it names.

    Expected payload structure (simplified)::

        {
          "event": "messages.upsert",
          "instance": "<tenant id>",
          "data": {
            "key": {"remoteJid": "5511999999999@s.whatsapp.net", "fromMe": false, "id": "..."},
            "message": {"conversation": "Hello!"}
          }
        }
    """
    if settings.gateway_api_key and not _api_key_valid(request, settings.gateway_api_key):
        logger.warning("Gateway webhook rejected (bad api key)")
        return Response(content="Forbidden", status_code=403)

    try:
        payload = await request.json()
    except ValueError:
        logger.debug("Received non-JSON gateway webhook, ignoring")
        return {"status": "ignored"}

    tenant_id = payload.get("instance") if isinstance(payload, dict) else None
    if not tenant_id:
        logger.debug("Gateway webhook without instance, ignoring")
        return {"status": "ignored"}

    client = manager.get_client(tenant_id)
    if not isinstance(client, GatewayTransport):
        logger.info("[%s] Gateway event %s for unknown session, ignoring", tenant_id, payload.get("event"))
        return {"status": "ignored"}

    event = client.handle_webhook(payload)
    if event is None:
        return {"status": "ignored"}
    return {"status": "ok"}
