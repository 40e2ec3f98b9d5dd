"""Gateway transport — drives a WhatsApp Web gateway over its HTTP API.

The gateway (an Evolution-style bridge) hosts one *instance* per tenant and
holds the WhatsApp Web connection itself.  This transport creates or resumes
the tenant's instance, sends text through it and tears it down.  Events the
gateway observes arrive on our webhook and are turned into transport event
variants by :func:`parse_gateway_event`.

Gateway endpoints used
----------------------
POST   /instance/create                 → create instance (returns first QR)
GET    /instance/connect/{name}         → (re)connect, returns a fresh QR
GET    /instance/connectionState/{name} → ``open`` / ``connecting`` / ``close``
POST   /message/sendText/{name}         → send text, optionally quoting
DELETE /instance/logout/{name}          → log the linked account out
DELETE /instance/delete/{name}          → drop the instance entirely
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

from whatsapp_autoreply.config import settings
from whatsapp_autoreply.transport.base import (
    BROADCAST_CHAT_ID,
    AuthFailure,
    ClientDisconnected,
    ClientReady,
    EventSink,
    MessageReceived,
    QrCodeReceived,
    QuotedReplyError,
    SessionStartError,
    TransportClient,
    TransportConnectionError,
    TransportError,
    TransportEvent,
)

logger = logging.getLogger(__name__)

INSTANCE_FILE = "instance.json"

WEBHOOK_EVENTS = ["QRCODE_UPDATED", "CONNECTION_UPDATE", "MESSAGES_UPSERT", "LOGOUT_INSTANCE"]

# Status codes the gateway answers with when the instance name is taken.
_INSTANCE_EXISTS = {403, 409}


class GatewayError(TransportError):
    """Non-success answer from the gateway."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayTransport(TransportClient):
    """Transport for one tenant's gateway instance."""

    def __init__(
        self,
        tenant_id: str,
        auth_path: Path,
        emit: EventSink,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        webhook_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(tenant_id, auth_path, emit)
        self._base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self._api_key = settings.gateway_api_key if api_key is None else api_key
        self._webhook_url = webhook_url or settings.gateway_webhook_url
        self._timeout = timeout or settings.gateway_timeout_seconds
        self._client = http_client

    @property
    def instance_name(self) -> str:
        return self.tenant_id

    @property
    def supports_destroy(self) -> bool:
        return True

    # ── HTTP plumbing ────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def _request(
        self, method: str, endpoint: str, json_data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            resp = await client.request(
                method, endpoint, json=json_data, headers={"apikey": self._api_key}
            )
        except httpx.RequestError as exc:
            raise TransportConnectionError(f"Gateway request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}

        if resp.status_code >= 400:
            message = data.get("error") or data.get("message") or resp.text
            raise GatewayError(str(message), status_code=resp.status_code)
        return data

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    # ── Session lifecycle ────────────────────────────────

    async def initialize(self) -> None:
        """Create the tenant's instance, or reconnect it when it already exists."""
        payload = {
            "instanceName": self.instance_name,
            "qrcode": True,
            "integration": "WHATSAPP-BAILEYS",
            "webhook": {
                "url": self._webhook_url,
                "byEvents": False,
                "base64": False,
                "events": WEBHOOK_EVENTS,
            },
        }
        try:
            try:
                data = await self._request("POST", "/instance/create", payload)
            except GatewayError as exc:
                if exc.status_code not in _INSTANCE_EXISTS:
                    raise
                logger.info("[%s] Instance exists on gateway, reconnecting", self.tenant_id)
                data = await self._request("GET", f"/instance/connect/{self.instance_name}")
                data = {"qrcode": data}
        except TransportError as exc:
            raise SessionStartError(str(exc)) from exc

        await asyncio.to_thread(self._write_instance_file)

        qr = (data.get("qrcode") or {}).get("code")
        if qr:
            self.emit(QrCodeReceived(payload=qr))
            return

        # No QR means the stored credentials were accepted.
        if await self.get_state() == "open":
            self.emit(ClientReady())

    def _write_instance_file(self) -> None:
        self.auth_path.mkdir(parents=True, exist_ok=True)
        meta = {
            "instance": self.instance_name,
            "gateway": self._base_url,
            "created_at": datetime.now(UTC).isoformat(),
        }
        (self.auth_path / INSTANCE_FILE).write_text(json.dumps(meta), encoding="utf-8")

    async def get_state(self) -> str:
        data = await self._request("GET", f"/instance/connectionState/{self.instance_name}")
        return (data.get("instance") or {}).get("state") or data.get("state") or "unknown"

    async def send_message(
        self, chat_id: str, body: str, quoted_message_id: str | None = None
    ) -> None:
        payload: dict[str, Any] = {"number": chat_id, "text": body}
        if quoted_message_id:
            payload["quoted"] = {"key": {"id": quoted_message_id}}
        try:
            await self._request("POST", f"/message/sendText/{self.instance_name}", payload)
        except GatewayError as exc:
            if quoted_message_id and exc.status_code == 400:
                raise QuotedReplyError(str(exc)) from exc
            raise
        logger.debug("[%s] Sent %d chars to %s", self.tenant_id, len(body), chat_id)

    async def logout(self) -> None:
        try:
            await self._request("DELETE", f"/instance/logout/{self.instance_name}")
        finally:
            await self.aclose()

    async def destroy(self) -> None:
        """Log out and delete the gateway instance."""
        try:
            try:
                await self._request("DELETE", f"/instance/logout/{self.instance_name}")
            except GatewayError as exc:
                # Instances that never paired cannot be logged out.
                logger.debug("[%s] Logout skipped: %s", self.tenant_id, exc)
            await self._request("DELETE", f"/instance/delete/{self.instance_name}")
        finally:
            await self.aclose()

    # ── Inbound events ───────────────────────────────────

    def handle_webhook(self, payload: dict[str, Any]) -> TransportEvent | None:
        """Feed one gateway webhook payload into the event sink."""
        event = parse_gateway_event(payload)
        if event is not None:
            self.emit(event)
        return event


def gateway_transport_factory(tenant_id: str, auth_path: Path, emit: EventSink) -> GatewayTransport:
    """Default transport factory, configured from settings."""
    return GatewayTransport(tenant_id, auth_path, emit)


def _normalize_event_name(name: str) -> str:
    # Gateways send either ``messages.upsert`` or ``MESSAGES_UPSERT``.
    return name.lower().replace("_", ".")


def _message_text(message: dict[str, Any]) -> str | None:
    return message.get("conversation") or (message.get("extendedTextMessage") or {}).get("text")


def parse_gateway_event(payload: dict[str, Any]) -> TransportEvent | None:
    """Map a gateway webhook payload onto a transport event variant.

    Returns ``None`` for events the bot does not act on (delivery receipts,
    non-text messages, intermediate connection states).
    """
    name = payload.get("event")
    if not name:
        return None
    name = _normalize_event_name(name)
    data = payload.get("data") or {}

    if name == "qrcode.updated":
        code = (data.get("qrcode") or {}).get("code") or data.get("code")
        return QrCodeReceived(payload=code) if code else None

    if name == "connection.update":
        state = data.get("state")
        if state == "open":
            return ClientReady()
        if state == "close":
            reason = str(data.get("statusReason") or "")
            if reason == "401":
                return AuthFailure(reason="session rejected by WhatsApp (401)")
            return ClientDisconnected(reason=reason or "connection closed")
        return None

    if name == "logout.instance":
        return ClientDisconnected(reason="logged out")

    if name == "messages.upsert":
        key = data.get("key") or {}
        chat_id = key.get("remoteJid")
        body = _message_text(data.get("message") or {})
        if not chat_id or body is None:
            return None
        return MessageReceived(
            chat_id=chat_id,
            body=body,
            from_me=bool(key.get("fromMe")),
            is_broadcast=chat_id == BROADCAST_CHAT_ID,
            message_id=key.get("id"),
        )

    return None
