"""Session lifecycle manager — starts, pairs and tears down tenant sessions."""

from __future__ import annotations

import asyncio
import logging

import qrcode

from whatsapp_autoreply.services.conversation_state import ConversationStateTable
from whatsapp_autoreply.services.credentials import CredentialStore
from whatsapp_autoreply.services.dispatcher import MessageDispatcher
from whatsapp_autoreply.services.notifier import (
    CLIENT_DISCONNECTED,
    CLIENT_READY,
    QRCODE_CREATED,
    EventNotifier,
)
from whatsapp_autoreply.services.session_store import SessionStatus, SessionStore, TenantSession
from whatsapp_autoreply.transport.base import (
    AuthFailure,
    ClientDisconnected,
    ClientReady,
    MessageReceived,
    QrCodeReceived,
    TransportClient,
    TransportEvent,
    TransportFactory,
)

logger = logging.getLogger(__name__)

# Queued behind a tenant's last event to stop its pump.
_STOP = object()

PUMP_SHUTDOWN_TIMEOUT = 10.0


class SessionLifecycleManager:
    """Owns every tenant session from ``initialize`` to teardown.

    Each session gets one ordered event channel.  The transport pushes into
    it; a per-tenant pump task drains it, so events of a tenant (and thus
    the messages of each of its chats) are handled one at a time and in
    arrival order, while different tenants proceed independently.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        dispatcher: MessageDispatcher,
        sessions: SessionStore,
        states: ConversationStateTable,
        notifier: EventNotifier,
        credentials: CredentialStore,
        *,
        print_qr: bool = False,
    ) -> None:
        self._transport_factory = transport_factory
        self._dispatcher = dispatcher
        self._sessions = sessions
        self._states = states
        self._notifier = notifier
        self._credentials = credentials
        self._print_qr = print_qr
        self._channels: dict[str, asyncio.Queue] = {}
        self._pump_tasks: set[asyncio.Task] = set()
        # Set once a tenant's teardown has removed its credentials.
        self._teardowns: dict[str, asyncio.Event] = {}

    # ── Queries ──────────────────────────────────────────

    def get_session(self, tenant_id: str) -> TenantSession | None:
        return self._sessions.get(tenant_id)

    def get_client(self, tenant_id: str) -> TransportClient | None:
        session = self._sessions.get(tenant_id)
        return session.client if session else None

    async def wait_idle(self, tenant_id: str) -> None:
        """Wait until every event queued so far for *tenant_id* is handled."""
        channel = self._channels.get(tenant_id)
        if channel is not None:
            await channel.join()

    # ── Commands ─────────────────────────────────────────

    async def initialize(self, tenant_id: str) -> TransportClient | None:
        """Start a session for *tenant_id*, or return the live one.

        Returns ``None`` when the transport could not start; partial state
        and credentials are removed and observers are told the tenant is
        disconnected.
        """
        pending = self._teardowns.get(tenant_id)
        while pending is not None:
            logger.info("[%s] Waiting for previous client to finish disconnecting", tenant_id)
            await pending.wait()
            pending = self._teardowns.get(tenant_id)

        existing = self._sessions.get(tenant_id)
        if existing is not None:
            logger.info("[%s] Client already exists", tenant_id)
            return existing.client

        logger.info("[%s] Initializing new client", tenant_id)
        channel: asyncio.Queue = asyncio.Queue()
        try:
            client = self._transport_factory(
                tenant_id, self._credentials.path_for(tenant_id), channel.put_nowait
            )
        except Exception as exc:
            logger.error("[%s] Failed to build client: %s", tenant_id, exc)
            done = self._begin_teardown(tenant_id)
            try:
                await self._credentials.delete(tenant_id)
                self._notifier.emit(CLIENT_DISCONNECTED, tenant_id)
            finally:
                self._end_teardown(tenant_id, done)
            return None

        session = TenantSession(tenant_id=tenant_id, client=client)
        self._sessions.add(session)
        self._states.open_tenant(tenant_id)
        self._channels[tenant_id] = channel
        task = asyncio.create_task(self._pump(session, channel), name=f"pump-{tenant_id}")
        self._pump_tasks.add(task)
        task.add_done_callback(self._pump_tasks.discard)

        try:
            await client.initialize()
        except Exception as exc:
            logger.error("[%s] Failed to initialize client: %s", tenant_id, exc)
            if self._sessions.get(tenant_id) is session:
                done = self._begin_teardown(tenant_id)
                self._discard(session)
                try:
                    await client.aclose()
                except Exception as close_exc:
                    logger.debug("[%s] Error releasing client: %s", tenant_id, close_exc)
                finally:
                    await self._credentials.delete(tenant_id)
                    self._notifier.emit(CLIENT_DISCONNECTED, tenant_id)
                    self._end_teardown(tenant_id, done)
            return None

        logger.info("[%s] Client initialization process started", tenant_id)
        return client

    async def disconnect(self, tenant_id: str) -> bool:
        """Tear down the tenant's session.  ``False`` if there was none."""
        session = self._sessions.get(tenant_id)
        if session is None:
            logger.warning("[%s] Client not found for disconnection", tenant_id)
            return False
        await self._teardown(session)
        return True

    async def shutdown_all(self) -> None:
        """Disconnect every tenant concurrently; never raises."""
        tenant_ids = self._sessions.tenant_ids()
        logger.info("Shutting down, disconnecting %d client(s)...", len(tenant_ids))
        results = await asyncio.gather(
            *(self.disconnect(tenant_id) for tenant_id in tenant_ids),
            return_exceptions=True,
        )
        for tenant_id, result in zip(tenant_ids, results):
            if isinstance(result, BaseException):
                logger.error("[%s] Disconnect during shutdown failed: %s", tenant_id, result)

        if self._pump_tasks:
            await asyncio.wait(set(self._pump_tasks), timeout=PUMP_SHUTDOWN_TIMEOUT)
        await self._notifier.drain()
        logger.info("All clients disconnected")

    # ── Teardown ─────────────────────────────────────────

    def _discard(self, session: TenantSession) -> None:
        """Forget the session, its chats and its channel."""
        tenant_id = session.tenant_id
        self._sessions.remove(tenant_id)
        self._states.drop_tenant(tenant_id)
        channel = self._channels.pop(tenant_id, None)
        if channel is not None:
            channel.put_nowait(_STOP)

    async def _teardown(self, session: TenantSession) -> None:
        tenant_id = session.tenant_id
        client = session.client
        logger.info("[%s] Attempting to disconnect client...", tenant_id)
        # Forget the session first: a second disconnect, or the transport's
        # own disconnect event, must find nothing left to tear down.  A new
        # initialize waits on ``done`` until the credentials are gone.
        done = self._begin_teardown(tenant_id)
        self._discard(session)
        try:
            if client.supports_destroy:
                await client.destroy()
                logger.info("[%s] Client destroyed", tenant_id)
            else:
                await client.logout()
                logger.info("[%s] Client logged out", tenant_id)
        except Exception as exc:
            logger.error("[%s] Error during client destroy/logout: %s", tenant_id, exc)
        finally:
            try:
                self._notifier.emit(CLIENT_DISCONNECTED, tenant_id)
                await self._credentials.delete(tenant_id)
                logger.info("[%s] Client removed", tenant_id)
            finally:
                self._end_teardown(tenant_id, done)

    def _begin_teardown(self, tenant_id: str) -> asyncio.Event:
        done = asyncio.Event()
        self._teardowns[tenant_id] = done
        return done

    def _end_teardown(self, tenant_id: str, done: asyncio.Event) -> None:
        if self._teardowns.get(tenant_id) is done:
            del self._teardowns[tenant_id]
        done.set()

    # ── Event pump ───────────────────────────────────────

    async def _pump(self, session: TenantSession, channel: asyncio.Queue) -> None:
        tenant_id = session.tenant_id
        while True:
            event = await channel.get()
            if event is _STOP:
                channel.task_done()
                break
            try:
                await self._handle_event(session, event)
            except Exception:
                logger.exception("[%s] Unhandled error processing %r", tenant_id, event)
            finally:
                channel.task_done()
        logger.debug("[%s] Event pump stopped", tenant_id)

    async def _handle_event(self, session: TenantSession, event: TransportEvent) -> None:
        tenant_id = session.tenant_id
        if self._sessions.get(tenant_id) is not session:
            logger.debug("[%s] Session gone, dropping %r", tenant_id, event)
            return

        if isinstance(event, MessageReceived):
            await self._dispatcher.on_inbound_message(
                tenant_id,
                event.chat_id,
                event.body,
                from_me=event.from_me,
                is_broadcast=event.is_broadcast,
                message_id=event.message_id,
            )

        elif isinstance(event, QrCodeReceived):
            logger.info("[%s] QR code received, waiting for scan", tenant_id)
            self._sessions.set_status(tenant_id, SessionStatus.AWAITING_AUTH)
            if self._print_qr:
                self._print_qr_code(event.payload)
            self._notifier.emit(QRCODE_CREATED, tenant_id, event.payload)

        elif isinstance(event, ClientReady):
            logger.info("[%s] Client is ready!", tenant_id)
            self._sessions.set_status(tenant_id, SessionStatus.READY)
            reset = self._states.reset_endings(tenant_id)
            if reset:
                logger.debug("[%s] Cleared ending flag on %d chat(s)", tenant_id, reset)
            self._notifier.emit(CLIENT_READY, tenant_id)

        elif isinstance(event, AuthFailure):
            logger.error("[%s] Authentication failure: %s", tenant_id, event.reason)
            if self._sessions.get(tenant_id) is session:
                await self._teardown(session)

        elif isinstance(event, ClientDisconnected):
            logger.warning("[%s] Client was logged out: %s", tenant_id, event.reason)
            if self._sessions.get(tenant_id) is session:
                await self._teardown(session)

        else:
            logger.debug("[%s] Ignoring unknown event %r", tenant_id, event)

    @staticmethod
    def _print_qr_code(payload: str) -> None:
        qr = qrcode.QRCode(border=1)
        qr.add_data(payload)
        qr.print_ascii(invert=True)
