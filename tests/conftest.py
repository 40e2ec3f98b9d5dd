"""Shared fixtures — fake transport, fake responder and a wired-up manager."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from whatsapp_autoreply.services.conversation_state import ConversationStateTable
from whatsapp_autoreply.services.credentials import CredentialStore
from whatsapp_autoreply.services.dispatcher import MessageDispatcher
from whatsapp_autoreply.services.lifecycle import SessionLifecycleManager
from whatsapp_autoreply.services.notifier import (
    CLIENT_DISCONNECTED,
    CLIENT_READY,
    QRCODE_CREATED,
    EventNotifier,
)
from whatsapp_autoreply.services.responder import PromptRecord, ReplyRecord
from whatsapp_autoreply.services.session_store import SessionStore
from whatsapp_autoreply.transport.base import EventSink, SessionStartError, TransportClient


class FakeTransport(TransportClient):
    """In-memory transport recording every call made on it."""

    def __init__(self, tenant_id: str, auth_path: Path, emit: EventSink) -> None:
        super().__init__(tenant_id, auth_path, emit)
        self.fail_start = False
        self.with_destroy = True
        self.destroy_error: Exception | None = None
        self.send_errors: list[Exception] = []
        self.attempts: list[tuple[str, str, str | None]] = []
        self.sent: list[tuple[str, str]] = []
        self.initialized = False
        self.destroyed = False
        self.logged_out = False
        self.closed = False
        # Set to an unset Event to hold send_message / destroy until released.
        self.send_gate: asyncio.Event | None = None
        self.destroy_gate: asyncio.Event | None = None

    async def initialize(self) -> None:
        if self.fail_start:
            raise SessionStartError("browser failed to launch")
        self.auth_path.mkdir(parents=True, exist_ok=True)
        (self.auth_path / "creds.json").write_text("{}")
        self.initialized = True

    async def send_message(self, chat_id, body, quoted_message_id=None):
        self.attempts.append((chat_id, body, quoted_message_id))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append((chat_id, body))

    async def logout(self) -> None:
        self.logged_out = True

    async def get_state(self) -> str:
        return "open" if self.initialized else "close"

    @property
    def supports_destroy(self) -> bool:
        return self.with_destroy

    async def destroy(self) -> None:
        if self.destroy_gate is not None:
            await self.destroy_gate.wait()
        if self.destroy_error is not None:
            raise self.destroy_error
        self.destroyed = True

    async def aclose(self) -> None:
        self.closed = True


class FakeResponder:
    """Responder over plain dicts: ``prompts[tenant]`` and ``replies[tenant]``."""

    def __init__(self) -> None:
        self.prompts: dict[str, str] = {}
        self.replies: dict[str, list[ReplyRecord]] = {}

    def add_reply(self, tenant_id: str, trigger: str, body: str, ending: bool = False) -> None:
        self.replies.setdefault(tenant_id, []).append(ReplyRecord(trigger, body, ending))

    async def find_prompt(self, tenant_id):
        body = self.prompts.get(tenant_id)
        return PromptRecord(body) if body is not None else None

    async def find_reply(self, tenant_id, trigger_text):
        for reply in self.replies.get(tenant_id, []):
            if reply.trigger.casefold() == trigger_text.casefold():
                return reply
        return None


class RecordingObserver:
    """Collects every lifecycle event published by a notifier."""

    def __init__(self, notifier: EventNotifier) -> None:
        self.events = []
        for kind in (QRCODE_CREATED, CLIENT_READY, CLIENT_DISCONNECTED):
            notifier.subscribe(kind, self.events.append)

    def kinds(self, tenant_id: str | None = None) -> list[str]:
        return [e.kind for e in self.events if tenant_id is None or e.tenant_id == tenant_id]


class Bot:
    """Every collaborator of the lifecycle manager, wired with fakes."""

    def __init__(self, auth_root: Path) -> None:
        self.transports: dict[str, FakeTransport] = {}
        self.configure = lambda transport: None
        self.sessions = SessionStore()
        self.states = ConversationStateTable()
        self.notifier = EventNotifier()
        self.observer = RecordingObserver(self.notifier)
        self.responder = FakeResponder()
        self.credentials = CredentialStore(auth_root, backoff_seconds=0, max_retries=3)
        self.dispatcher = MessageDispatcher(self.sessions, self.states, self.responder)
        self.manager = SessionLifecycleManager(
            self.factory,
            self.dispatcher,
            self.sessions,
            self.states,
            self.notifier,
            self.credentials,
        )

    def factory(self, tenant_id: str, auth_path: Path, emit: EventSink) -> FakeTransport:
        transport = FakeTransport(tenant_id, auth_path, emit)
        self.configure(transport)
        self.transports[tenant_id] = transport
        return transport


@pytest.fixture
def bot(tmp_path) -> Bot:
    return Bot(tmp_path / ".wwebjs_auth")


@pytest.fixture
def responder() -> FakeResponder:
    return FakeResponder()
