"""Tests for the SessionLifecycleManager — start, pairing, teardown."""

from __future__ import annotations

import asyncio

import pytest

from whatsapp_autoreply.services.conversation_state import ChatKey
from whatsapp_autoreply.services.notifier import (
    CLIENT_DISCONNECTED,
    CLIENT_READY,
    QRCODE_CREATED,
)
from whatsapp_autoreply.services.session_store import SessionStatus
from whatsapp_autoreply.transport.base import (
    AuthFailure,
    ClientDisconnected,
    ClientReady,
    MessageReceived,
    QrCodeReceived,
)

TENANT = "acme"
CHAT = "5511999999999@c.us"


async def _message(bot, body, chat=CHAT, tenant=TENANT):
    bot.transports[tenant].emit(MessageReceived(chat_id=chat, body=body))
    await bot.manager.wait_idle(tenant)


# ──────────────────────────────────────────────────────────
# initialize
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_initialize_is_idempotent(bot):
    first = await bot.manager.initialize(TENANT)
    second = await bot.manager.initialize(TENANT)

    assert first is not None
    assert first is second
    assert len(bot.sessions) == 1
    assert first.initialized
    assert bot.manager.get_session(TENANT).status is SessionStatus.INITIALIZING
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
async def test_initialize_failure_cleans_up(bot):
    bot.configure = lambda transport: setattr(transport, "fail_start", True)
    stale = bot.credentials.path_for(TENANT)
    stale.mkdir(parents=True)

    client = await bot.manager.initialize(TENANT)

    assert client is None
    assert TENANT not in bot.sessions
    assert not bot.states.has_tenant(TENANT)
    assert not stale.exists()
    assert bot.transports[TENANT].closed
    assert bot.observer.kinds(TENANT) == [CLIENT_DISCONNECTED]
    await bot.manager.shutdown_all()


# ──────────────────────────────────────────────────────────
# Transport events
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_qr_code_is_published_with_raw_payload(bot):
    client = await bot.manager.initialize(TENANT)

    client.emit(QrCodeReceived(payload="2@abc,def"))
    await bot.manager.wait_idle(TENANT)

    assert bot.observer.events[-1].kind == QRCODE_CREATED
    assert bot.observer.events[-1].payload == "2@abc,def"
    assert bot.manager.get_session(TENANT).status is SessionStatus.AWAITING_AUTH
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
async def test_ready_clears_ending_flags_only(bot):
    bot.responder.prompts[TENANT] = "Welcome"
    bot.responder.add_reply(TENANT, "bye", "See you", ending=True)
    client = await bot.manager.initialize(TENANT)
    await _message(bot, "hello")
    await _message(bot, "bye")
    assert bot.states.get_or_create(ChatKey(TENANT, CHAT)).ending is True

    client.emit(ClientReady())
    await bot.manager.wait_idle(TENANT)

    state = bot.states.get_or_create(ChatKey(TENANT, CHAT))
    assert state.ending is False
    assert state.message_count == 2
    assert state.last_sent_body == "See you"
    assert bot.observer.kinds(TENANT) == [CLIENT_READY]
    assert bot.manager.get_session(TENANT).status is SessionStatus.READY
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
async def test_messages_are_answered_in_arrival_order(bot):
    bot.responder.prompts[TENANT] = "Welcome"
    bot.responder.add_reply(TENANT, "1", "one")
    bot.responder.add_reply(TENANT, "2", "two")
    client = await bot.manager.initialize(TENANT)

    for body in ("hello", "1", "2", "nope"):
        client.emit(MessageReceived(chat_id=CHAT, body=body))
    await bot.manager.wait_idle(TENANT)

    assert [body for _, body in client.sent] == ["Welcome", "one", "two", "two"]
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
@pytest.mark.parametrize("event", [AuthFailure("bad creds"), ClientDisconnected("LOGOUT")])
async def test_terminated_session_is_torn_down(bot, event):
    client = await bot.manager.initialize(TENANT)

    client.emit(event)
    await bot.manager.wait_idle(TENANT)
    await asyncio.sleep(0)

    assert TENANT not in bot.sessions
    assert client.destroyed
    assert bot.observer.kinds(TENANT) == [CLIENT_DISCONNECTED]
    assert not bot.credentials.path_for(TENANT).exists()
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
async def test_events_after_teardown_are_ignored(bot):
    client = await bot.manager.initialize(TENANT)
    client.emit(ClientDisconnected("gone"))
    client.emit(QrCodeReceived(payload="late"))
    await bot.manager.shutdown_all()

    assert bot.observer.kinds(TENANT) == [CLIENT_DISCONNECTED]


# ──────────────────────────────────────────────────────────
# disconnect
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_disconnect_unknown_tenant_is_noop(bot):
    assert await bot.manager.disconnect("ghost") is False
    assert bot.observer.events == []


@pytest.mark.asyncio
async def test_disconnect_removes_everything(bot):
    bot.responder.prompts[TENANT] = "Welcome"
    client = await bot.manager.initialize(TENANT)
    await _message(bot, "hello")
    assert bot.credentials.path_for(TENANT).exists()

    assert await bot.manager.disconnect(TENANT) is True

    assert client.destroyed and not client.logged_out
    assert TENANT not in bot.sessions
    assert bot.states.states_for(TENANT) == []
    assert not bot.credentials.path_for(TENANT).exists()
    assert bot.observer.kinds(TENANT) == [CLIENT_DISCONNECTED]
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
async def test_disconnect_falls_back_to_logout(bot):
    bot.configure = lambda transport: setattr(transport, "with_destroy", False)
    client = await bot.manager.initialize(TENANT)

    await bot.manager.disconnect(TENANT)

    assert client.logged_out and not client.destroyed


@pytest.mark.asyncio
async def test_disconnect_cleans_up_even_when_destroy_fails(bot):
    bot.configure = lambda transport: setattr(transport, "destroy_error", RuntimeError("Target closed"))
    await bot.manager.initialize(TENANT)

    assert await bot.manager.disconnect(TENANT) is True

    assert TENANT not in bot.sessions
    assert not bot.credentials.path_for(TENANT).exists()
    assert bot.observer.kinds(TENANT) == [CLIENT_DISCONNECTED]


@pytest.mark.asyncio
async def test_reinitialize_after_disconnect_starts_fresh(bot):
    bot.responder.prompts[TENANT] = "Welcome"
    bot.responder.add_reply(TENANT, "1", "one")
    await bot.manager.initialize(TENANT)
    await _message(bot, "hello")
    await _message(bot, "1")
    await bot.manager.disconnect(TENANT)

    client = await bot.manager.initialize(TENANT)
    await _message(bot, "1")

    assert client.sent == [(CHAT, "Welcome")]
    assert bot.states.get_or_create(ChatKey(TENANT, CHAT)).message_count == 1
    await bot.manager.shutdown_all()


# ──────────────────────────────────────────────────────────
# disconnect while work is in flight
# ──────────────────────────────────────────────────────────
async def _until(condition, attempts=100):
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_message_in_flight_during_disconnect_is_sent_but_not_kept(bot):
    bot.responder.prompts[TENANT] = "Welcome"
    client = await bot.manager.initialize(TENANT)
    client.send_gate = asyncio.Event()
    client.emit(MessageReceived(chat_id=CHAT, body="hi"))
    await _until(lambda: client.attempts)

    await bot.manager.disconnect(TENANT)
    client.send_gate.set()
    await _until(lambda: client.sent)

    assert client.sent == [(CHAT, "Welcome")]
    assert bot.states.states_for(TENANT) == []
    assert bot.observer.kinds(TENANT) == [CLIENT_DISCONNECTED]
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
async def test_late_message_does_not_leak_into_reinitialized_session(bot):
    bot.responder.prompts[TENANT] = "Welcome"
    bot.responder.add_reply(TENANT, "1", "one")
    old = await bot.manager.initialize(TENANT)
    old.send_gate = asyncio.Event()
    old.emit(MessageReceived(chat_id=CHAT, body="hi"))
    await _until(lambda: old.attempts)

    await bot.manager.disconnect(TENANT)
    new = await bot.manager.initialize(TENANT)
    old.send_gate.set()
    await _until(lambda: old.sent)

    assert bot.states.get_or_create(ChatKey(TENANT, CHAT)).message_count == 0
    await _message(bot, "1")
    assert new.sent == [(CHAT, "Welcome")]
    await bot.manager.shutdown_all()


@pytest.mark.asyncio
async def test_initialize_waits_for_teardown_in_progress(bot):
    old = await bot.manager.initialize(TENANT)
    old.destroy_gate = asyncio.Event()
    disconnecting = asyncio.create_task(bot.manager.disconnect(TENANT))
    await _until(lambda: TENANT not in bot.sessions)

    initializing = asyncio.create_task(bot.manager.initialize(TENANT))
    await asyncio.sleep(0.05)
    assert not initializing.done()

    old.destroy_gate.set()
    assert await disconnecting is True
    new = await initializing

    assert new is not old and new.initialized
    assert bot.manager.get_client(TENANT) is new
    assert (bot.credentials.path_for(TENANT) / "creds.json").exists()
    assert bot.observer.kinds(TENANT) == [CLIENT_DISCONNECTED]
    await bot.manager.shutdown_all()


# ──────────────────────────────────────────────────────────
# shutdown_all
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_shutdown_all_disconnects_every_tenant(bot):
    def configure(transport):
        if transport.tenant_id == "broken":
            transport.destroy_error = RuntimeError("boom")

    bot.configure = configure
    for tenant in ("acme", "globex", "broken"):
        await bot.manager.initialize(tenant)

    await bot.manager.shutdown_all()

    assert len(bot.sessions) == 0
    assert sorted(e.tenant_id for e in bot.observer.events) == ["acme", "broken", "globex"]
    assert bot.transports["acme"].destroyed and bot.transports["globex"].destroyed
