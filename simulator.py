"""Interactive CLI chat simulator — talk to a tenant's script without WhatsApp."""

import asyncio
from pathlib import Path

from whatsapp_autoreply.database.engine import async_session_factory, init_db
from whatsapp_autoreply.services.conversation_state import ConversationStateTable
from whatsapp_autoreply.services.credentials import CredentialStore
from whatsapp_autoreply.services.dispatcher import MessageDispatcher
from whatsapp_autoreply.services.lifecycle import SessionLifecycleManager
from whatsapp_autoreply.services.notifier import EventNotifier
from whatsapp_autoreply.services.responder import DatabaseResponder
from whatsapp_autoreply.services.session_store import SessionStore
from whatsapp_autoreply.transport.base import (
    ClientReady,
    EventSink,
    MessageReceived,
    TransportClient,
)

GREEN = "\033[92m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
DIM = "\033[2m"
BOLD = "\033[1m"
RESET = "\033[0m"


class ConsoleTransport(TransportClient):
    """Transport that prints outgoing messages instead of sending them."""

    async def initialize(self) -> None:
        self.emit(ClientReady())

    async def send_message(self, chat_id, body, quoted_message_id=None):
        print(f"{GREEN}{BOLD}Bot → {chat_id}:{RESET} {body}\n")

    async def logout(self) -> None:
        print(f"{DIM}Console session closed{RESET}")

    async def get_state(self) -> str:
        return "open"


def console_factory(tenant_id: str, auth_path: Path, emit: EventSink) -> ConsoleTransport:
    return ConsoleTransport(tenant_id, auth_path, emit)


async def main() -> None:
    print(f"\n{BOLD}{'=' * 52}")
    print("  🤖  WhatsApp Auto-Reply — Chat Simulator")
    print(f"{'=' * 52}{RESET}\n")

    await init_db()

    print(f"{DIM}Tip: run seed.py first and use enterprise 'demo-bakery'{RESET}")
    print(f"{DIM}     Type 'quit' to exit, 'switch' to change chat{RESET}\n")

    tenant_id = input(f"{YELLOW}Enterprise id: {RESET}").strip() or "demo-bakery"
    chat_id = "5511999999999@s.whatsapp.net"

    sessions = SessionStore()
    states = ConversationStateTable()
    dispatcher = MessageDispatcher(sessions, states, DatabaseResponder(async_session_factory))
    manager = SessionLifecycleManager(
        console_factory,
        dispatcher,
        sessions,
        states,
        EventNotifier(),
        CredentialStore(root=".simulator_auth"),
    )
    client = await manager.initialize(tenant_id)
    if client is None:
        print("Could not start the console session.")
        return

    loop = asyncio.get_running_loop()
    while True:
        try:
            text = (await loop.run_in_executor(None, input, f"{BLUE}{BOLD}{chat_id}:{RESET} ")).strip()
        except (KeyboardInterrupt, EOFError):
            break

        if not text:
            continue
        if text.lower() == "quit":
            break
        if text.lower() == "switch":
            chat_id = input(f"{YELLOW}New chat id: {RESET}").strip() or chat_id
            continue

        client.emit(MessageReceived(chat_id=chat_id, body=text))
        await manager.wait_idle(tenant_id)

    await manager.shutdown_all()
    print(f"{DIM}Goodbye!{RESET}")


if __name__ == "__main__":
    asyncio.run(main())
