"""Shared instances — created once at import, reused across requests."""

from whatsapp_autoreply.bot.qr_cache import QrCodeCache
from whatsapp_autoreply.config import settings
from whatsapp_autoreply.database.engine import async_session_factory
from whatsapp_autoreply.services.conversation_state import ConversationStateTable
from whatsapp_autoreply.services.credentials import CredentialStore
from whatsapp_autoreply.services.dispatcher import MessageDispatcher
from whatsapp_autoreply.services.lifecycle import SessionLifecycleManager
from whatsapp_autoreply.services.notifier import EventNotifier
from whatsapp_autoreply.services.responder import DatabaseResponder
from whatsapp_autoreply.services.session_store import SessionStore
from whatsapp_autoreply.transport.gateway import gateway_transport_factory

notifier = EventNotifier()
sessions = SessionStore()
states = ConversationStateTable()

dispatcher = MessageDispatcher(
    sessions,
    states,
    DatabaseResponder(async_session_factory),
    quote_inbound=settings.quote_inbound_messages,
)

manager = SessionLifecycleManager(
    gateway_transport_factory,
    dispatcher,
    sessions,
    states,
    notifier,
    CredentialStore(),
    print_qr=settings.print_qr_in_terminal,
)

qr_cache = QrCodeCache()
qr_cache.attach(notifier)


def get_manager() -> SessionLifecycleManager:
    return manager


def get_qr_cache() -> QrCodeCache:
    return qr_cache
