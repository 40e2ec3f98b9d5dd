"""Message dispatcher — answers inbound messages from the tenant's script.

Script
------
* First message of a chat, or first message after an *ending* reply
  → send the tenant's prompt.
* Otherwise the message body is looked up as a trigger (case-insensitive)
  → send the matching reply, or repeat the last message when nothing
  matches.
"""

from __future__ import annotations

import logging

from whatsapp_autoreply.services.conversation_state import (
    ChatKey,
    ConversationState,
    ConversationStateTable,
)
from whatsapp_autoreply.services.responder import Responder
from whatsapp_autoreply.services.session_store import SessionStore
from whatsapp_autoreply.transport.base import (
    QuotedReplyError,
    TransportClient,
    TransportConnectionError,
)

logger = logging.getLogger(__name__)

# Error texts of a connection that is going away on its own.
_TRANSIENT_MARKERS = ("ERR_NETWORK_CHANGED", "Connection closed", "Target closed")


def is_transient(exc: BaseException) -> bool:
    """Whether *exc* means the transport is dropping and will report it."""
    if isinstance(exc, TransportConnectionError):
        return True
    text = str(exc)
    return any(marker in text for marker in _TRANSIENT_MARKERS)


class MessageDispatcher:
    """Advances per-chat conversation state and sends the next message."""

    def __init__(
        self,
        sessions: SessionStore,
        states: ConversationStateTable,
        responder: Responder,
        *,
        quote_inbound: bool = True,
    ) -> None:
        self._sessions = sessions
        self._states = states
        self._responder = responder
        self._quote_inbound = quote_inbound

    async def on_inbound_message(
        self,
        tenant_id: str,
        chat_id: str,
        body: str,
        from_me: bool = False,
        is_broadcast: bool = False,
        message_id: str | None = None,
    ) -> None:
        """Handle one inbound message.  Never raises."""
        if from_me or is_broadcast:
            return

        logger.debug("[%s] Message from %s: %s", tenant_id, chat_id, body[:80])

        session = self._sessions.get(tenant_id)
        if session is None or not self._states.has_tenant(tenant_id):
            logger.error(
                "[%s] State or client not found for message from %s, dropping",
                tenant_id,
                chat_id,
            )
            return

        state = self._states.get_or_create(ChatKey(tenant_id, chat_id))
        try:
            outgoing = await self._advance(state, body)
            if outgoing is not None:
                quoted = message_id if self._quote_inbound else None
                await self._send(session.client, chat_id, outgoing, quoted)
        except Exception as exc:
            self._log_failure(tenant_id, chat_id, exc)
        finally:
            self._states.save(state)

    async def _advance(self, state: ConversationState, body: str) -> str | None:
        """Move *state* one step and return the body to send, if any."""
        tenant_id, chat_id = state.key

        if state.needs_prompt:
            prompt = await self._responder.find_prompt(tenant_id)
            if prompt is None:
                logger.warning("[%s] No prompt found, not answering %s", tenant_id, chat_id)
                return None
            state.message_count = 1
            state.ending = False
            state.last_sent_body = prompt.body
            return prompt.body

        reply = await self._responder.find_reply(tenant_id, body)
        if reply is None:
            logger.warning("[%s] No reply for trigger %r from %s", tenant_id, body, chat_id)
            if state.last_sent_body is None:
                logger.debug("[%s] Nothing sent to %s yet, not repeating", tenant_id, chat_id)
            return state.last_sent_body

        state.message_count += 1
        state.last_sent_body = reply.body
        state.ending = bool(reply.ending)
        if state.ending:
            logger.info("[%s] Conversation ending flag set for %s", tenant_id, chat_id)
        return reply.body

    async def _send(
        self,
        client: TransportClient,
        chat_id: str,
        body: str,
        quoted_message_id: str | None,
    ) -> None:
        try:
            await client.send_message(chat_id, body, quoted_message_id=quoted_message_id)
        except QuotedReplyError as exc:
            logger.warning(
                "[%s] Quoted reply to %s failed (%s), sending as a new message",
                client.tenant_id,
                chat_id,
                exc,
            )
            await client.send_message(chat_id, body)

    @staticmethod
    def _log_failure(tenant_id: str, chat_id: str, exc: Exception) -> None:
        if is_transient(exc):
            logger.warning(
                "[%s] Connection problem while answering %s (%s); client might disconnect",
                tenant_id,
                chat_id,
                exc,
            )
            return
        logger.error(
            "[%s] Error handling message from %s: %s",
            tenant_id,
            chat_id,
            exc,
            exc_info=exc,
        )
