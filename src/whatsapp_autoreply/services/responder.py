"""Responder — where the dispatcher gets prompts and canned replies from."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from whatsapp_autoreply.database.repository import ReplyRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptRecord:
    """Conversation-starting message of a tenant."""

    body: str


@dataclass(frozen=True)
class ReplyRecord:
    """Canned reply matched by trigger."""

    trigger: str
    body: str
    ending: bool = False


class Responder(Protocol):
    """Read-only source of prompts and replies, scoped by tenant."""

    async def find_prompt(self, tenant_id: str) -> PromptRecord | None: ...

    async def find_reply(self, tenant_id: str, trigger_text: str) -> ReplyRecord | None: ...


class DatabaseResponder:
    """Responder backed by the relational reply catalogue.

    A short-lived session is opened per lookup so that message handling for
    one tenant never holds a connection while waiting on the transport.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_prompt(self, tenant_id: str) -> PromptRecord | None:
        async with self._session_factory() as session:
            prompt = await ReplyRepository(session).find_prompt(tenant_id)
        if prompt is None:
            return None
        return PromptRecord(body=prompt.body)

    async def find_reply(self, tenant_id: str, trigger_text: str) -> ReplyRecord | None:
        async with self._session_factory() as session:
            reply = await ReplyRepository(session).find_reply(tenant_id, trigger_text)
        if reply is None:
            logger.debug("[%s] No reply row for trigger %r", tenant_id, trigger_text)
            return None
        return ReplyRecord(trigger=reply.trigger, body=reply.body, ending=bool(reply.ending))
