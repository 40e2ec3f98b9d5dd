"""Conversation state table — per-chat progress through the reply script."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import NamedTuple

logger = logging.getLogger(__name__)


class ChatKey(NamedTuple):
    """Composite key of one conversation: the tenant and the remote chat."""

    tenant_id: str
    chat_id: str


@dataclass
class ConversationState:
    """Where one chat is in its tenant's reply script.

    ``message_count`` is the number of bot messages that advanced the
    conversation.  ``ending`` means the next inbound message starts over
    from the tenant's prompt.  ``generation`` records which opening of
    the tenant the copy was read under.
    """

    key: ChatKey
    message_count: int = 0
    ending: bool = False
    last_sent_body: str | None = None
    generation: int | None = field(default=None, compare=False)

    @property
    def needs_prompt(self) -> bool:
        return self.message_count == 0 or self.ending


class ConversationStateTable:
    """In-memory conversation states, grouped under open tenants.

    A tenant must be opened before its chats can hold state; dropping the
    tenant discards every chat state it owns.  Every opening gets a new
    generation, so copies read before a drop cannot be saved into the
    tenant's next opening.
    """

    def __init__(self) -> None:
        self._tenants: dict[str, int] = {}
        self._states: dict[ChatKey, ConversationState] = {}
        self._generations = itertools.count(1)

    def open_tenant(self, tenant_id: str) -> int:
        """Open *tenant_id* (again) and return its new generation."""
        generation = next(self._generations)
        self._tenants[tenant_id] = generation
        return generation

    def has_tenant(self, tenant_id: str) -> bool:
        return tenant_id in self._tenants

    def get_or_create(self, key: ChatKey) -> ConversationState:
        """Return the state for *key*, creating a fresh one on first contact.

        Raises ``KeyError`` when the tenant has not been opened.
        """
        if key.tenant_id not in self._tenants:
            raise KeyError(key.tenant_id)
        generation = self._tenants[key.tenant_id]
        state = self._states.get(key)
        if state is None:
            # Hand out a copy; callers persist changes through ``save``.
            return ConversationState(key=key, generation=generation)
        return ConversationState(
            key=key,
            message_count=state.message_count,
            ending=state.ending,
            last_sent_body=state.last_sent_body,
            generation=generation,
        )

    def save(self, state: ConversationState) -> None:
        """Persist *state*; silently ignored once its tenant has been dropped.

        A copy read under an earlier opening of the tenant is ignored too.
        """
        current = self._tenants.get(state.key.tenant_id)
        if current is None:
            logger.debug("[%s] Tenant gone, discarding state for %s", *state.key)
            return
        if state.generation is not None and state.generation != current:
            logger.debug("[%s] Stale state for %s from a previous session, discarding", *state.key)
            return
        state.generation = current
        self._states[state.key] = state

    def reset_endings(self, tenant_id: str) -> int:
        """Clear the ending flag of every chat of *tenant_id*.

        Message counts and last-sent bodies are left untouched.  Returns the
        number of chats that were reset.
        """
        reset = 0
        for key, state in self._states.items():
            if key.tenant_id == tenant_id and state.ending:
                state.ending = False
                reset += 1
        return reset

    def states_for(self, tenant_id: str) -> list[ConversationState]:
        return [s for k, s in self._states.items() if k.tenant_id == tenant_id]

    def drop_tenant(self, tenant_id: str) -> int:
        """Forget *tenant_id* and all of its chat states."""
        self._tenants.pop(tenant_id, None)
        keys = [k for k in self._states if k.tenant_id == tenant_id]
        for key in keys:
            del self._states[key]
        if keys:
            logger.info("[%s] Dropped %d conversation state(s)", tenant_id, len(keys))
        return len(keys)
