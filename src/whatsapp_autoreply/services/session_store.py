"""Session store — tracks the live transport session of each tenant."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from whatsapp_autoreply.transport.base import TransportClient

logger = logging.getLogger(__name__)


class SessionStatus(str, enum.Enum):
    INITIALIZING = "initializing"
    AWAITING_AUTH = "awaiting_auth"
    READY = "ready"
    DISCONNECTED = "disconnected"


@dataclass
class TenantSession:
    """One tenant's transport handle and where it is in its lifecycle."""

    tenant_id: str
    client: TransportClient
    status: SessionStatus = SessionStatus.INITIALIZING


class SessionStore:
    """In-memory session store keyed by tenant id.

    Holds at most one session per tenant.  Only the lifecycle manager
    writes to it; everything else reads.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, TenantSession] = {}

    def get(self, tenant_id: str) -> TenantSession | None:
        return self._sessions.get(tenant_id)

    def add(self, session: TenantSession) -> None:
        """Register *session*; a tenant that already has one is a bug."""
        if session.tenant_id in self._sessions:
            raise ValueError(f"Session for tenant {session.tenant_id!r} already exists")
        self._sessions[session.tenant_id] = session
        logger.info("[%s] Session registered", session.tenant_id)

    def remove(self, tenant_id: str) -> TenantSession | None:
        """Remove and return the tenant's session, if any."""
        session = self._sessions.pop(tenant_id, None)
        if session is not None:
            session.status = SessionStatus.DISCONNECTED
            logger.info("[%s] Session removed", tenant_id)
        return session

    def set_status(self, tenant_id: str, status: SessionStatus) -> None:
        session = self._sessions.get(tenant_id)
        if session is None:
            return
        if session.status is not status:
            logger.debug("[%s] Session %s -> %s", tenant_id, session.status.value, status.value)
        session.status = status

    def tenant_ids(self) -> list[str]:
        """Snapshot of tenants with a live session."""
        return list(self._sessions)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
