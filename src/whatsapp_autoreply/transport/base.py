"""Transport base — the contract every WhatsApp session backend implements.

A transport owns the connection of exactly one tenant.  It never calls into
the bot directly: everything it observes (pairing codes, readiness, inbound
messages, loss of the session) is pushed as an event variant into the sink
it was built with.  The lifecycle manager drains that sink in order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

BROADCAST_CHAT_ID = "status@broadcast"


# ── Errors ───────────────────────────────────────────────

class TransportError(Exception):
    """Base error raised by a transport."""


class SessionStartError(TransportError):
    """The transport could not open or resume a session."""


class QuotedReplyError(TransportError):
    """Sending as a reply failed because the quoted message is gone."""


class TransportConnectionError(TransportError):
    """The underlying connection dropped (network change, closed target)."""


# ── Event variants ───────────────────────────────────────

@dataclass(frozen=True)
class QrCodeReceived:
    payload: str


@dataclass(frozen=True)
class ClientReady:
    pass


@dataclass(frozen=True)
class MessageReceived:
    chat_id: str
    body: str
    from_me: bool = False
    is_broadcast: bool = False
    message_id: str | None = None


@dataclass(frozen=True)
class AuthFailure:
    reason: str = ""


@dataclass(frozen=True)
class ClientDisconnected:
    reason: str = ""


TransportEvent = QrCodeReceived | ClientReady | MessageReceived | AuthFailure | ClientDisconnected

EventSink = Callable[[TransportEvent], None]


# ── Client contract ──────────────────────────────────────

class TransportClient(ABC):
    """Abstract session handle for one tenant.

    Parameters
    ----------
    tenant_id:
        The tenant this session belongs to.
    auth_path:
        Tenant-scoped directory where the transport keeps credentials.
    emit:
        Sink receiving every event the transport observes, in order.
    """

    def __init__(self, tenant_id: str, auth_path: Path, emit: EventSink) -> None:
        self.tenant_id = tenant_id
        self.auth_path = auth_path
        self._emit = emit

    def emit(self, event: TransportEvent) -> None:
        self._emit(event)

    @abstractmethod
    async def initialize(self) -> None:
        """Open or resume the session; raise ``SessionStartError`` on failure."""

    @abstractmethod
    async def send_message(
        self, chat_id: str, body: str, quoted_message_id: str | None = None
    ) -> None:
        """Send *body* to *chat_id*, quoting *quoted_message_id* when given."""

    @abstractmethod
    async def logout(self) -> None:
        """Log the linked account out of the session."""

    @abstractmethod
    async def get_state(self) -> str:
        """Return the transport's own connection state label."""

    @property
    def supports_destroy(self) -> bool:
        return False

    async def destroy(self) -> None:
        """Tear the session down completely, when the backend supports it."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release local resources without touching the remote session."""


TransportFactory = Callable[[str, Path, EventSink], TransportClient]
