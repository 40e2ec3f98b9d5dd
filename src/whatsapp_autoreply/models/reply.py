"""SQLAlchemy models for enterprises and their canned replies."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Rows are soft-deleted by moving ``deleted_at`` off this sentinel.
NOT_DELETED = datetime(9999, 12, 12)


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


class _Timestamps:
    deleted_at: Mapped[datetime | None] = mapped_column(
        "deletedAt", DateTime, default=NOT_DELETED
    )
    created_at: Mapped[datetime | None] = mapped_column(
        "createdAt", DateTime, default=_now
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        "updatedAt", DateTime, onupdate=_now
    )
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Enterprise(_Timestamps, Base):
    """A tenant: one WhatsApp session, one prompt, one reply set."""

    __tablename__ = "enterprises"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    client_id: Mapped[str] = mapped_column("clientId", String(128), nullable=False)

    def __repr__(self) -> str:
        return f"<Enterprise id={self.id!r} name={self.name!r}>"


class Reply(_Timestamps, Base):
    """Canned reply selected when an inbound message equals ``trigger``.

    The match is case-insensitive.  ``ending`` marks the last step of a
    conversation: the next inbound message restarts from the prompt.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    trigger: Mapped[str] = mapped_column(String(512), nullable=False)
    ending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enterprise_id: Mapped[str] = mapped_column(
        "enterpriseId", ForeignKey("enterprises.id"), nullable=False
    )

    __table_args__ = (Index("ix_messages_enterprise_trigger", "enterpriseId", "trigger"),)

    def __repr__(self) -> str:
        return f"<Reply id={self.id!r} trigger={self.trigger!r} ending={self.ending}>"


class Prompt(_Timestamps, Base):
    """Conversation-starting message of an enterprise."""

    __tablename__ = "prompt"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    enterprise_id: Mapped[str] = mapped_column(
        "enterpriseId", ForeignKey("enterprises.id"), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Prompt id={self.id!r} enterprise_id={self.enterprise_id!r}>"
