"""Reply repository — read-only queries over prompts and canned replies."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_autoreply.models.reply import NOT_DELETED, Prompt, Reply


class ReplyRepository:
    """Encapsulates the lookups the dispatcher needs for one enterprise."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_prompt(self, enterprise_id: str) -> Prompt | None:
        """Return the first available prompt of *enterprise_id*."""
        stmt = (
            select(Prompt)
            .where(
                Prompt.enterprise_id == enterprise_id,
                Prompt.available.is_(True),
                Prompt.deleted_at == NOT_DELETED,
            )
            .order_by(Prompt.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def find_reply(self, enterprise_id: str, trigger_text: str) -> Reply | None:
        """Look up the reply whose trigger equals *trigger_text*, ignoring case.

        Only available, non-deleted replies of *enterprise_id* are considered.
        Triggers are compared with ``str.casefold``, so accented and other
        non-ASCII letters match in any case.
        """
        stmt = (
            select(Reply)
            .where(
                Reply.enterprise_id == enterprise_id,
                Reply.available.is_(True),
                Reply.deleted_at == NOT_DELETED,
            )
            .order_by(Reply.created_at)
        )
        result = await self._session.execute(stmt)
        wanted = trigger_text.casefold()
        for reply in result.scalars():
            if reply.trigger.casefold() == wanted:
                return reply
        return None
