"""Seed script — populates the database with a demo enterprise and its script."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_autoreply.database.engine import async_session_factory, init_db
from whatsapp_autoreply.models.reply import Enterprise, Prompt, Reply

DEMO_ENTERPRISE_ID = "demo-bakery"

SAMPLE_ROWS = [
    Enterprise(id=DEMO_ENTERPRISE_ID, name="Demo Bakery", client_id="demo-bakery"),
    Prompt(
        enterprise_id=DEMO_ENTERPRISE_ID,
        body=(
            "👋 Welcome to Demo Bakery!\n\n"
            "Reply *1* for opening hours, *2* for today's specials "
            "or *bye* to end the chat."
        ),
    ),
    Reply(
        enterprise_id=DEMO_ENTERPRISE_ID,
        trigger="1",
        body="🕗 We are open Monday to Saturday, 7am to 7pm.",
    ),
    Reply(
        enterprise_id=DEMO_ENTERPRISE_ID,
        trigger="2",
        body="🥐 Today: almond croissants and sourdough loaves.",
    ),
    Reply(
        enterprise_id=DEMO_ENTERPRISE_ID,
        trigger="bye",
        body="Thanks for reaching out! Send any message to start again.",
        ending=True,
    ),
]


async def seed() -> None:
    """Insert the demo enterprise, prompt and replies."""
    await init_db()
    async with async_session_factory() as session:
        session: AsyncSession
        session.add_all(SAMPLE_ROWS)
        await session.commit()
    print(f"✅ Seeded enterprise {DEMO_ENTERPRISE_ID!r} with {len(SAMPLE_ROWS) - 2} replies.")


if __name__ == "__main__":
    asyncio.run(seed())
