"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from whatsapp_autoreply.bot.router import router as bot_router
from whatsapp_autoreply.config import settings
from whatsapp_autoreply.database.engine import dispose_db, init_db
from whatsapp_autoreply.runtime import manager
from whatsapp_autoreply.webhook.handler import router as webhook_router

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    await init_db()
    logger.info("Database initialised")
    yield
    logger.info("Shutting down %s …", settings.app_name)
    await manager.shutdown_all()
    await dispose_db()


app = FastAPI(
    title=settings.app_name,
    description="Multi-tenant WhatsApp auto-reply bot",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(bot_router)
app.include_router(webhook_router)


@app.get("/health")
async def health_check():
    """Simple liveness probe."""
    return {"status": "healthy", "app": settings.app_name}
