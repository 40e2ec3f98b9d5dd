"""WhatsApp Auto-Reply Bot — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./whatsapp_autoreply.db"

    # ── Tenant credential storage ─────────────────────────
    auth_data_path: str = ".wwebjs_auth"
    credential_delete_backoff_seconds: float = 1.0
    credential_delete_max_retries: int = 10

    # ── WhatsApp gateway ──────────────────────────────────
    gateway_base_url: str = "http://localhost:8080"
    gateway_api_key: str = ""
    gateway_webhook_url: str = "http://localhost:8000/webhook/gateway"
    gateway_timeout_seconds: float = 30.0

    # ── App ───────────────────────────────────────────────
    app_name: str = "WhatsApp Auto-Reply Bot"
    print_qr_in_terminal: bool = True
    quote_inbound_messages: bool = True
    debug: bool = True
    sql_echo: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
