from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    DEBUG: bool = False

    # Shopify app credentials from the Partner Dashboard. SHOPIFY_API_SECRET
    # signs webhooks, OAuth callbacks and App Bridge session tokens, so every
    # verification path refuses to run without it.
    SHOPIFY_API_KEY: Optional[str] = None
    SHOPIFY_API_SECRET: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2025-01"
    SHOPIFY_APP_URL: str = "http://localhost:8000"
    SHOPIFY_SCOPES: str = "read_orders,read_shopify_payments_disputes"

    # When true, app subscriptions are created as test charges. Defaults to
    # true outside production so dev stores are never billed.
    BILLING_TEST_MODE: bool = os.getenv("ENVIRONMENT", "development") != "production"

    # OpenAI configuration for dispute response drafts. OPENAI_API_KEY must be
    # provided via environment; when missing, draft generation returns a clear
    # error instead of calling the provider.
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_BASE_URL: str = os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_MAX_TOKENS: int = 2000

    # DATABASE_URL must be provided via environment (Postgres in production).
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    FRONTEND_URL: str = "http://localhost:5173"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def shopify_scopes(self) -> list:
        return [s.strip() for s in self.SHOPIFY_SCOPES.split(",") if s.strip()]

    @property
    def app_url(self) -> str:
        return self.SHOPIFY_APP_URL.rstrip("/")


_db_url = os.getenv("DATABASE_URL")
if not _db_url:
    raise RuntimeError("DATABASE_URL is required (Postgres in production, SQLite for local runs).")

settings = Settings()
