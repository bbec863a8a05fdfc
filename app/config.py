"""Application configuration loaded from environment variables."""

import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment."""

    def __init__(self):
        self.database_url: str = os.getenv(
            "DATABASE_URL", "sqlite+aiosqlite:///./dispatch_vote.db"
        )
        self.backend_url: str = os.getenv("BACKEND_URL", "http://localhost:54321")
        self.backend_api_key: str = os.getenv("BACKEND_API_KEY", "")
        self.token_salt: str = os.getenv("TOKEN_SALT", "")
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

        self.request_timeout_seconds: float = float(
            os.getenv("REQUEST_TIMEOUT_SECONDS", "30")
        )
        self.submit_advance_delay_ms: int = int(
            os.getenv("SUBMIT_ADVANCE_DELAY_MS", "800")
        )
        self.weather_prefetch_concurrency: int = int(
            os.getenv("WEATHER_PREFETCH_CONCURRENCY", "3")
        )
        self.session_idle_minutes: int = int(os.getenv("SESSION_IDLE_MINUTES", "60"))
        self.default_delay_minutes: int = int(os.getenv("DEFAULT_DELAY_MINUTES", "60"))

    @property
    def backend_rpc_base_url(self) -> str:
        return f"{self.backend_url.rstrip('/')}/rest/v1/rpc"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
