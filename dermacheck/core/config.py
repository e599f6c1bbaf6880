"""Application settings using environment variables."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration for the DermaCheck client."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    DERMACHECK_API_BASE_URL: str = Field("http://localhost:8000")
    SUPABASE_URL: str = Field("")
    SUPABASE_ANON_KEY: str = Field("")
    DERMACHECK_DATA_DIR: Path = Field(Path.home() / ".dermacheck")

    DERMACHECK_MAX_UPLOAD_BYTES: int = Field(5 * 1024 * 1024)
    DERMACHECK_REQUIRE_LOGIN: bool = Field(True)

    DERMACHECK_REQUEST_TIMEOUT: float = Field(120.0)
    DERMACHECK_FETCH_TIMEOUT: float = Field(30.0)
    DERMACHECK_HEALTH_TIMEOUT: float = Field(5.0)

    DERMACHECK_LOG_LEVEL: str = Field("INFO")

    @property
    def api_base_url(self) -> str:
        return self.DERMACHECK_API_BASE_URL.rstrip("/")

    @property
    def auth_provider_configured(self) -> bool:
        """True when the hosted auth provider has both a URL and a key."""
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY)


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing env."""
    return Settings()
