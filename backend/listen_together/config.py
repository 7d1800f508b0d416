"""
Application settings, loaded from environment variables and an optional ``.env`` file.
"""
from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    PROJECT_NAME: str = "Listen Together"
    VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["dev", "test", "prod"] = "dev"
    LOG_LEVEL: str = "INFO"

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    ALLOWED_ORIGINS: str = "*"

    # Sync
    PERIODIC_SYNC_INTERVAL: float = Field(default=10.0, gt=0, description="Seconds between periodic sync passes")
    INITIAL_SYNC_DELAY: float = Field(default=1.0, ge=0, description="Delay before a new participant is synced")
    SYNC_TOLERANCE_INITIAL: float = 2.0
    SYNC_TOLERANCE_PERIODIC: float = 4.0
    SYNC_TOLERANCE_MANUAL: float = 3.0

    # Media search
    YOUTUBE_API_KEY: str = ""
    SEARCH_MAX_RESULTS: int = Field(default=10, ge=1, le=50)

    # Identity provider
    OAUTH2_API_URL: str = ""

    HTTP_TIMEOUT: float = 10.0

    @property
    def origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def is_dev(self) -> bool:
        return self.ENVIRONMENT == "dev"


@lru_cache
def get_settings() -> Settings:
    return Settings()
