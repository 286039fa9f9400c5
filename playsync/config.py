from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Remote service
    API_BASE_URL: str = "https://api.gamescrobbler.com"
    API_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: int = 30

    # Persistence
    DATA_DIR: str = "/data"
    CATALOG_PATH: str = "/data/catalog.json"
    PERSIST_ENABLED: bool = True

    # Fault tolerance
    BREAKER_FAILURE_THRESHOLD: int = 3
    BREAKER_TIMEOUT_SECONDS: float = 120
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_JITTER_SECONDS: float = 1.0
    SCROBBLE_MAX_RETRIES: int = 2
    SYNC_MAX_RETRIES: int = 1
    MAX_FLUSH_ATTEMPTS: int = 5

    # Sync Logic
    SYNC_INTERVAL_SECONDS: int = 3600
    FULL_SYNC_INTERVAL_SECONDS: int = 604800  # 7d, 0 disables
    SYNC_ACHIEVEMENTS: bool = True
    DISABLE_SCROBBLING: bool = False
    ALLOWED_SOURCES_CACHE_HOURS: int = 24

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()

def active_flags() -> List[str]:
    """Flags forwarded to the remote service with library payloads."""
    flags = []
    if settings.DISABLE_SCROBBLING:
        flags.append("no-scrobble")
    return flags
