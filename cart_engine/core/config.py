"""Cart Engine Configuration"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Engine settings loaded from environment"""

    # Application
    app_name: str = "Cart Engine"
    debug: bool = False

    # Backend
    backend_base_url: str = "http://localhost:8001"
    request_timeout: float = 10.0
    initial_load_timeout: float = 2.0

    # Synchronization
    sync_interval: float = 30.0
    queue_sync_interval: float = 15.0

    # Offline retry policy
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_jitter: float = 0.1
    max_dropped_actions: int = 50

    # Persistence
    storage_dir: Optional[str] = None
    backup_ttl_hours: int = 24

    # Session
    default_user_id: str = "demo-user"

    class Config:
        env_prefix = "CART_ENGINE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def backup_ttl_seconds(self) -> int:
        return self.backup_ttl_hours * 3600


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
