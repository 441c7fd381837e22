# backend/repomap/config.py
import os
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

class Settings(BaseSettings):
    """Worker settings loaded from environment variables (or a .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    database_url: str = f"sqlite:///{os.path.join(BASE_DIR, 'codebase.db')}"
    workspace_dir: str = os.path.join(BASE_DIR, "temp")

    # Sources - comma-separated list of accepted hosts
    allowed_hosts: str = "github.com"
    default_branch: str = "main"

    # Polling defaults for clients waiting on a job
    poll_interval: float = 2.0
    poll_max_attempts: int = 30

    cors_origins: str = "*"
    log_level: str = "INFO"

    def get_allowed_hosts_list(self) -> List[str]:
        return [h.strip().lower() for h in self.allowed_hosts.split(",") if h.strip()]

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
