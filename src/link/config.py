"""
Link - Configuration and settings.

CoreSettings contains only what the completion/progress engine needs.
StoreSettings adds the Supabase connection used by the remote store.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreSettings(BaseSettings):
    """
    Settings shared by the sync engine, CLI and API.

    No remote credentials required, so tests and offline tooling can load it.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    link_env: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Sync policy
    staleness_window_seconds: float = Field(default=300.0, gt=0)
    remote_timeout_seconds: float = Field(default=10.0, gt=0)

    # API: live coordinators per process
    coordinator_idle_seconds: float = Field(default=1800.0, gt=0)
    max_coordinators: int = Field(default=1000, gt=0)

    # Device-scoped local cache
    local_cache_path: str = ".link_cache.json"

    # Dev user for CLI commands
    dev_user_id: str = "00000000-0000-0000-0000-000000000002"

    @property
    def is_development(self) -> bool:
        return self.link_env == "development"


class StoreSettings(CoreSettings):
    """CoreSettings plus the Supabase project backing the profile store."""

    supabase_url: str
    supabase_anon_key: str
    users_table: str = "users"


@lru_cache
def get_core_settings() -> CoreSettings:
    """Get cached CoreSettings instance (no Supabase fields required)."""
    return CoreSettings()


@lru_cache
def get_settings() -> StoreSettings:
    """Get cached StoreSettings instance."""
    return StoreSettings()


class _SettingsProxy:
    """Lazy proxy so importing this module never reads .env."""

    def __init__(self, factory):
        self._factory = factory

    def __getattr__(self, name: str):
        return getattr(self._factory(), name)


settings = _SettingsProxy(get_settings)
