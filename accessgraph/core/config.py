from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "accessgraph"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_dir: str = "/var/log/accessgraph"
    file_logging: bool = False

    # Permission cache
    cache_ttl_seconds: int = Field(default=3600, gt=0)  # 1 hour
    resolve_timeout_seconds: float = Field(default=5.0, gt=0)
    max_concurrent_resolutions: int = Field(default=8, gt=0)

    # Feature flags
    flag_cache_ttl_seconds: int = Field(default=300, ge=0)  # 5 minutes

    # Redis (shared source version counters); None keeps counters in-process
    redis_url: Optional[str] = None
    redis_key_prefix: str = "perm:"
    redis_socket_timeout: float = 2.0

    # Database (role graph store)
    database_url: str = "sqlite:///./accessgraph.db"

    @property
    def uses_shared_versions(self) -> bool:
        return bool(self.redis_url)

    model_config = SettingsConfigDict(
        env_prefix="ACCESSGRAPH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
