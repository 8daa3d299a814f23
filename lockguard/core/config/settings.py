"""Lockguard settings.

Loads the lockout policy, storage backend and logging options from
environment variables (prefix ``LOCKGUARD_``) and an optional ``.env`` file.

Security Note:
    - ``key_secret`` keys the HMAC that turns identifiers into storage keys.
      Set it per deployment; the default only suits development and tests.
    - ``encryption_key`` enables Fernet encryption of persisted records.
      Never log either value.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class Settings(BaseSettings):
    """Configuration for the brute-force protection service.

    Cross-field rules (``max_delay >= base_delay`` and so on) are enforced by
    ``RateLimitConfig`` so that they always surface as ``InvalidConfigError``.
    """

    # Lockout policy
    max_attempts: int = 5
    lockout_duration_ms: int = 15 * 60 * 1000
    progressive_delay: bool = True
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    state_ttl_ms: int = DAY_MS

    # Storage
    storage_backend: str = Field(default="memory", pattern="^(memory|file|redis)$")
    storage_path: str = ".lockguard"
    storage_key_prefix: str = "auth_security_state"
    key_secret: SecretStr = SecretStr("lockguard-development-key")
    encryption_key: Optional[SecretStr] = None

    # Redis (used by the redis storage backend and the cross-process bus)
    redis_url: str = "redis://localhost:6379/0"
    change_channel: str = "lockguard:state_changes"
    cross_process_bus: bool = False

    # Hygiene
    sweep_interval_seconds: float = 3600.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LOCKGUARD_",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        """Accept any casing and reject unknown level names."""
        level = str(value).strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("storage_key_prefix")
    @classmethod
    def validate_prefix(cls, value: str) -> str:
        if not value or ":" in value:
            raise ValueError("storage_key_prefix must be non-empty and must not contain ':'")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    settings = Settings()
    logger.debug("Lockguard settings loaded (backend=%s)", settings.storage_backend)
    return settings
