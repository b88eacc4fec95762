from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library defaults loaded from environment variables.

    Every field can be overridden with a ``RATEWARDEN_`` prefixed environment
    variable or a ``.env`` file. Explicit arguments passed to the builder or
    the storage engines always win over these values.
    """

    # Key namespaces
    default_key_prefix: str = "RATEWARDEN"
    default_penalty_key_prefix: str = "RATEWARDEN:PENALTY"

    # In-memory storage
    memory_sweep_interval_ms: int | None = 30_000  # None or <= 0 disables the sweep
    memory_lock_stripes: int = 64

    # Redis storage
    redis_url: str = "redis://localhost:6379/0"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("default_key_prefix", "default_penalty_key_prefix")
    @classmethod
    def validate_prefix_not_empty(cls, v: str) -> str:
        """Validate key prefixes are not blank."""
        if not v.strip():
            raise ValueError("key prefixes must not be empty")
        return v

    @field_validator("memory_lock_stripes")
    @classmethod
    def validate_lock_stripes(cls, v: int) -> int:
        """Validate the stripe count is positive."""
        if v < 1:
            raise ValueError("memory_lock_stripes must be at least 1")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(
        env_prefix="RATEWARDEN_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()
