import json
import re
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate comma/space separated values so a
    # misconfigured deployment does not crash at startup.
    if raw.startswith(("[", '"', "'")):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    return [p for p in re.split(r"[,\s]+", raw) if p]


def _parse_cors_origins(raw: Any) -> list[str]:
    parts = _parse_list(raw)
    if "*" in parts:
        return ["*"]

    origins: list[str] = []
    for part in parts:
        if "://" in part:
            origins.append(part)
            continue
        # Browsers include the scheme in the Origin header, so a bare host
        # allows both.
        origins.append(f"http://{part}")
        origins.append(f"https://{part}")

    # Deduplicate while preserving order.
    seen: set[str] = set()
    result: list[str] = []
    for origin in origins:
        if origin in seen:
            continue
        seen.add(origin)
        result.append(origin)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Deployment environment; "production" turns on secure cookies
    environment: str = "development"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Rate limit counting store
    rate_limit_backend: str = "redis"  # redis | memory
    rate_limit_redis_url: str = ""  # empty = unconfigured, checks are bypassed
    rate_limit_redis_token: str = ""  # sent as the Redis password when set
    rate_limit_timeout_seconds: float = 2.0
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when the counting store is unavailable
    )
    rate_limit_memory_max_keys: int = 10000

    # Requests matching these "METHOD /path-prefix" rules consume quota
    rate_limit_protected_paths: Annotated[list[str], NoDecode] = ["POST /api/chat"]

    # Exposes /api/rate-limit-debug
    rate_limit_debug_enabled: bool = False

    # Guest cookie for anonymous callers
    guest_cookie_name: str = "guest_id"
    guest_cookie_max_age: int = 2592000  # 30 days

    # Auth provider (session + subscription lookups)
    auth_base_url: str = ""  # e.g. http://localhost:3000/api/auth; empty = no auth
    auth_timeout: float = 5.0

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 5.0
    httpx_read_timeout: float = 10.0
    httpx_write_timeout: float = 5.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Use NoDecode so misconfigured values (e.g. "43.163.94.63") don't crash
    # JSON parsing at startup.
    cors_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def rate_limit_configured(self) -> bool:
        """Whether a counting store is available for quota checks."""
        if self.rate_limit_backend == "memory":
            return True
        return bool(self.rate_limit_redis_url.strip())

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("rate_limit_protected_paths", mode="before")
    @classmethod
    def decode_protected_paths(cls, v: Any) -> list[str]:
        # Entries are "METHOD /prefix" pairs, so split on commas only.
        if isinstance(v, str) and not v.strip().startswith("["):
            return [p.strip() for p in v.split(",") if p.strip()]
        return _parse_list(v)

    @field_validator("rate_limit_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate the counting store backend name."""
        v = v.strip().lower()
        if v not in ("redis", "memory"):
            raise ValueError("rate_limit_backend must be 'redis' or 'memory'")
        return v

    @field_validator("rate_limit_timeout_seconds", "auth_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator(
        "guest_cookie_max_age",
        "rate_limit_memory_max_keys",
        "httpx_max_connections",
        "httpx_max_keepalive_connections",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate integer limits are positive."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
