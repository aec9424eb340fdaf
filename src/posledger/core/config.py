"""
Configuration management for posledger.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any

from posledger.core.exceptions import ConfigurationError


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {name} is not set")
    return value


def _parse_number(name: str, raw: Any, kind: type) -> Any:
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"{name} must be a valid {kind.__name__}", details={"value": raw}
        ) from None


def _numeric_override(
    overrides: dict[str, Any], key: str, env_name: str, default: str, kind: type
) -> Any:
    # 0 is a valid override
    if overrides.get(key) is not None:
        return overrides[key]
    return _parse_number(env_name, _get_env_var(env_name, default=default), kind)


@dataclass(frozen=True)
class Config:
    """Ledger store configuration."""

    backend: str = "memory"

    # SQLite
    sqlite_path: str = "posledger.db"

    # PostgreSQL
    postgres_dsn: str | None = None

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "posledger"

    # Worker pool for blocking drivers
    max_workers: int = 8

    # Fractional digits stored by decimal ledgers
    decimal_scale: int = 2

    # Seconds to wait for a connection (sqlite busy timeout, pg connect timeout)
    connect_timeout: float = 5.0

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        # Backend names are checked against the registry by get_store
        if not self.backend:
            raise ConfigurationError("backend must not be empty")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if not 0 <= self.decimal_scale <= 18:
            raise ConfigurationError("decimal_scale must be between 0 and 18")
        if self.connect_timeout <= 0:
            raise ConfigurationError("connect_timeout must be positive")
        if self.backend == "postgres" and not self.postgres_dsn:
            raise ConfigurationError("postgres_dsn is required for the postgres backend")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        backend = overrides.get("backend") or _get_env_var("POSLEDGER_BACKEND", default="memory")

        postgres_dsn = overrides.get("postgres_dsn") or _get_env_var(
            "POSLEDGER_PG_DSN", required=backend == "postgres"
        )

        max_workers = _numeric_override(overrides, "max_workers", "POSLEDGER_MAX_WORKERS", "8", int)
        decimal_scale = _numeric_override(
            overrides, "decimal_scale", "POSLEDGER_DECIMAL_SCALE", "2", int
        )
        connect_timeout = _numeric_override(
            overrides, "connect_timeout", "POSLEDGER_CONNECT_TIMEOUT", "5.0", float
        )

        return cls(
            backend=backend,  # type: ignore
            sqlite_path=overrides.get("sqlite_path")
            or _get_env_var("POSLEDGER_SQLITE_PATH", default=cls.sqlite_path),  # type: ignore
            postgres_dsn=postgres_dsn,
            redis_url=overrides.get("redis_url")
            or _get_env_var("POSLEDGER_REDIS_URL", default=cls.redis_url),  # type: ignore
            redis_prefix=overrides.get("redis_prefix")
            or _get_env_var("POSLEDGER_REDIS_PREFIX", default=cls.redis_prefix),  # type: ignore
            max_workers=max_workers,
            decimal_scale=decimal_scale,
            connect_timeout=connect_timeout,
            log_level=overrides.get("log_level")
            or _get_env_var("POSLEDGER_LOG_LEVEL", default="INFO"),  # type: ignore
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(updates)
        return Config(**current)

    def masked_dsn(self) -> str | None:
        """Return the PostgreSQL DSN with credentials masked for safe logging."""
        dsn = self.postgres_dsn
        if not dsn:
            return None
        if "://" in dsn and "@" in dsn:
            scheme, rest = dsn.split("://", 1)
            _, host = rest.rsplit("@", 1)
            return f"{scheme}://***@{host}"
        return dsn
