"""
Application settings and configuration management.

All values are read from environment variables; see ``Settings.from_env``.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Tuple

LOGIN_ENDPOINT = "/api/auth/login"
CHECKOUT_ENDPOINT = "/api/checkout"
DEFAULT_TRACKED_ENDPOINTS = (LOGIN_ENDPOINT, CHECKOUT_ENDPOINT)

BACKEND_AUTO = "auto"
BACKEND_REDIS = "redis"
BACKEND_FILE = "file"

WRITE_MODE_ATOMIC = "atomic"
WRITE_MODE_SEQUENTIAL = "sequential"

# Query parameter ceilings
MAX_WINDOW_MINUTES = 60
MAX_TIME_WINDOW_MINUTES = 24 * 60
MAX_INTERVAL_SECONDS = 60 * 60


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass
class Settings:
    """Traffic monitor configuration."""

    backend: str = BACKEND_AUTO
    redis_url: Optional[str] = None
    log_file: str = "./data/traffic.json"

    # Detail store
    max_logs: int = 1000
    log_ttl_seconds: int = 30 * 60
    trim_slack: int = 0

    # Counter store
    counter_ttl_seconds: int = 15 * 60
    tracked_endpoints: Tuple[str, ...] = field(default=DEFAULT_TRACKED_ENDPOINTS)

    # Ingestion
    write_mode: str = WRITE_MODE_ATOMIC
    forwarded_for_index: int = 0
    bot_header: str = "x-kasada-classification"
    bot_value: str = "bad-bot"
    max_header_bytes: int = 4096

    # Queries
    max_query_limit: int = 1000
    default_query_limit: int = 100
    incremental_limit: int = 100
    combined_recent: int = 10

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            backend=os.getenv("TRAFFIC_BACKEND", BACKEND_AUTO).strip().lower(),
            redis_url=os.getenv("REDIS_URL") or None,
            log_file=os.getenv("TRAFFIC_LOG_FILE", cls.log_file),
            max_logs=_env_int("TRAFFIC_MAX_LOGS", cls.max_logs),
            log_ttl_seconds=_env_int("TRAFFIC_LOG_TTL_SECONDS", cls.log_ttl_seconds),
            trim_slack=_env_int("TRAFFIC_TRIM_SLACK", cls.trim_slack),
            counter_ttl_seconds=_env_int(
                "TRAFFIC_COUNTER_TTL_SECONDS", cls.counter_ttl_seconds
            ),
            tracked_endpoints=_env_list(
                "TRAFFIC_TRACKED_ENDPOINTS", DEFAULT_TRACKED_ENDPOINTS
            ),
            write_mode=os.getenv("TRAFFIC_WRITE_MODE", WRITE_MODE_ATOMIC)
            .strip()
            .lower(),
            forwarded_for_index=_env_int(
                "TRAFFIC_FORWARDED_FOR_INDEX", cls.forwarded_for_index
            ),
            bot_header=os.getenv("TRAFFIC_BOT_HEADER", cls.bot_header).lower(),
            bot_value=os.getenv("TRAFFIC_BOT_VALUE", cls.bot_value),
            max_header_bytes=_env_int("TRAFFIC_MAX_HEADER_BYTES", cls.max_header_bytes),
            max_query_limit=_env_int("TRAFFIC_MAX_QUERY_LIMIT", cls.max_query_limit),
            default_query_limit=_env_int(
                "TRAFFIC_DEFAULT_QUERY_LIMIT", cls.default_query_limit
            ),
            incremental_limit=_env_int(
                "TRAFFIC_INCREMENTAL_LIMIT", cls.incremental_limit
            ),
            combined_recent=_env_int("TRAFFIC_COMBINED_RECENT", cls.combined_recent),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )

    @property
    def resolved_backend(self) -> str:
        """Backend actually used once ``auto`` is resolved."""
        if self.backend != BACKEND_AUTO:
            return self.backend
        return BACKEND_REDIS if self.redis_url else BACKEND_FILE

    def validate(self) -> List[str]:
        """Validate settings values. Returns list of errors."""
        errors = []

        if self.backend not in (BACKEND_AUTO, BACKEND_REDIS, BACKEND_FILE):
            errors.append(f"backend must be auto, redis or file, got {self.backend!r}")
        if self.resolved_backend == BACKEND_REDIS and not self.redis_url:
            errors.append("redis backend requires REDIS_URL")
        if self.write_mode not in (WRITE_MODE_ATOMIC, WRITE_MODE_SEQUENTIAL):
            errors.append(
                f"write_mode must be atomic or sequential, got {self.write_mode!r}"
            )
        for name in (
            "max_logs",
            "log_ttl_seconds",
            "counter_ttl_seconds",
            "max_query_limit",
            "default_query_limit",
            "incremental_limit",
            "combined_recent",
            "max_header_bytes",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be > 0, got {getattr(self, name)}")
        if self.trim_slack < 0:
            errors.append(f"trim_slack must be >= 0, got {self.trim_slack}")
        if self.forwarded_for_index < 0:
            errors.append(
                f"forwarded_for_index must be >= 0, got {self.forwarded_for_index}"
            )
        if not self.tracked_endpoints:
            errors.append("at least one tracked endpoint is required")
        else:
            # The dashboard charts these two series
            missing = [
                e for e in (LOGIN_ENDPOINT, CHECKOUT_ENDPOINT) if e not in self.tracked_endpoints
            ]
            if missing:
                errors.append(f"tracked endpoints must include {', '.join(missing)}")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    settings = Settings.from_env()
    errors = settings.validate()
    if errors:
        raise ValueError("Invalid configuration: " + "; ".join(errors))
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
