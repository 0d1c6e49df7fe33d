"""Configuration structs - built explicitly or from settings."""

from dataclasses import dataclass

import settings
from influx_client import InfluxConfig

DEFAULT_MAX_KEY_LENGTH = 450


@dataclass(frozen=True)
class CacheConfig:
    """Cache server endpoint and connection pool limits."""

    host: str = "localhost"
    port: int = 11213
    timeout: float = 5.0
    pool_size: int = 8
    max_key_length: int = DEFAULT_MAX_KEY_LENGTH

    def __post_init__(self):
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be positive, got {self.pool_size}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def from_settings(cls) -> "CacheConfig":
        return cls(
            host=settings.CACHE_HOST,
            port=settings.CACHE_PORT,
            timeout=settings.CACHE_TIMEOUT,
            pool_size=settings.CACHE_POOL_SIZE,
            max_key_length=settings.CACHE_MAX_KEY_LENGTH,
        )


@dataclass(frozen=True)
class QueryCacheConfig:
    """Orchestration knobs: merge precision and sub-segment storage."""

    precision: str = "h"
    store_sub_segments: bool = True

    @classmethod
    def from_settings(cls) -> "QueryCacheConfig":
        return cls(precision=settings.MERGE_PRECISION)


def influx_config_from_settings() -> InfluxConfig:
    """InfluxDB connection settings from the environment."""
    return InfluxConfig(
        url=settings.INFLUX_URL,
        database=settings.INFLUX_DB,
        username=settings.INFLUX_USERNAME,
        password=settings.INFLUX_PASSWORD,
        timeout=settings.INFLUX_TIMEOUT,
    )
