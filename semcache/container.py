"""Dependency container - wires the cache from explicit configuration."""

import socket
from collections.abc import Callable

import httpx
from loguru import logger

from influx_client import InfluxClient, InfluxConfig
from semcache.config import CacheConfig, QueryCacheConfig, influx_config_from_settings
from semcache.repositories import CacheRepository, ConnectionPool, InfluxRepository
from semcache.services import QueryCache, QueryParser, ResultCodec, SegmentBuilder


class Container:
    """Owns the object graph; build one per application, close it on shutdown."""

    def __init__(
        self,
        influx: InfluxConfig | None = None,
        cache: CacheConfig | None = None,
        query_cache: QueryCacheConfig | None = None,
        transport: httpx.BaseTransport | None = None,
        connect: Callable[[], socket.socket] | None = None,
    ):
        influx = influx or influx_config_from_settings()
        cache = cache or CacheConfig.from_settings()
        query_cache = query_cache or QueryCacheConfig.from_settings()

        # Clients
        self.influx_client = InfluxClient(influx, transport=transport)
        self.pool = ConnectionPool(cache, connect=connect)

        # Repositories
        self.database = InfluxRepository(self.influx_client)
        self.cache = CacheRepository(self.pool, cache)

        # Services
        self.parser = QueryParser()
        self.builder = SegmentBuilder(self.parser, field_type=self.database.field_type)
        self.codec = ResultCodec(self.builder)
        self.query_cache = QueryCache(
            database=self.database,
            cache=self.cache,
            builder=self.builder,
            codec=self.codec,
            parser=self.parser,
            config=query_cache,
        )
        logger.info("Container initialized: influx={}, cache={}:{}", influx.url, cache.host, cache.port)

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()

    def close(self) -> None:
        self.database.close()
        self.cache.close()
        self.pool.close()
        self.influx_client.close()
