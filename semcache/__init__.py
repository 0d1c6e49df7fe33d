"""Semantic query-result cache for InfluxDB."""

from semcache.config import CacheConfig, QueryCacheConfig
from semcache.container import Container
from semcache.errors import (
    CacheKeyError,
    CacheMiss,
    CacheServerError,
    CacheTimeout,
    CodecError,
    EmptyResultError,
    MergeIncompatibility,
    ParseError,
    QueryCacheError,
    QueryExecutionError,
    ResultShapeError,
    TransportError,
)
from semcache.models import Result, ScalarType, Table
from semcache.services import QueryCache, QueryParser, ResultCodec, SegmentBuilder, merge

__version__ = "0.1.0"

__all__ = [
    # Wiring
    "Container",
    "CacheConfig",
    "QueryCacheConfig",
    # Models
    "Result",
    "Table",
    "ScalarType",
    # Services
    "QueryParser",
    "SegmentBuilder",
    "ResultCodec",
    "QueryCache",
    "merge",
    # Errors
    "QueryCacheError",
    "ParseError",
    "ResultShapeError",
    "EmptyResultError",
    "CodecError",
    "CacheMiss",
    "CacheKeyError",
    "CacheServerError",
    "TransportError",
    "CacheTimeout",
    "MergeIncompatibility",
    "QueryExecutionError",
]
