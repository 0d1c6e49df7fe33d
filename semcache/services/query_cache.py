"""Query cache - serve queries from the cache server, falling back to InfluxDB."""

from collections.abc import Iterable
from dataclasses import dataclass, replace

from loguru import logger

from semcache.config import QueryCacheConfig
from semcache.errors import (
    CacheKeyError,
    CacheMiss,
    CacheServerError,
    CodecError,
    EmptyResultError,
    ParseError,
    ResultShapeError,
    TransportError,
)
from semcache.models import CacheEntry, ParsedQuery, Result, Table
from semcache.repositories import CacheRepository, InfluxRepository
from semcache.services.codec import ResultCodec
from semcache.services.merge import merge
from semcache.services.query_parser import QueryParser, restrict_to_series
from semcache.services.segment import SegmentBuilder, SegmentParts

# Errors that make a query uncacheable; the database answer is used as is.
UNCACHEABLE = (ParseError, ResultShapeError, EmptyResultError)

# Cache-side failures; logged, then the database answer is used.
CACHE_FAILURES = (TransportError, CacheServerError, CodecError)


@dataclass(frozen=True)
class Lookup:
    """Outcome of a cache lookup for a known result shape."""

    hits: Result
    misses: tuple[Table, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.misses


class QueryCache:
    """Cache-aside orchestration over InfluxDB and the cache server."""

    def __init__(
        self,
        database: InfluxRepository,
        cache: CacheRepository,
        builder: SegmentBuilder,
        codec: ResultCodec,
        parser: QueryParser | None = None,
        config: QueryCacheConfig | None = None,
    ):
        self._database = database
        self._cache = cache
        self._builder = builder
        self._codec = codec
        self._parser = parser or builder.parser
        self._config = config or QueryCacheConfig()
        logger.debug("QueryCache initialized")

    # =========================================================================
    # Store
    # =========================================================================

    def store(self, query: str, result: Result) -> CacheEntry | None:
        """Put the full segment and, for multi-table results, one entry per table."""
        if result.is_empty:
            logger.debug("Not caching empty result: {}", query)
            return None
        if result.error is not None:
            logger.debug("Not caching result with error ({}): {}", result.error, query)
            return None

        parsed = self._parser.parse(query)
        if parsed.is_paginated:
            logger.debug("Not caching paginated query ({}): {}", ", ".join(parsed.modifiers), query)
            return None

        parts = self._builder.parts_for(parsed, result)
        entry = self._entry(parts, result)
        stored = self._put(entry)

        if self._config.store_sub_segments and len(result.tables) > 1:
            for table in result.tables:
                sub = Result(tables=(table,))
                if not sub.is_empty:
                    self._put(self._entry(replace(parts, series=(table.series_key,)), sub))

        if stored:
            logger.info("Cached {} table(s) under {} bytes key", len(result.tables), len(entry.key))
        return entry if stored else None

    def _entry(self, parts: SegmentParts, result: Result) -> CacheEntry:
        start, end = result.time_range()
        return CacheEntry(
            key=parts.render(),
            value=self._codec.encode_parts(parts, result),
            start=start,
            end=end,
            table_count=len(result.tables),
        )

    def _put(self, entry: CacheEntry) -> bool:
        if len(entry.key) > self._cache.max_key_length:
            logger.warning("Skipping cache entry, key is {} bytes: {}...", len(entry.key), entry.key[:80])
            return False
        self._cache.put(entry)
        return True

    # =========================================================================
    # Lookup
    # =========================================================================

    def lookup(self, query: str, shape: Result) -> Lookup:
        """Full-segment Get, then per-table Gets for whatever is missing."""
        return self._lookup(self._parser.parse(query), shape)

    def _lookup(self, parsed: ParsedQuery, shape: Result) -> Lookup:
        if parsed.window.is_empty:
            logger.debug("Empty time window {}..{}, skipping cache", parsed.window.start, parsed.window.end)
            return Lookup(hits=Result(), misses=shape.tables)

        parts = self._builder.parts_for(parsed, shape)

        full = self._get(parts.render(), parsed)
        if full is not None:
            logger.debug("Full segment hit: {} table(s)", len(full.tables))
            return Lookup(hits=full)
        if len(shape.tables) == 1:
            return Lookup(hits=Result(), misses=shape.tables)

        hits: list[Table] = []
        misses: list[Table] = []
        for segment, table in zip(parts.split(), shape.tables):
            found = self._get(segment, parsed)
            if found is None:
                misses.append(table)
            else:
                hits.extend(found.tables)

        logger.debug("Sub-segment lookup: {} hit(s), {} miss(es)", len(hits), len(misses))
        return Lookup(hits=Result(tables=tuple(hits)), misses=tuple(misses))

    def _get(self, key: str, parsed: ParsedQuery) -> Result | None:
        try:
            payload = self._cache.get(key, parsed.window.start, parsed.window.end)
        except CacheMiss:
            return None
        except CacheKeyError as e:
            logger.debug("Cannot look up key: {}", e.message)
            return None
        return self._codec.decode(payload)

    # =========================================================================
    # Fetch
    # =========================================================================

    def fetch(self, query: str, shape: Result | None = None) -> Result:
        """Answer a query from the cache where possible, from InfluxDB otherwise."""
        if shape is None or shape.is_empty:
            return self._execute_and_store(query)

        try:
            parsed = self._parser.parse(query)
            if parsed.is_paginated:
                return self._database.execute(query)
            found = self._lookup(parsed, shape)
        except UNCACHEABLE as e:
            logger.warning("Query not cacheable ({}), querying database", e.message)
            return self._database.execute(query)
        except CACHE_FAILURES as e:
            logger.warning("Cache lookup failed ({}), querying database", e.message)
            return self._execute_and_store(query)

        if found.complete:
            logger.info("Cache hit: {} table(s)", len(found.hits.tables))
            return found.hits

        if not found.hits.tables:
            logger.info("Cache miss, querying database")
            return self._execute_and_store(query)

        logger.info("Partial hit: {} cached, {} missing", len(found.hits.tables), len(found.misses))
        try:
            result = self._complete(query, found)
        except UNCACHEABLE as e:
            logger.warning("Cannot combine partial hit ({}), querying database", e.message)
            return self._database.execute(query)
        self._try_store(query, result)
        return result

    def _complete(self, query: str, found: Lookup) -> Result:
        wanted = {t.series_key for t in found.misses}
        fresh = self._database.execute(restrict_to_series(query, [t.tags for t in found.misses]))
        tables = list(found.hits.tables) + [t for t in fresh.tables if t.series_key in wanted]
        return Result(tables=tuple(tables))

    def fetch_windows(self, queries: Iterable[str], shape: Result | None = None) -> list[Result]:
        """Fetch several time-windowed variants of a query and merge them."""
        results = [self.fetch(query, shape) for query in queries]
        return merge(self._config.precision, *results)

    def _execute_and_store(self, query: str) -> Result:
        result = self._database.execute(query)
        self._try_store(query, result)
        return result

    def _try_store(self, query: str, result: Result) -> None:
        try:
            self.store(query, result)
        except UNCACHEABLE as e:
            logger.warning("Query not cacheable: {}", e.message)
        except CACHE_FAILURES as e:
            logger.warning("Cache store failed: {}", e.message)
