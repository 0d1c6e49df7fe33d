"""Error taxonomy for the semantic cache."""


class QueryCacheError(Exception):
    """Base class for all semantic cache errors."""

    def __init__(self, message: str = "Query cache error"):
        self.message = message
        super().__init__(self.message)


class ParseError(QueryCacheError):
    """Malformed query clause, unsupported operator or untyped literal."""


class ResultShapeError(QueryCacheError, ValueError):
    """Table or Result violates its construction invariants."""


class EmptyResultError(QueryCacheError):
    """Result has no tables to derive a segment from."""

    def __init__(self, message: str = "cannot derive a semantic segment from an empty result"):
        super().__init__(message)


class CodecError(QueryCacheError):
    """Truncated or malformed cache payload."""


class CacheMiss(QueryCacheError):
    """Key not present in the cache."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"cache miss: {key}")


class CacheKeyError(QueryCacheError, ValueError):
    """Key cannot be sent over the cache protocol."""


class CacheServerError(QueryCacheError):
    """Cache server replied with an error line."""


class TransportError(QueryCacheError):
    """Connection refused, closed or out of sync with the server."""


class CacheTimeout(TransportError):
    """Cache command exceeded its deadline."""


class MergeIncompatibility(QueryCacheError):
    """Tables with conflicting column sets cannot be merged."""


class QueryExecutionError(QueryCacheError):
    """Database rejected or failed the query."""
