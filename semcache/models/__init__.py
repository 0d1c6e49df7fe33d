"""Models package - result tables, parsed queries and cache entries."""

from semcache.models.cache import CacheEntry
from semcache.models.query import (
    EMPTY,
    MAX_TIME,
    MIN_TIME,
    Aggregation,
    Clause,
    Conjunction,
    Disjunction,
    Operator,
    ParsedQuery,
    Predicate,
    SelectField,
    TimeWindow,
)
from semcache.models.result import (
    INT64_MAX,
    INT64_MIN,
    Result,
    ScalarType,
    Table,
    escape_name,
    escape_token,
    unify,
)

__all__ = [
    # Result
    "ScalarType",
    "Table",
    "Result",
    "INT64_MIN",
    "INT64_MAX",
    "escape_name",
    "escape_token",
    "unify",
    # Query
    "Operator",
    "Clause",
    "Conjunction",
    "Disjunction",
    "Predicate",
    "Aggregation",
    "TimeWindow",
    "SelectField",
    "ParsedQuery",
    "EMPTY",
    "MIN_TIME",
    "MAX_TIME",
    # Cache
    "CacheEntry",
]
