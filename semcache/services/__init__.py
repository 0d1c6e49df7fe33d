"""Services package - parsing, segments, codec, merging and orchestration."""

from semcache.services.codec import ResultCodec
from semcache.services.merge import merge, merge_pair, precision_ns, sort_results
from semcache.services.query_cache import Lookup, QueryCache
from semcache.services.query_parser import QueryParser, restrict_to_series
from semcache.services.segment import SegmentBuilder, SegmentParts, parse_segment, parse_series_key

__all__ = [
    # Parsing
    "QueryParser",
    "restrict_to_series",
    # Segments
    "SegmentBuilder",
    "SegmentParts",
    "parse_segment",
    "parse_series_key",
    # Codec
    "ResultCodec",
    # Merge
    "merge",
    "merge_pair",
    "precision_ns",
    "sort_results",
    # Orchestration
    "QueryCache",
    "Lookup",
]
