"""Result merger - combine time-windowed results of the same query."""

from collections.abc import Iterable

from loguru import logger

from semcache.errors import MergeIncompatibility, ResultShapeError
from semcache.models import Result, Table

# Nanoseconds per merge precision unit.
PRECISIONS = {
    "ns": 1,
    "u": 1_000,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3_600 * 1_000_000_000,
}
DEFAULT_PRECISION = "h"


def precision_ns(precision: str) -> int:
    """Largest gap (ns) between two results that still counts as adjacent."""
    ns = PRECISIONS.get(precision)
    if ns is None:
        logger.warning("Unknown merge precision {!r}, falling back to {}", precision, DEFAULT_PRECISION)
        return PRECISIONS[DEFAULT_PRECISION]
    return ns


def sort_results(results: Iterable[Result]) -> list[Result]:
    """Drop empty results and order the rest by (start, end)."""
    non_empty = [r for r in results if r.time_range() is not None]
    return sorted(non_empty, key=lambda r: r.time_range())


def _merge_tables(a: Table, b: Table) -> Table:
    if a.columns != b.columns:
        raise MergeIncompatibility(f"{a.series_key}: columns {list(a.columns)} vs {list(b.columns)}")

    rows = sorted(a.rows + b.rows, key=lambda row: row[0])
    seen = set()
    unique = []
    for row in rows:
        if row[0] in seen:
            continue
        seen.add(row[0])
        unique.append(row)

    try:
        return a.with_rows(unique)
    except ResultShapeError as e:
        raise MergeIncompatibility(f"{a.series_key}: {e.message}") from e


def merge_pair(a: Result, b: Result) -> Result:
    """Union two results table-by-table, deduplicating timestamps."""
    tables = {t.series_key: t for t in a.tables}
    for table in b.tables:
        existing = tables.get(table.series_key)
        tables[table.series_key] = table if existing is None else _merge_tables(existing, table)

    try:
        return Result(tables=tuple(tables.values()), error=a.error or b.error)
    except ResultShapeError as e:
        raise MergeIncompatibility(e.message) from e


def merge(precision: str, *results: Result) -> list[Result]:
    """Merge results whose time ranges touch within the given precision."""
    if len(results) <= 1:
        return list(results)

    step = precision_ns(precision)
    merged: list[Result] = []
    for result in sort_results(results):
        if merged:
            last = merged[-1]
            gap = result.time_range()[0] - last.time_range()[1]
            if gap <= step:
                try:
                    merged[-1] = merge_pair(last, result)
                    continue
                except MergeIncompatibility as e:
                    logger.warning("Keeping results separate: {}", e.message)
        merged.append(result)

    logger.debug("Merged {} result(s) into {}", len(results), len(merged))
    return merged
