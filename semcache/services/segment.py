"""Semantic segment builder - canonical cache keys for query results."""

import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from urllib.parse import unquote

from loguru import logger

from semcache.errors import EmptyResultError, ParseError
from semcache.models import ParsedQuery, Result, ScalarType, escape_token
from semcache.services.query_parser import QueryParser

FieldTypeLookup = Callable[[str, str], ScalarType | None]

_COLUMN = re.compile(r"([^\[\],]+)\[(\w+)\]")

# Aggregates whose output is a count regardless of the input field type.
_COUNTING = {"count"}


@dataclass(frozen=True)
class SegmentParts:
    """The four rendered parts of a semantic segment, without braces."""

    series: tuple[str, ...]
    fields: str
    predicates: str
    aggregation: str

    def render(self) -> str:
        sm = "".join(f"({s})" for s in self.series)
        return f"{{{sm}}}#{{{self.fields}}}#{{{self.predicates}}}#{{{self.aggregation}}}"

    def split(self) -> list[str]:
        """One sub-segment per series, sharing fields, predicates and aggregation."""
        return [replace(self, series=(s,)).render() for s in self.series]

    def columns(self) -> list[tuple[str, ScalarType]]:
        """Decode the {SF} part into (column, type) pairs."""
        if not self.fields:
            return []
        columns = []
        for item in self.fields.split(","):
            match = _COLUMN.fullmatch(item)
            if not match:
                raise ParseError(f"malformed column in segment: {item!r}")
            try:
                columns.append((unquote(match.group(1)), ScalarType(match.group(2))))
            except ValueError as e:
                raise ParseError(f"unknown column type in segment: {item!r}") from e
        return columns


def parse_series_key(key: str) -> tuple[str, dict[str, str]]:
    """Decode 'm.k1=v1,m.k2=v2' (or 'm.empty') into measurement and tags."""
    if "=" not in key:
        if not key.endswith(".empty") or "," in key:
            raise ParseError(f"malformed series key: {key!r}")
        return unquote(key[: -len(".empty")]), {}

    name = None
    tags = {}
    for pair in key.split(","):
        measurement, sep, rest = pair.partition(".")
        tag, eq, value = rest.partition("=")
        if not sep or not eq or not tag:
            raise ParseError(f"malformed series key: {key!r}")
        if name is not None and measurement != name:
            raise ParseError(f"mixed measurements in series key: {key!r}")
        name = measurement
        tags[unquote(tag)] = unquote(value)
    return unquote(name), tags


def parse_segment(segment: str) -> SegmentParts:
    """Parse a rendered segment or sub-segment back into its parts."""
    if not segment.startswith("{") or not segment.endswith("}"):
        raise ParseError(f"malformed segment: {segment!r}")

    parts = segment[1:-1].split("}#{")
    if len(parts) != 4:
        raise ParseError(f"segment must have 4 parts, got {len(parts)}: {segment!r}")

    sm, sf, sp, sg = parts
    if len(sm) < 2 or not sm.startswith("(") or not sm.endswith(")"):
        raise ParseError(f"malformed series part: {sm!r}")
    if sg.count(",") != 1:
        raise ParseError(f"malformed aggregation part: {sg!r}")
    return SegmentParts(series=tuple(sm[1:-1].split(")(")), fields=sf, predicates=sp, aggregation=sg)


class SegmentBuilder:
    """Derive semantic segments from a query and its result."""

    def __init__(self, parser: QueryParser | None = None, field_type: FieldTypeLookup | None = None):
        self._parser = parser or QueryParser()
        self._field_type = field_type
        logger.debug("SegmentBuilder initialized")

    @property
    def parser(self) -> QueryParser:
        return self._parser

    def build(self, query: str, result: Result) -> str:
        """Full semantic segment for a query result."""
        return self.parts(query, result).render()

    def split(self, query: str, result: Result) -> list[str]:
        """One sub-segment per table, in canonical table order."""
        return self.parts(query, result).split()

    def parts(self, query: str, result: Result) -> SegmentParts:
        if not result.tables:
            raise EmptyResultError()
        return self.parts_for(self._parser.parse(query), result)

    def parts_for(self, parsed: ParsedQuery, result: Result) -> SegmentParts:
        """Segment parts for an already parsed query."""
        if not result.tables:
            raise EmptyResultError()

        columns = result.column_types()
        measurements = list(dict.fromkeys(t.name for t in result.tables))
        fields = ",".join(
            f"{escape_token(column)}[{self._column_type(parsed, measurements, column, column_type)}]"
            for column, column_type in columns
        )

        parts = SegmentParts(
            series=tuple(t.series_key for t in result.tables),
            fields=fields,
            predicates=parsed.render_predicates(),
            aggregation=parsed.aggregation.render(),
        )
        logger.debug("Built segment for {} table(s): {}", len(parts.series), parts.render())
        return parts

    def _column_type(
        self,
        parsed: ParsedQuery,
        measurements: list[str],
        column: str,
        inferred: ScalarType | None,
    ) -> ScalarType:
        if inferred is not None:
            return inferred
        if column == "time":
            return ScalarType.INT64

        select = parsed.argument_of(column)
        if select is not None and select.function in _COUNTING:
            return ScalarType.INT64

        name = column
        if select is not None and select.argument not in (None, "*"):
            name = select.argument

        if self._field_type is not None:
            for measurement in measurements:
                looked_up = self._field_type(measurement, name)
                if looked_up is not None:
                    return looked_up

        logger.debug("No type for all-null column {}, assuming {}", column, ScalarType.FLOAT64)
        return ScalarType.FLOAT64
