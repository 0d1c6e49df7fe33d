"""Query models - parsed filter clauses, aggregation and time window."""

from dataclasses import dataclass, field
from enum import StrEnum

from semcache.models.result import ScalarType, escape_token

# Bounds InfluxDB accepts for a time range.
MIN_TIME = -9223372036854775806
MAX_TIME = 9223372036854775806

EMPTY = "empty"


class Operator(StrEnum):
    """Comparison operators allowed in a WHERE clause."""

    EQ = "="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    MATCH = "=~"
    NOT_MATCH = "!~"

    @property
    def is_regex(self) -> bool:
        return self in (Operator.MATCH, Operator.NOT_MATCH)

    def mirrored(self) -> "Operator":
        """Operator to use when the two operands swap sides."""
        return _MIRRORED.get(self, self)


_MIRRORED = {
    Operator.LT: Operator.GT,
    Operator.LTE: Operator.GTE,
    Operator.GT: Operator.LT,
    Operator.GTE: Operator.LTE,
}


@dataclass(frozen=True)
class Clause:
    """A single typed comparison: field op literal."""

    field: str
    op: Operator
    value: int | float | str | bool
    type: ScalarType

    def render(self) -> str:
        return f"{escape_token(self.field)}{self.op}{self.literal()}[{self.type}]"

    def literal(self) -> str:
        if self.op.is_regex:
            return f"/{escape_token(str(self.value))}/"
        if self.type == ScalarType.STRING:
            return f"'{escape_token(str(self.value))}'"
        if self.type == ScalarType.BOOL:
            return "true" if self.value else "false"
        if self.type == ScalarType.FLOAT64:
            return repr(float(self.value))
        return str(self.value)


def _term(predicate: "Predicate") -> str:
    if isinstance(predicate, Clause):
        return predicate.render()
    return f"({predicate.render()})"


@dataclass(frozen=True)
class Conjunction:
    """Clauses joined by AND inside an OR."""

    terms: tuple["Predicate", ...]

    def render(self) -> str:
        return "&".join(sorted(_term(t) for t in self.terms))


@dataclass(frozen=True)
class Disjunction:
    """Clauses joined by OR; kept as one predicate."""

    terms: tuple["Predicate", ...]

    def render(self) -> str:
        return "|".join(sorted(_term(t) for t in self.terms))


Predicate = Clause | Conjunction | Disjunction


@dataclass(frozen=True)
class Aggregation:
    """Aggregate function(s) and GROUP BY time interval."""

    function: str = EMPTY
    interval: str = EMPTY

    @property
    def is_empty(self) -> bool:
        return self.function == EMPTY and self.interval == EMPTY

    def render(self) -> str:
        return f"{self.function},{self.interval}"


@dataclass(frozen=True)
class TimeWindow:
    """Closed nanosecond interval requested by the WHERE clause."""

    start: int = MIN_TIME
    end: int = MAX_TIME

    @property
    def is_empty(self) -> bool:
        return self.start > self.end

    def intersect(self, start: int | None = None, end: int | None = None) -> "TimeWindow":
        """Narrow the window with an extra lower and/or upper bound."""
        return TimeWindow(
            start=self.start if start is None else max(self.start, start),
            end=self.end if end is None else min(self.end, end),
        )


@dataclass(frozen=True)
class SelectField:
    """One entry of the SELECT list."""

    expression: str
    function: str | None = None
    argument: str | None = None
    alias: str | None = None

    @property
    def name(self) -> str:
        """Column name InfluxDB gives this field in the result."""
        if self.alias:
            return self.alias
        if self.function:
            return self.function
        return self.argument or self.expression


@dataclass(frozen=True)
class ParsedQuery:
    """Structured view of a SELECT statement."""

    text: str
    measurements: tuple[str, ...] = ()
    fields: tuple[SelectField, ...] = ()
    predicates: tuple[Predicate, ...] = ()
    window: TimeWindow = field(default_factory=TimeWindow)
    aggregation: Aggregation = field(default_factory=Aggregation)
    group_by: tuple[str, ...] = ()
    modifiers: tuple[str, ...] = ()

    @property
    def is_paginated(self) -> bool:
        """LIMIT/OFFSET style clauses truncate the result."""
        return bool(self.modifiers)

    def render_predicates(self) -> str:
        """Sorted, parenthesised predicate set, e.g. '(a>1[int64])(b='x'[string])'."""
        return "".join(f"({p})" for p in sorted(p.render() for p in self.predicates))

    def argument_of(self, column: str) -> SelectField | None:
        """Select field producing the given result column."""
        for select in self.fields:
            if select.name == column:
                return select
        return None
