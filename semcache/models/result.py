"""Result model - named, tagged tables of typed rows."""

from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import quote

from semcache.errors import ResultShapeError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

Value = int | float | str | bool | None


class ScalarType(StrEnum):
    """Scalar types a column can hold."""

    INT64 = "int64"
    FLOAT64 = "float64"
    STRING = "string"
    BOOL = "bool"

    @classmethod
    def of(cls, value: Value) -> "ScalarType | None":
        """Infer the type tag of a Python scalar; None has no type."""
        if value is None:
            return None
        if isinstance(value, bool):
            return cls.BOOL
        if isinstance(value, int):
            return cls.INT64
        if isinstance(value, float):
            return cls.FLOAT64
        if isinstance(value, str):
            return cls.STRING
        raise ResultShapeError(f"unsupported value type: {type(value).__name__}")


def unify(a: ScalarType | None, b: ScalarType | None) -> ScalarType | None:
    """Combine two column types; int64 and float64 widen to float64."""
    if a is None:
        return b
    if b is None or a == b:
        return a
    if {a, b} == {ScalarType.INT64, ScalarType.FLOAT64}:
        return ScalarType.FLOAT64
    raise ResultShapeError(f"conflicting column types: {a} and {b}")


def escape_token(text: str) -> str:
    """Percent-encode everything outside the unreserved URL alphabet."""
    return quote(text, safe="")


def escape_name(text: str) -> str:
    """Escape a measurement name; '.' separates it from tag pairs."""
    return escape_token(text).replace(".", "%2E")


@dataclass(frozen=True)
class Table:
    """One series: measurement name, tag set, columns and rows."""

    name: str
    tags: dict[str, str] = field(default_factory=dict)
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Value, ...], ...] = ()
    column_types: tuple[ScalarType | None, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        columns = tuple(self.columns)
        width = len(columns)

        rows = []
        for row in self.rows:
            row = tuple(row)
            if len(row) != width:
                raise ResultShapeError(f"{self.name}: row has {len(row)} values, expected {width}")
            rows.append(row)

        types = []
        for i, column in enumerate(columns):
            column_type = None
            try:
                for row in rows:
                    column_type = unify(column_type, ScalarType.of(row[i]))
            except ResultShapeError as e:
                raise ResultShapeError(f"{self.name}.{column}: {e.message}") from e
            types.append(column_type)

        if columns and columns[0] == "time" and types[0] not in (None, ScalarType.INT64):
            raise ResultShapeError(f"{self.name}: time column must hold integer timestamps, got {types[0]}")

        widened = {i for i, t in enumerate(types) if t == ScalarType.FLOAT64}
        if widened:
            rows = [
                tuple(float(v) if i in widened and isinstance(v, int) else v for i, v in enumerate(row))
                for row in rows
            ]

        object.__setattr__(self, "tags", {str(k): str(v) for k, v in sorted(self.tags.items())})
        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "rows", tuple(rows))
        object.__setattr__(self, "column_types", tuple(types))

    def __hash__(self):
        return hash((self.name, tuple(self.tags.items()), self.columns, self.rows))

    @property
    def series_key(self) -> str:
        """Measurement + canonical tag pairs, e.g. 'h2o.location=coyote_creek'."""
        name = escape_name(self.name)
        if not self.tags:
            return f"{name}.empty"
        pairs = sorted(f"{name}.{escape_token(k)}={escape_token(v)}" for k, v in self.tags.items())
        return ",".join(pairs)

    def time_range(self) -> tuple[int, int] | None:
        """Min and max timestamp of the rows (first column)."""
        stamps = [row[0] for row in self.rows if row and row[0] is not None]
        if not stamps:
            return None
        return min(stamps), max(stamps)

    def with_rows(self, rows) -> "Table":
        """Same series with a different row set."""
        return Table(name=self.name, tags=self.tags, columns=self.columns, rows=tuple(rows))


def _widen(tables: tuple[Table, ...]) -> tuple[Table, ...]:
    """Convert int columns to float where another table holds floats."""
    if len(tables) < 2 or any(t.columns != tables[0].columns for t in tables):
        return tables

    widened = set()
    for i in range(len(tables[0].columns)):
        seen = {t.column_types[i] for t in tables}
        if ScalarType.FLOAT64 in seen and ScalarType.INT64 in seen:
            widened.add(i)
    if not widened:
        return tables

    out = []
    for table in tables:
        if any(table.column_types[i] == ScalarType.INT64 for i in widened):
            table = table.with_rows(
                tuple(float(v) if i in widened and isinstance(v, int) else v for i, v in enumerate(row))
                for row in table.rows
            )
        out.append(table)
    return tuple(out)


@dataclass(frozen=True)
class Result:
    """Query outcome: tables in canonical order plus an optional error."""

    tables: tuple[Table, ...] = ()
    error: str | None = None

    def __post_init__(self):
        tables = tuple(sorted(self.tables, key=lambda t: t.series_key))
        for prev, cur in zip(tables, tables[1:]):
            if prev.series_key == cur.series_key:
                raise ResultShapeError(f"duplicate series in result: {cur.series_key}")
        object.__setattr__(self, "tables", _widen(tables))

    @property
    def is_empty(self) -> bool:
        return not any(t.rows for t in self.tables)

    @property
    def row_count(self) -> int:
        return sum(len(t.rows) for t in self.tables)

    def time_range(self) -> tuple[int, int] | None:
        """Min and max timestamp across all tables."""
        ranges = [r for r in (t.time_range() for t in self.tables) if r is not None]
        if not ranges:
            return None
        return min(r[0] for r in ranges), max(r[1] for r in ranges)

    def column_types(self) -> tuple[tuple[str, ScalarType | None], ...]:
        """Shared column list with one merged type per column."""
        if not self.tables:
            return ()

        columns = self.tables[0].columns
        for table in self.tables[1:]:
            if table.columns != columns:
                raise ResultShapeError(
                    f"tables disagree on columns: {list(columns)} vs {list(table.columns)} ({table.series_key})"
                )

        types: list[ScalarType | None] = [None] * len(columns)
        for table in self.tables:
            for i, column_type in enumerate(table.column_types):
                try:
                    types[i] = unify(types[i], column_type)
                except ResultShapeError as e:
                    raise ResultShapeError(f"column {columns[i]}: {e.message}") from e
        return tuple(zip(columns, types))
