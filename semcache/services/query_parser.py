"""Query parser - InfluxQL SELECT statements into clauses and time windows."""

import re
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from loguru import logger

from semcache.errors import ParseError
from semcache.models import (
    EMPTY,
    Aggregation,
    Clause,
    Conjunction,
    Disjunction,
    Operator,
    ParsedQuery,
    Predicate,
    ScalarType,
    SelectField,
    TimeWindow,
)

_UNIT = r"(?:ns|us|µs|ms|u|µ|s|m|h|d|w)"

_NANOS = {
    "ns": 1,
    "u": 1_000,
    "µ": 1_000,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3_600 * 1_000_000_000,
    "d": 86_400 * 1_000_000_000,
    "w": 7 * 86_400 * 1_000_000_000,
}

_TOKEN_RE = re.compile(
    rf"""
    (?P<ws>\s+)
    |(?P<string>'(?:[^'\\]|\\.)*')
    |(?P<quoted>"(?:[^"\\]|\\.)*")
    |(?P<duration>(?:\d+{_UNIT})+(?![\w.]))
    |(?P<number>(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
    |(?P<cast>::\w+)
    |(?P<op>=~|!~|!=|<>|<=|>=|=|<|>)
    |(?P<punct>[(),;.])
    |(?P<arith>[+\-*/%])
    |(?P<ident>[^\W\d]\w*)
    """,
    re.VERBOSE,
)
_REGEX_RE = re.compile(r"/(?:[^/\\\n]|\\.)*/")
_DURATION_PART = re.compile(rf"(\d+)({_UNIT})")
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})"
    r"(?:[T ](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?)?"
    r"(Z|[+-]\d{2}:\d{2})?"
)
_ESCAPE = re.compile(r"\\(.)")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_KEYWORDS = {"SELECT", "INTO", "FROM", "WHERE", "GROUP", "ORDER", "LIMIT", "OFFSET", "SLIMIT", "SOFFSET", "FILL", "TZ"}
_AFTER_WHERE = {"GROUP BY", "ORDER BY", "LIMIT", "OFFSET", "SLIMIT", "SOFFSET", "FILL", "TZ"}
_MODIFIERS = ("LIMIT", "OFFSET", "SLIMIT", "SOFFSET")

_NUMERIC = ("int", "float", "duration")
_LITERAL_TYPES = {
    "string": ScalarType.STRING,
    "int": ScalarType.INT64,
    "duration": ScalarType.INT64,
    "float": ScalarType.FLOAT64,
    "bool": ScalarType.BOOL,
}


# =============================================================================
# Tokens
# =============================================================================


@dataclass(frozen=True)
class Token:
    """Lexical token with its source offsets."""

    kind: str
    text: str
    start: int
    end: int

    @property
    def upper(self) -> str:
        return self.text.upper() if self.kind == "ident" else ""


def _expects_regex(tokens: list[Token]) -> bool:
    if not tokens:
        return False
    last = tokens[-1]
    return (last.kind == "op" and last.text in ("=~", "!~")) or last.upper == "FROM"


def tokenize(query: str) -> list[Token]:
    """Split a statement into tokens, skipping whitespace."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(query):
        if query[pos] == "/" and _expects_regex(tokens):
            match = _REGEX_RE.match(query, pos)
            if not match:
                raise ParseError(f"unterminated regex at position {pos}")
            pattern = match.group()[1:-1].replace("\\/", "/")
            tokens.append(Token("regex", pattern, pos, match.end()))
            pos = match.end()
            continue

        match = _TOKEN_RE.match(query, pos)
        if not match:
            raise ParseError(f"unexpected character {query[pos]!r} at position {pos}")
        if match.lastgroup != "ws":
            tokens.append(Token(match.lastgroup, match.group(), pos, match.end()))
        pos = match.end()
    return tokens


def _unquote(text: str) -> str:
    return _ESCAPE.sub(r"\1", text[1:-1])


def _name(token: Token) -> str:
    if token.kind == "quoted":
        return _unquote(token.text)
    if token.kind == "ident":
        return token.text
    raise ParseError(f"expected identifier, got {token.text!r} at position {token.start}")


def _split_commas(tokens: list[Token]) -> list[list[Token]]:
    parts: list[list[Token]] = [[]]
    depth = 0
    for tok in tokens:
        if tok.text == "(":
            depth += 1
        elif tok.text == ")":
            depth -= 1
        if tok.text == "," and depth == 0:
            parts.append([])
        else:
            parts[-1].append(tok)
    return parts


# =============================================================================
# Literals
# =============================================================================


def parse_duration(text: str) -> int:
    """Duration literal (e.g. '1h30m') in nanoseconds."""
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(a + u for a, u in parts) != text:
        raise ParseError(f"invalid duration: {text!r}")
    return sum(int(amount) * _NANOS[unit] for amount, unit in parts)


def parse_time(text: str) -> int:
    """RFC3339 timestamp (up to nanosecond precision) in epoch nanoseconds."""
    match = _RFC3339.fullmatch(text.strip())
    if not match:
        raise ParseError(f"invalid time literal: {text!r}")

    year, month, day, hour, minute, second, fraction, zone = match.groups()
    if zone in (None, "Z"):
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))

    try:
        dt = datetime(int(year), int(month), int(day), int(hour or 0), int(minute or 0), int(second or 0), tzinfo=tz)
    except ValueError as e:
        raise ParseError(f"invalid time literal: {text!r}") from e

    delta = dt - _EPOCH
    seconds = delta.days * 86_400 + delta.seconds
    return seconds * 1_000_000_000 + int((fraction or "").ljust(9, "0"))


# =============================================================================
# Statement sections
# =============================================================================


@dataclass
class _Section:
    keyword: Token
    tokens: list[Token] = field(default_factory=list)


def split_sections(tokens: list[Token]) -> dict[str, _Section]:
    """Group tokens under their top-level keyword (SELECT, FROM, WHERE, ...)."""
    if tokens and tokens[-1].text == ";":
        tokens = tokens[:-1]
    if any(t.text == ";" for t in tokens):
        raise ParseError("multiple statements are not supported")
    if not tokens or tokens[0].upper != "SELECT":
        raise ParseError("only SELECT statements are supported")

    sections: dict[str, _Section] = {}
    current: _Section | None = None
    depth = 0
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.text == "(":
            depth += 1
        elif tok.text == ")":
            depth -= 1
            if depth < 0:
                raise ParseError(f"unbalanced ')' at position {tok.start}")

        if depth == 0 and tok.upper in _KEYWORDS:
            name = tok.upper
            if name in ("GROUP", "ORDER"):
                if i + 1 >= len(tokens) or tokens[i + 1].upper != "BY":
                    raise ParseError(f"expected BY after {name} at position {tok.start}")
                name = f"{name} BY"
                i += 1
            if name in sections:
                raise ParseError(f"duplicate {name} clause")
            current = sections[name] = _Section(tok)
        else:
            current.tokens.append(tok)
        i += 1

    if depth:
        raise ParseError("unbalanced '(' in query")
    return sections


# =============================================================================
# WHERE expression tree
# =============================================================================


class _Operand(NamedTuple):
    kind: str  # field, string, regex, int, float, bool, duration, time
    value: object


@dataclass(frozen=True)
class _Comparison:
    left: _Operand
    op: Operator
    right: _Operand


@dataclass(frozen=True)
class _And:
    terms: tuple


@dataclass(frozen=True)
class _Or:
    terms: tuple


def _negate(operand: _Operand) -> _Operand:
    if operand.kind not in _NUMERIC:
        raise ParseError(f"cannot negate {operand.kind} operand")
    return _Operand(operand.kind, -operand.value)


def _arith(left: _Operand, op: str, right: _Operand) -> _Operand:
    if left.kind == "string":
        left = _Operand("time", parse_time(left.value))
    if right.kind == "string":
        right = _Operand("time", parse_time(right.value))

    sign = 1 if op == "+" else -1
    if left.kind == "time" and right.kind in ("int", "duration"):
        return _Operand("time", left.value + sign * right.value)
    if right.kind == "time" and left.kind in ("int", "duration") and op == "+":
        return _Operand("time", left.value + right.value)
    if left.kind in _NUMERIC and right.kind in _NUMERIC:
        kinds = {left.kind, right.kind}
        kind = "float" if "float" in kinds else "duration" if "duration" in kinds else "int"
        return _Operand(kind, left.value + sign * right.value)
    raise ParseError(f"unsupported arithmetic: {left.kind} {op} {right.kind}")


class _ConditionParser:
    """Recursive descent over WHERE tokens: OR < AND < comparison."""

    def __init__(self, tokens: list[Token], now: Callable[[], int]):
        self._tokens = tokens
        self._pos = 0
        self._now = now

    def parse(self):
        if not self._tokens:
            raise ParseError("empty WHERE clause")
        node = self._or()
        if self._pos != len(self._tokens):
            tok = self._tokens[self._pos]
            raise ParseError(f"unexpected token {tok.text!r} at position {tok.start}")
        return node

    def _peek(self) -> Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> Token:
        tok = self._peek()
        if tok is None:
            raise ParseError("unexpected end of WHERE clause")
        self._pos += 1
        return tok

    def _expect(self, text: str) -> None:
        tok = self._next()
        if tok.text != text:
            raise ParseError(f"expected {text!r}, got {tok.text!r} at position {tok.start}")

    def _or(self):
        terms = [self._and()]
        while self._peek() is not None and self._peek().upper == "OR":
            self._pos += 1
            terms.append(self._and())
        return terms[0] if len(terms) == 1 else _Or(tuple(terms))

    def _and(self):
        terms = [self._condition()]
        while self._peek() is not None and self._peek().upper == "AND":
            self._pos += 1
            terms.append(self._condition())
        return terms[0] if len(terms) == 1 else _And(tuple(terms))

    def _condition(self):
        tok = self._peek()
        if tok is not None and tok.text == "(":
            self._pos += 1
            node = self._or()
            self._expect(")")
            return node

        left = self._operand()
        op_tok = self._next()
        if op_tok.kind != "op":
            raise ParseError(f"expected comparison operator, got {op_tok.text!r} at position {op_tok.start}")
        op = Operator("!=" if op_tok.text == "<>" else op_tok.text)
        right = self._operand()
        return _Comparison(left, op, right)

    def _operand(self) -> _Operand:
        value = self._signed()
        while True:
            tok = self._peek()
            if tok is None or tok.kind != "arith" or tok.text not in ("+", "-"):
                return value
            self._pos += 1
            value = _arith(value, tok.text, self._signed())

    def _signed(self) -> _Operand:
        tok = self._peek()
        if tok is not None and tok.kind == "arith" and tok.text in ("+", "-"):
            self._pos += 1
            operand = self._atom()
            return _negate(operand) if tok.text == "-" else operand
        return self._atom()

    def _atom(self) -> _Operand:
        tok = self._next()
        if tok.kind == "string":
            return _Operand("string", _unquote(tok.text))
        if tok.kind == "regex":
            return _Operand("regex", tok.text)
        if tok.kind == "duration":
            return _Operand("duration", parse_duration(tok.text))
        if tok.kind == "number":
            if tok.text.isdigit():
                return _Operand("int", int(tok.text))
            return _Operand("float", float(tok.text))
        if tok.kind == "quoted":
            return self._field(_unquote(tok.text))
        if tok.kind == "ident":
            if tok.upper in ("TRUE", "FALSE"):
                return _Operand("bool", tok.upper == "TRUE")
            nxt = self._peek()
            if tok.upper == "NOW" and nxt is not None and nxt.text == "(":
                self._pos += 1
                self._expect(")")
                return _Operand("time", self._now())
            return self._field(tok.text)
        raise ParseError(f"unexpected token {tok.text!r} at position {tok.start}")

    def _field(self, name: str) -> _Operand:
        tok = self._peek()
        if tok is not None and tok.kind == "cast":
            self._pos += 1
        return _Operand("field", name)


def _is_time(operand: _Operand) -> bool:
    return operand.kind == "field" and operand.value.lower() == "time"


def _time_value(operand: _Operand) -> int:
    if operand.kind == "string":
        return parse_time(operand.value)
    if operand.kind in ("int", "duration", "time"):
        return operand.value
    if operand.kind == "float":
        raise ParseError(f"time values must be integers, got {operand.value}")
    raise ParseError(f"cannot compare time with {operand.kind} operand")


def _bound(window: TimeWindow, op: Operator, value: int) -> TimeWindow:
    if op == Operator.GTE:
        return window.intersect(start=value)
    if op == Operator.GT:
        return window.intersect(start=value + 1)
    if op == Operator.LTE:
        return window.intersect(end=value)
    if op == Operator.LT:
        return window.intersect(end=value - 1)
    if op == Operator.EQ:
        return window.intersect(start=value, end=value)
    raise ParseError(f"unsupported operator on time: {op}")


def _clause(cmp: _Comparison) -> Clause:
    left, op, right = cmp.left, cmp.op, cmp.right
    if left.kind != "field":
        if right.kind != "field":
            raise ParseError(f"comparison without a field: {left.value!r} {op} {right.value!r}")
        left, right, op = right, left, op.mirrored()
    if right.kind == "field":
        raise ParseError(f"untyped literal: {left.value} {op} {right.value}")

    if op.is_regex:
        if right.kind != "regex":
            raise ParseError(f"{op} needs a regex literal for {left.value}")
        return Clause(left.value, op, right.value, ScalarType.STRING)
    if right.kind == "regex":
        raise ParseError(f"regex literal needs =~ or !~, got {op}")

    scalar_type = _LITERAL_TYPES.get(right.kind)
    if scalar_type is None:
        raise ParseError(f"untyped literal for {left.value}: {right.kind}")
    return Clause(left.value, op, right.value, scalar_type)


def _flatten(node, kind: type) -> list:
    if isinstance(node, kind):
        return [leaf for term in node.terms for leaf in _flatten(term, kind)]
    return [node]


def _nested(node) -> Predicate:
    """Lower a node that sits inside an OR."""
    if isinstance(node, _Or):
        return Disjunction(tuple(_nested(t) for t in _flatten(node, _Or)))
    if isinstance(node, _And):
        return Conjunction(tuple(_nested(t) for t in _flatten(node, _And)))
    if _is_time(node.left) or _is_time(node.right):
        raise ParseError("time conditions inside OR are not supported")
    return _clause(node)


# =============================================================================
# Parser
# =============================================================================


class QueryParser:
    """Parse SELECT statements into ParsedQuery structures."""

    def __init__(self, now: Callable[[], int] = time.time_ns):
        self._now = now

    def parse(self, query: str) -> ParsedQuery:
        """Parse a single SELECT statement."""
        sections = split_sections(tokenize(query))

        if "FROM" not in sections:
            raise ParseError("missing FROM clause")

        fields = self._fields(query, sections["SELECT"].tokens)
        measurements = self._sources(sections["FROM"].tokens)
        window, predicates = TimeWindow(), ()
        if "WHERE" in sections:
            window, predicates = self._where(sections["WHERE"].tokens)
        group_by, interval = ((), EMPTY)
        if "GROUP BY" in sections:
            group_by, interval = self._group_by(sections["GROUP BY"].tokens)

        functions = list(dict.fromkeys(f.function for f in fields if f.function))
        aggregation = Aggregation(function="|".join(functions) if functions else EMPTY, interval=interval)

        parsed = ParsedQuery(
            text=query,
            measurements=measurements,
            fields=fields,
            predicates=predicates,
            window=window,
            aggregation=aggregation,
            group_by=group_by,
            modifiers=tuple(m for m in _MODIFIERS if m in sections),
        )
        logger.debug(
            "Parsed query: {} predicate(s), window={}..{}, aggregation={}",
            len(predicates),
            window.start,
            window.end,
            aggregation.render(),
        )
        return parsed

    def _fields(self, query: str, tokens: list[Token]) -> tuple[SelectField, ...]:
        if not tokens:
            raise ParseError("empty SELECT list")

        fields = []
        for part in _split_commas(tokens):
            if not part:
                raise ParseError("empty field in SELECT list")
            alias = None
            if len(part) >= 3 and part[-2].upper == "AS":
                alias = _name(part[-1])
                part = part[:-2]

            expression = query[part[0].start : part[-1].end]
            if len(part) > 1 and part[0].kind == "ident" and part[1].text == "(":
                fields.append(SelectField(expression, part[0].text.lower(), self._argument(part[2:]), alias))
            else:
                fields.append(SelectField(expression, None, self._argument(part), alias))
        return tuple(fields)

    @staticmethod
    def _argument(tokens: list[Token]) -> str | None:
        for i, tok in enumerate(tokens):
            if tok.text == "*":
                return "*"
            if tok.kind == "quoted":
                return _unquote(tok.text)
            if tok.kind == "ident" and tok.upper != "DISTINCT":
                followed_by_call = i + 1 < len(tokens) and tokens[i + 1].text == "("
                if not followed_by_call:
                    return tok.text
        return None

    @staticmethod
    def _sources(tokens: list[Token]) -> tuple[str, ...]:
        if not tokens:
            raise ParseError("empty FROM clause")

        names = []
        for part in _split_commas(tokens):
            if any(t.text == "(" for t in part):
                raise ParseError("subqueries are not supported")
            components = [""]
            for tok in part:
                if tok.text == ".":
                    components.append("")
                elif tok.kind == "regex":
                    components[-1] = f"/{tok.text}/"
                elif tok.kind in ("ident", "quoted"):
                    components[-1] = _name(tok)
                else:
                    raise ParseError(f"unexpected token {tok.text!r} in FROM clause at position {tok.start}")
            if not components[-1]:
                raise ParseError("missing measurement name in FROM clause")
            names.append(components[-1])
        return tuple(names)

    def _where(self, tokens: list[Token]) -> tuple[TimeWindow, tuple[Predicate, ...]]:
        root = _ConditionParser(tokens, self._now).parse()

        window = TimeWindow()
        predicates: dict[str, Predicate] = {}
        for node in _flatten(root, _And):
            if isinstance(node, _Or):
                predicate = _nested(node)
            elif _is_time(node.left) or _is_time(node.right):
                left, op, right = node.left, node.op, node.right
                if not _is_time(left):
                    left, right, op = right, left, op.mirrored()
                window = _bound(window, op, _time_value(right))
                continue
            else:
                predicate = _clause(node)
            predicates.setdefault(predicate.render(), predicate)

        ordered = tuple(predicates[k] for k in sorted(predicates))
        return window, ordered

    @staticmethod
    def _group_by(tokens: list[Token]) -> tuple[tuple[str, ...], str]:
        tags = []
        interval = EMPTY
        for part in _split_commas(tokens):
            if not part:
                raise ParseError("empty GROUP BY element")
            head = part[0]
            if head.upper == "TIME" and len(part) > 1 and part[1].text == "(":
                if part[-1].text != ")":
                    raise ParseError(f"unterminated time() at position {head.start}")
                args = _split_commas(part[2:-1])
                if len(args[0]) != 1 or args[0][0].kind != "duration":
                    raise ParseError("GROUP BY time() needs a duration interval")
                interval = args[0][0].text.lower()
            elif len(part) == 1 and part[0].text == "*":
                tags.append("*")
            elif len(part) == 1:
                tags.append(_name(head))
            else:
                raise ParseError(f"unsupported GROUP BY element at position {head.start}")
        return tuple(tags), interval


# =============================================================================
# Rewriting
# =============================================================================


def _quote_ident(name: str) -> str:
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _quote_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def restrict_to_series(query: str, tag_sets: Iterable[Mapping[str, str]]) -> str:
    """Rewrite a query so it only returns the series with the given tag sets."""
    tag_sets = [dict(t) for t in tag_sets]
    if not tag_sets or any(not t for t in tag_sets):
        return query

    condition = " OR ".join(
        "(" + " AND ".join(f"{_quote_ident(k)} = {_quote_string(v)}" for k, v in sorted(tags.items())) + ")"
        for tags in tag_sets
    )

    tokens = tokenize(query)
    sections = split_sections(tokens)

    if "WHERE" in sections:
        body = sections["WHERE"].tokens
        if not body:
            raise ParseError("empty WHERE clause")
        start, stop = body[0].start, body[-1].end
        return f"{query[:start]}({query[start:stop]}) AND ({condition}){query[stop:]}"

    later = [s.keyword.start for name, s in sections.items() if name in _AFTER_WHERE]
    if later:
        at = min(later)
        return f"{query[:at].rstrip()} WHERE {condition} {query[at:]}"
    last = tokens[-2] if tokens[-1].text == ";" else tokens[-1]
    return f"{query[: last.end]} WHERE {condition}{query[last.end :]}"
