"""Result codec - framed byte payloads stored in the cache."""

import re

from loguru import logger

from semcache.errors import CodecError, ParseError, ResultShapeError
from semcache.models import INT64_MAX, INT64_MIN, Result, ScalarType, Table
from semcache.models.cache import CRLF, LENGTH
from semcache.services.segment import SegmentBuilder, SegmentParts, parse_segment, parse_series_key

NULL = b"_"

_INT = re.compile(rb"-?\d+")
_FLOAT = re.compile(rb"-?(?:inf|nan|\d+(?:\.\d*)?(?:e[+-]?\d+)?)")
_DIGITS = re.compile(rb"\d+")


def _encode_value(value, scalar_type: ScalarType) -> bytes:
    if value is None:
        return NULL

    if scalar_type == ScalarType.STRING and isinstance(value, str):
        raw = value.encode("utf-8")
        return str(len(raw)).encode("ascii") + b":" + raw
    if scalar_type == ScalarType.BOOL and isinstance(value, bool):
        return b"true" if value else b"false"
    if isinstance(value, bool):
        raise CodecError(f"bool value in {scalar_type} column")
    if scalar_type == ScalarType.INT64 and isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise CodecError(f"integer out of int64 range: {value}")
        return str(value).encode("ascii")
    if scalar_type == ScalarType.FLOAT64 and isinstance(value, (int, float)):
        return repr(float(value)).encode("ascii")
    raise CodecError(f"{type(value).__name__} value in {scalar_type} column")


def _decode_value(body: bytes, pos: int, scalar_type: ScalarType):
    if body[pos : pos + 1] == NULL and body[pos + 1 : pos + 2] in (b" ", b"]"):
        return None, pos + 1

    if scalar_type == ScalarType.STRING:
        colon = body.find(b":", pos)
        if colon < 0 or not _DIGITS.fullmatch(body[pos:colon]):
            raise CodecError(f"malformed string length at offset {pos}")
        start = colon + 1
        end = start + int(body[pos:colon])
        if end > len(body):
            raise CodecError(f"truncated string value at offset {pos}")
        try:
            return body[start:end].decode("utf-8"), end
        except UnicodeDecodeError as e:
            raise CodecError(f"invalid utf-8 in string value at offset {pos}") from e

    end = pos
    while end < len(body) and body[end] not in b" ]":
        end += 1
    token = body[pos:end]

    if scalar_type == ScalarType.INT64 and _INT.fullmatch(token):
        value = int(token)
        if INT64_MIN <= value <= INT64_MAX:
            return value, end
    elif scalar_type == ScalarType.FLOAT64 and _FLOAT.fullmatch(token):
        return float(token), end
    elif scalar_type == ScalarType.BOOL and token in (b"true", b"false"):
        return token == b"true", end
    raise CodecError(f"invalid {scalar_type} value {token!r} at offset {pos}")


class ResultCodec:
    """Encode Results into framed blocks and back."""

    def __init__(self, builder: SegmentBuilder | None = None):
        self._builder = builder or SegmentBuilder()
        logger.debug("ResultCodec initialized")

    def encode(self, result: Result, query: str) -> bytes:
        """One block per table, in canonical order."""
        if result.error is not None:
            raise CodecError(f"cannot encode a result carrying an error: {result.error}")
        if not result.tables:
            return b""
        return self.encode_parts(self._builder.parts(query, result), result)

    def encode_parts(self, parts: SegmentParts, result: Result) -> bytes:
        """Encode with segment parts already derived for this result."""
        if result.error is not None:
            raise CodecError(f"cannot encode a result carrying an error: {result.error}")
        if not result.tables:
            return b""

        types = [t for _, t in parts.columns()]
        payload = bytearray()
        for segment, table in zip(parts.split(), result.tables, strict=True):
            payload += self._encode_block(segment, table, types)
        logger.debug("Encoded {} table(s) into {} bytes", len(result.tables), len(payload))
        return bytes(payload)

    @staticmethod
    def _encode_block(segment: str, table: Table, types: list[ScalarType]) -> bytes:
        if len(types) != len(table.columns):
            raise CodecError(f"{table.series_key}: {len(table.columns)} columns but {len(types)} types")

        rows = bytearray()
        for row in table.rows:
            rows += b"[" + b" ".join(_encode_value(v, t) for v, t in zip(row, types)) + b"]" + CRLF

        try:
            header = segment.encode("ascii")
        except UnicodeEncodeError as e:
            raise CodecError(f"non-ascii segment: {segment!r}") from e
        return header + b" " + LENGTH.pack(len(rows)) + CRLF + bytes(rows)

    def decode(self, payload: bytes) -> Result:
        """Rebuild a Result from concatenated blocks."""
        tables = []
        pos = 0
        while pos < len(payload):
            if payload[pos:] == CRLF:
                break

            space = payload.find(b" ", pos)
            if space < 0:
                raise CodecError(f"truncated block header at offset {pos}")
            try:
                segment = payload[pos:space].decode("ascii")
            except UnicodeDecodeError as e:
                raise CodecError(f"non-ascii block header at offset {pos}") from e

            length_at = space + 1
            body_start = length_at + LENGTH.size + len(CRLF)
            if body_start > len(payload):
                raise CodecError(f"truncated block header at offset {pos}")
            (length,) = LENGTH.unpack_from(payload, length_at)
            if payload[length_at + LENGTH.size : body_start] != CRLF:
                raise CodecError(f"missing CRLF after block header at offset {pos}")

            body_end = body_start + length
            if length < 0 or body_end > len(payload):
                raise CodecError(f"block declares {length} bytes, {len(payload) - body_start} available")

            tables.append(self._decode_block(segment, payload[body_start:body_end]))
            pos = body_end

        try:
            result = Result(tables=tuple(tables))
        except ResultShapeError as e:
            raise CodecError(f"decoded tables are inconsistent: {e.message}") from e
        logger.debug("Decoded {} table(s) from {} bytes", len(result.tables), len(payload))
        return result

    @staticmethod
    def _decode_block(segment: str, body: bytes) -> Table:
        try:
            parts = parse_segment(segment)
            if len(parts.series) != 1:
                raise CodecError(f"block header must name one series, got {len(parts.series)}")
            name, tags = parse_series_key(parts.series[0])
            columns = parts.columns()
        except ParseError as e:
            raise CodecError(f"bad block header: {e.message}") from e

        types = [t for _, t in columns]
        rows = []
        pos = 0
        while pos < len(body):
            if body[pos : pos + 1] != b"[":
                raise CodecError(f"expected '[' at offset {pos}")
            pos += 1
            values = []
            for i, scalar_type in enumerate(types):
                if i:
                    if body[pos : pos + 1] != b" ":
                        raise CodecError(f"expected ' ' at offset {pos}")
                    pos += 1
                value, pos = _decode_value(body, pos, scalar_type)
                values.append(value)
            if body[pos : pos + 3] != b"]" + CRLF:
                raise CodecError(f"expected end of row at offset {pos}")
            pos += 3
            rows.append(tuple(values))

        try:
            return Table(name=name, tags=tags, columns=tuple(c for c, _ in columns), rows=tuple(rows))
        except ResultShapeError as e:
            raise CodecError(f"decoded table is invalid: {e.message}") from e
