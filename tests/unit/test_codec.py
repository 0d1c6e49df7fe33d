"""Tests for the result codec."""

import pytest

from semcache.errors import CodecError
from semcache.models import Result, Table
from semcache.models.cache import LENGTH
from semcache.services.codec import ResultCodec

QUALITY_QUERY = "SELECT index FROM h2o_quality WHERE randtag='2' GROUP BY location"


@pytest.fixture
def codec():
    return ResultCodec()


class TestRoundTrip:
    def test_single_table_without_tags(self, codec, feet_result):
        payload = codec.encode(feet_result, "SELECT water_level FROM h2o_feet")
        assert codec.decode(payload) == feet_result

    def test_multiple_tables(self, codec, quality_result):
        decoded = codec.decode(codec.encode(quality_result, QUALITY_QUERY))
        assert decoded == quality_result
        assert [t.tags["location"] for t in decoded.tables] == ["coyote_creek", "santa_monica"]

    def test_all_types_and_delimiters(self, codec, mixed_result):
        decoded = codec.decode(codec.encode(mixed_result, "SELECT * FROM h2o_feet"))
        assert decoded == mixed_result
        row = decoded.tables[0].rows[1]
        assert row[2] == "line\r\nbreak ] [x] \n"
        assert isinstance(decoded.tables[0].rows[0][4], int)
        assert decoded.tables[0].rows[3][2] == "_"

    def test_nulls(self, codec, mixed_result):
        decoded = codec.decode(codec.encode(mixed_result, "SELECT * FROM h2o_feet"))
        assert decoded.tables[0].rows[2] == (mixed_result.tables[0].rows[2][0], None, "", None, None)

    def test_empty(self, codec):
        assert codec.encode(Result(), "SELECT v FROM m") == b""
        assert codec.decode(b"") == Result()

    def test_trailing_crlf_tolerated(self, codec, feet_result):
        payload = codec.encode(feet_result, "SELECT water_level FROM h2o_feet")
        assert codec.decode(payload + b"\r\n") == feet_result


class TestFraming:
    def test_block_header(self, codec, feet_result):
        payload = codec.encode(feet_result, "SELECT water_level FROM h2o_feet")
        header, _, _ = payload.partition(b" ")
        assert header == b"{(h2o_feet.empty)}#{time[int64],water_level[float64]}#{}#{empty,empty}"

        length_at = len(header) + 1
        (length,) = LENGTH.unpack_from(payload, length_at)
        assert payload[length_at + 8 : length_at + 10] == b"\r\n"
        assert length == len(payload) - length_at - 10

    def test_one_block_per_table(self, codec, quality_result):
        payload = codec.encode(quality_result, QUALITY_QUERY)
        assert payload.count(b"{(h2o_quality.") == 2

    def test_row_layout(self, codec):
        result = Result(tables=(Table("m", columns=("time", "s", "b"), rows=((1, "ab", True),)),))
        payload = codec.encode(result, "SELECT s, b FROM m")
        assert payload.endswith(b"[1 2:ab true]\r\n")


class TestErrors:
    def test_truncated(self, codec, quality_result):
        payload = codec.encode(quality_result, QUALITY_QUERY)
        with pytest.raises(CodecError):
            codec.decode(payload[:-5])

    def test_garbage(self, codec):
        with pytest.raises(CodecError):
            codec.decode(b"not a block at all")

    def test_bad_value(self, codec, feet_result):
        payload = codec.encode(feet_result, "SELECT water_level FROM h2o_feet")
        with pytest.raises(CodecError):
            codec.decode(payload.replace(b"8.12", b"8x12"))

    def test_integer_out_of_range(self, codec):
        result = Result(tables=(Table("m", columns=("time", "v"), rows=((1, 2**64),)),))
        with pytest.raises(CodecError):
            codec.encode(result, "SELECT v FROM m")

    def test_result_with_error_is_rejected(self, codec, feet_result):
        failed = Result(tables=feet_result.tables, error="partial")
        with pytest.raises(CodecError, match="partial"):
            codec.encode(failed, "SELECT water_level FROM h2o_feet")


class TestLengthField:
    # 3327 and 8213 chars give row-data lengths 0x0D0A and 0x2020.
    @pytest.mark.parametrize(("size", "marker"), [(3327, b"\r\n"), (8213, b"  ")])
    def test_terminator_bytes_in_length(self, codec, size, marker):
        result = Result(tables=(Table("m", columns=("time", "s"), rows=((1, "x" * size),)),))
        payload = codec.encode(result, "SELECT s FROM m")

        length_at = payload.index(b" ") + 1
        assert payload[length_at + 6 : length_at + 8] == marker
        assert codec.decode(payload) == result
