"""Tests for the result model."""

import pytest

from semcache.errors import ResultShapeError
from semcache.models import Result, ScalarType, Table, escape_name, escape_token


class TestScalarType:
    def test_bool_is_not_int(self):
        assert ScalarType.of(True) == ScalarType.BOOL
        assert ScalarType.of(1) == ScalarType.INT64

    def test_null_has_no_type(self):
        assert ScalarType.of(None) is None

    def test_unsupported_value(self):
        with pytest.raises(ResultShapeError):
            ScalarType.of(b"bytes")


class TestTable:
    def test_tags_are_sorted(self):
        table = Table("cpu", tags={"b": "2", "a": "1"}, columns=("time",), rows=((1,),))
        assert list(table.tags) == ["a", "b"]

    def test_hashable(self):
        a = Table("cpu", tags={"b": "2", "a": "1"}, columns=("time", "v"), rows=((1, 2.0),))
        b = Table("cpu", tags={"a": "1", "b": "2"}, columns=("time", "v"), rows=((1, 2.0),))
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_row_width_checked(self):
        with pytest.raises(ResultShapeError):
            Table("cpu", columns=("time", "usage"), rows=((1,),))

    def test_int_and_float_widen(self):
        table = Table("cpu", columns=("time", "usage"), rows=((1, 2), (2, 2.5)))
        assert table.column_types == (ScalarType.INT64, ScalarType.FLOAT64)
        assert table.rows[0] == (1, 2.0)
        assert isinstance(table.rows[0][1], float)

    def test_conflicting_types(self):
        with pytest.raises(ResultShapeError, match="usage"):
            Table("cpu", columns=("time", "usage"), rows=((1, 2), (2, "high")))

    def test_nulls_allowed_anywhere(self):
        table = Table("cpu", columns=("time", "usage"), rows=((1, None), (2, 3.5)))
        assert table.column_types == (ScalarType.INT64, ScalarType.FLOAT64)

    def test_time_must_be_integer(self):
        with pytest.raises(ResultShapeError):
            Table("cpu", columns=("time", "usage"), rows=((1.5, 2),))

    def test_series_key_without_tags(self):
        assert Table("h2o_feet").series_key == "h2o_feet.empty"

    def test_series_key_with_tags(self):
        table = Table("h2o_quality", tags={"randtag": "1", "location": "coyote_creek"})
        assert table.series_key == "h2o_quality.location=coyote_creek,h2o_quality.randtag=1"

    def test_series_key_escapes_structural_characters(self):
        table = Table("cpu.load", tags={"host": "a b,(c)=#"})
        assert table.series_key == "cpu%2Eload.host=a%20b%2C%28c%29%3D%23"

    def test_time_range(self):
        table = Table("cpu", columns=("time", "v"), rows=((5, 1), (3, 1), (9, 1)))
        assert table.time_range() == (3, 9)
        assert Table("cpu", columns=("time",)).time_range() is None


class TestResult:
    def test_tables_in_canonical_order(self, quality_result):
        keys = [t.series_key for t in quality_result.tables]
        assert keys == sorted(keys)

    def test_equal_regardless_of_input_order(self, quality_result):
        assert Result(tables=tuple(reversed(quality_result.tables))) == quality_result

    def test_duplicate_series(self):
        table = Table("cpu", columns=("time",), rows=((1,),))
        with pytest.raises(ResultShapeError):
            Result(tables=(table, table))

    def test_empty(self):
        assert Result().is_empty
        assert Result(tables=(Table("cpu", columns=("time",)),)).is_empty

    def test_time_range_across_tables(self, quality_result):
        start, end = quality_result.time_range()
        assert end - start == 12 * 60 * 1_000_000_000

    def test_column_types(self, mixed_result):
        assert dict(mixed_result.column_types()) == {
            "time": ScalarType.INT64,
            "water_level": ScalarType.FLOAT64,
            "level description": ScalarType.STRING,
            "rising": ScalarType.BOOL,
            "samples": ScalarType.INT64,
        }

    def test_column_types_all_null(self):
        result = Result(tables=(Table("cpu", columns=("time", "v"), rows=((1, None),)),))
        assert result.column_types() == (("time", ScalarType.INT64), ("v", None))

    def test_column_mismatch(self):
        a = Table("cpu", tags={"host": "a"}, columns=("time", "v"))
        b = Table("cpu", tags={"host": "b"}, columns=("time", "w"))
        with pytest.raises(ResultShapeError):
            Result(tables=(a, b)).column_types()

    def test_ints_widen_across_tables(self):
        a = Table("cpu", tags={"host": "a"}, columns=("time", "v"), rows=((1, 2),))
        b = Table("cpu", tags={"host": "b"}, columns=("time", "v"), rows=((1, 2.5),))
        result = Result(tables=(a, b))
        assert result.tables[0].rows == ((1, 2.0),)
        assert dict(result.column_types())["v"] == ScalarType.FLOAT64


class TestEscaping:
    def test_token_keeps_unreserved(self):
        assert escape_token("water_level-1.5~") == "water_level-1.5~"

    def test_name_escapes_dot(self):
        assert escape_name("a.b") == "a%2Eb"
