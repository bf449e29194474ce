"""Tests for utility functions."""

import math

import pytest

from job_monitor.utils import finite, parse_time_range, safe_int


class TestSafeInt:

    def test_valid(self):
        assert safe_int("42") == 42
        assert safe_int(7) == 7

    def test_invalid(self):
        assert safe_int("abc") is None
        assert safe_int("", default=0) == 0
        assert safe_int(None, default=-1) == -1


class TestParseTimeRange:

    def test_valid(self):
        assert parse_time_range("1649723812-1649763839") == (1649723812, 1649763839)

    @pytest.mark.parametrize("value", ["", "123", "1-2-3", "a-b"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_time_range(value)


def test_finite():
    assert list(finite([1, None, math.nan, 2.5])) == [1.0, 2.5]
