"""
Tests for flexible date parsing and clamping
"""

import pytest
from datetime import date

from samiti.dates import (
    add_months, clamp_date, expand_year, normalize_date, parse_flexible_date, to_date
)


MIN_DATE = date(2010, 1, 1)


class TestParseFlexibleDate:
    """Test accepted date layouts"""
    
    @pytest.mark.parametrize("text,expected", [
        ("2024-03-15", date(2024, 3, 15)),
        ("15/03/2024", date(2024, 3, 15)),
        ("15-03-2024", date(2024, 3, 15)),
        ("15.03.2024", date(2024, 3, 15)),
        ("05/04/24", date(2024, 4, 5)),
        ("03/15/2024", date(2024, 3, 15)),
        ("2024/03/15", date(2024, 3, 15)),
        ("1/2/75", date(1975, 2, 1)),
    ])
    def test_supported_layouts(self, text, expected):
        """Test ISO, day-first and month-first fallbacks"""
        assert parse_flexible_date(text) == expected
    
    @pytest.mark.parametrize("text", ["", "hello", "31/02/2024", "12/2024", "1/2/123"])
    def test_unparseable(self, text):
        """Test that invalid text yields None"""
        assert parse_flexible_date(text) is None
    
    def test_two_digit_year_pivot(self):
        """Test two-digit year expansion"""
        assert expand_year(50) == 2050
        assert expand_year(51) == 1951
        assert expand_year(2019) == 2019


class TestNormalizeDate:
    """Test normalization and clamping"""
    
    def test_clamps_to_minimum(self):
        """Test that early dates are clamped, not rejected"""
        assert normalize_date("01-01-2005", MIN_DATE) == "2010-01-01"
        assert normalize_date(date(1999, 5, 5), MIN_DATE) == "2010-01-01"
        assert clamp_date(date(2020, 5, 5), MIN_DATE) == date(2020, 5, 5)
    
    def test_passes_unparseable_text_through(self):
        """Test that garbage is returned unchanged for soft flagging"""
        assert normalize_date("not a date", MIN_DATE) == "not a date"
        assert to_date("not a date") is None
        assert normalize_date(None) is None
    
    def test_round_trip(self):
        """Test reading back a normalized value"""
        assert to_date(normalize_date("7/8/2021", MIN_DATE)) == date(2021, 8, 7)


class TestAddMonths:
    """Test calendar month arithmetic"""
    
    def test_pins_to_month_end(self):
        """Test shorter months pin the day"""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    
    def test_year_rollover(self):
        """Test crossing a year boundary"""
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
        assert add_months(date(2024, 1, 15), 120) == date(2034, 1, 15)
