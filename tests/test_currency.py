"""
Test suite for currency module

Tests Money rounding and display, and lenient parsing of spreadsheet
amounts. All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from samiti.currency import Money, round_amount, decimal_from_string


class TestMoney:
    """Test Money class operations"""
    
    def test_money_rounds_to_paise(self):
        """Test automatic half-up rounding to two decimals"""
        assert Money(Decimal('100.555')).amount == Decimal('100.56')
        assert Money(Decimal('100.554')).amount == Decimal('100.55')
    
    def test_to_string(self):
        """Test display formatting with grouping"""
        assert Money(Decimal('12455')).to_string() == "INR 12,455.00"


class TestRoundAmount:
    """Test amount rounding"""
    
    def test_half_up(self):
        """Test that exact halves round away from zero"""
        assert round_amount(Decimal('0.005')) == Decimal('0.01')
        assert round_amount('2.675') == Decimal('2.68')
    
    def test_integer_input(self):
        """Test rounding of whole numbers"""
        assert round_amount(5) == Decimal('5.00')


class TestDecimalFromString:
    """Test parsing of spreadsheet amounts"""
    
    def test_plain_numbers(self):
        """Test plain decimal text"""
        assert decimal_from_string("1234.56") == Decimal('1234.56')
        assert decimal_from_string(" 42 ") == Decimal('42')
    
    def test_grouping_and_prefixes(self):
        """Test comma grouping and rupee prefixes"""
        assert decimal_from_string("1,00,000") == Decimal('100000')
        assert decimal_from_string("1,000,000") == Decimal('1000000')
        assert decimal_from_string("Rs. 500") == Decimal('500')
        assert decimal_from_string("₹1,200.50") == Decimal('1200.50')
        assert decimal_from_string("INR 75") == Decimal('75')
    
    def test_parenthesised_negative(self):
        """Test accounting-style negatives"""
        assert decimal_from_string("(250)") == Decimal('-250')
    
    def test_passthrough(self):
        """Test Decimal and int inputs"""
        assert decimal_from_string(Decimal('3.5')) == Decimal('3.5')
        assert decimal_from_string(12) == Decimal('12')
    
    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity", "12..5"])
    def test_invalid_values(self, value):
        """Test that unusable text raises ValueError"""
        with pytest.raises(ValueError):
            decimal_from_string(value)
