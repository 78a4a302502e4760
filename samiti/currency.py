"""
Money Module

Rupee amounts with fixed two-decimal precision. Every balance, installment
and interest figure in the society is a Decimal; floats never appear in
monetary paths.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from typing import Union
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CURRENCY_CODE = "INR"
PRECISION = 2  # paise

_CURRENCY_PREFIX = re.compile(r'^\s*(?:rs\.?|inr|₹)\s*', re.IGNORECASE)


def round_amount(value: Union[Decimal, int, str]) -> Decimal:
    """Quantize an amount to paise using half-up rounding"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal('0.1') ** PRECISION, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """
    Display wrapper for a rupee amount, always rounded to paise.
    """
    amount: Decimal
    
    def __post_init__(self):
        object.__setattr__(self, 'amount', round_amount(self.amount))
    
    def to_string(self) -> str:
        """Format for display, e.g. ``INR 12,455.00``"""
        return f"{CURRENCY_CODE} {self.amount:,.{PRECISION}f}"


def decimal_from_string(value: Union[str, int, Decimal]) -> Decimal:
    """
    Safely convert spreadsheet text to Decimal
    
    Accepts rupee prefixes ("Rs.", "INR", "₹") and comma grouping in either
    western (1,000,000) or Indian (10,00,000) style. Commas are always
    treated as grouping separators.
    
    Args:
        value: Text or number to convert
        
    Returns:
        Decimal value
        
    Raises:
        ValueError: If the value cannot be converted to a finite Decimal
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")
    
    clean_value = _CURRENCY_PREFIX.sub('', value.strip())
    clean_value = clean_value.replace(',', '').replace(' ', '')
    if clean_value.startswith('(') and clean_value.endswith(')'):
        clean_value = '-' + clean_value[1:-1]
    
    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
    if not result.is_finite():
        raise ValueError(f"Cannot convert '{value}' to Decimal")
    return result
