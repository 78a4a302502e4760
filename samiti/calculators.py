"""
Financial Calculators Module

Pure Decimal formulas for installments, maturity values and monthly
interest. Rates are annual percentages (12 means 12% p.a.). Degenerate
inputs never raise: an undefined result is ``None`` and a loan that can
never amortize is the ``UNBOUNDED`` sentinel.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Optional, Union

from .currency import round_amount

ZERO = Decimal('0')
ONE = Decimal('1')
MONTHS_PER_YEAR = Decimal('12')


class Unbounded:
    """Sentinel for a tenure that never ends (EMI at or below interest-only)"""
    _instance = None
    
    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance
    
    def __repr__(self) -> str:
        return "UNBOUNDED"


UNBOUNDED = Unbounded()


@dataclass(frozen=True)
class MaturityQuote:
    """Projected payout of a term deposit"""
    principal: Decimal
    interest: Decimal
    maturity_amount: Decimal


def monthly_rate(annual_rate: Decimal) -> Decimal:
    """Convert an annual percentage to a monthly fraction (R/1200)"""
    return Decimal(annual_rate) / Decimal('1200')


def calculate_emi(principal: Decimal, annual_rate: Decimal, term_months: int) -> Optional[Decimal]:
    """
    Reducing-balance EMI: P·r·(1+r)^n / ((1+r)^n − 1)
    
    Args:
        principal: Loan amount
        annual_rate: Annual interest rate in percent
        term_months: Number of monthly installments
        
    Returns:
        Installment rounded to paise, or None when the term is not positive
    """
    if term_months <= 0:
        return None
    principal = Decimal(principal)
    r = monthly_rate(annual_rate)
    if r == ZERO:
        return round_amount(principal / term_months)
    
    factor = (ONE + r) ** term_months
    return round_amount(principal * r * factor / (factor - ONE))


def calculate_flat_emi(principal: Decimal, annual_rate: Decimal, term_months: int) -> Optional[Decimal]:
    """Flat-rate EMI: (P + P·R/100·years) / n"""
    if term_months <= 0:
        return None
    principal = Decimal(principal)
    years = Decimal(term_months) / MONTHS_PER_YEAR
    total_payable = principal + principal * Decimal(annual_rate) / Decimal('100') * years
    return round_amount(total_payable / term_months)


def solve_tenure(principal: Decimal, annual_rate: Decimal, emi: Decimal) -> Union[Decimal, Unbounded, None]:
    """
    Reverse-solve the number of months needed to repay a loan at a given EMI
    
    n = ln(E / (E − P·r)) / ln(1 + r)
    
    Returns:
        Tenure in months (two decimals; round up for a whole installment
        count), UNBOUNDED when the EMI does not exceed the monthly interest,
        or None when the EMI is not positive
    """
    principal = Decimal(principal)
    emi = Decimal(emi)
    if emi <= ZERO:
        return None
    if principal <= ZERO:
        return ZERO
    
    r = monthly_rate(annual_rate)
    if r == ZERO:
        return round_amount(principal / emi)
    
    interest_only = principal * r
    if emi <= interest_only:
        return UNBOUNDED
    
    months = (emi / (emi - interest_only)).ln() / (ONE + r).ln()
    return round_amount(months)


def fd_maturity(principal: Decimal, annual_rate: Decimal, term_months: int) -> MaturityQuote:
    """Fixed deposit maturity with annual compounding: A = P·(1 + R/100)^years"""
    principal = Decimal(principal)
    years = Decimal(term_months) / MONTHS_PER_YEAR
    growth = ONE + Decimal(annual_rate) / Decimal('100')
    if years == years.to_integral_value():
        amount = principal * growth ** int(years)
    else:
        amount = principal * growth ** years
    amount = round_amount(amount)
    return MaturityQuote(round_amount(principal), amount - round_amount(principal), amount)


def rd_maturity_monthly(installment: Decimal, annual_rate: Decimal, installments: int) -> MaturityQuote:
    """Monthly recurring deposit: total = P·n + P·(n(n+1)/2)·(R/1200)"""
    installment = Decimal(installment)
    n = Decimal(installments)
    principal = installment * n
    interest = installment * (n * (n + ONE) / Decimal('2')) * (Decimal(annual_rate) / Decimal('1200'))
    return MaturityQuote(round_amount(principal), round_amount(interest),
                         round_amount(principal + interest))


def rd_maturity_daily(installment: Decimal, annual_rate: Decimal, days: int) -> MaturityQuote:
    """Daily recurring deposit: total = P·days + P·(days(days+1)/2)·(R/36500)"""
    installment = Decimal(installment)
    d = Decimal(days)
    principal = installment * d
    interest = installment * (d * (d + ONE) / Decimal('2')) * (Decimal(annual_rate) / Decimal('36500'))
    return MaturityQuote(round_amount(principal), round_amount(interest),
                         round_amount(principal + interest))


def flat_monthly_interest(original_principal: Decimal, annual_rate: Decimal) -> Decimal:
    """Flat-rate loan interest for one month, always on the original principal"""
    return round_amount(Decimal(original_principal) * Decimal(annual_rate) / Decimal('100') / MONTHS_PER_YEAR)


def reducing_monthly_interest(balance: Decimal, annual_rate: Decimal) -> Decimal:
    """Reducing-balance interest for one month on the current balance"""
    return round_amount(Decimal(balance) * Decimal(annual_rate) / Decimal('100') / MONTHS_PER_YEAR)


def deposit_monthly_interest(balance: Decimal, annual_rate: Decimal) -> Decimal:
    """Simple monthly deposit interest: balance·R/1200"""
    return round_amount(Decimal(balance) * monthly_rate(annual_rate))
