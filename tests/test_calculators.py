"""
Tests for installment, tenure and maturity calculators
"""

from decimal import Decimal

from samiti.calculators import (
    UNBOUNDED, calculate_emi, calculate_flat_emi, deposit_monthly_interest, fd_maturity,
    flat_monthly_interest, rd_maturity_daily, rd_maturity_monthly, reducing_monthly_interest,
    solve_tenure
)


class TestEMI:
    """Test installment formulas"""
    
    def test_reducing_balance_emi(self):
        """Test the standard amortizing installment"""
        assert calculate_emi(Decimal('10000'), Decimal('12'), 12) == Decimal('888.49')
    
    def test_zero_rate(self):
        """Test that a zero rate splits the principal evenly"""
        assert calculate_emi(Decimal('1200'), Decimal('0'), 12) == Decimal('100.00')
    
    def test_flat_emi(self):
        """Test flat-rate installment on the original principal"""
        assert calculate_flat_emi(Decimal('12000'), Decimal('14'), 12) == Decimal('1140.00')
    
    def test_non_positive_term(self):
        """Test that a term of zero months is undefined"""
        assert calculate_emi(Decimal('10000'), Decimal('12'), 0) is None
        assert calculate_flat_emi(Decimal('10000'), Decimal('12'), -1) is None


class TestTenure:
    """Test reverse-solving the number of installments"""
    
    def test_solves_known_schedule(self):
        """Test that the EMI of a 12-month loan solves back to 12 months"""
        assert solve_tenure(Decimal('10000'), Decimal('12'), Decimal('888.49')) == Decimal('12.00')
    
    def test_unbounded_when_emi_only_covers_interest(self):
        """Test the sentinel for loans that never amortize"""
        assert solve_tenure(Decimal('10000'), Decimal('12'), Decimal('100')) is UNBOUNDED
        assert solve_tenure(Decimal('10000'), Decimal('12'), Decimal('50')) is UNBOUNDED
        assert repr(UNBOUNDED) == "UNBOUNDED"
    
    def test_degenerate_inputs(self):
        """Test non-positive EMI and principal"""
        assert solve_tenure(Decimal('10000'), Decimal('12'), Decimal('0')) is None
        assert solve_tenure(Decimal('0'), Decimal('12'), Decimal('100')) == Decimal('0')
        assert solve_tenure(Decimal('1000'), Decimal('0'), Decimal('300')) == Decimal('3.33')


class TestMaturity:
    """Test term deposit maturity quotes"""
    
    def test_fixed_deposit(self):
        """Test annual compounding"""
        quote = fd_maturity(Decimal('10000'), Decimal('10'), 24)
        assert quote.maturity_amount == Decimal('12100.00')
        assert quote.interest == Decimal('2100.00')
        assert quote.principal == Decimal('10000.00')
    
    def test_recurring_deposit_monthly(self):
        """Test the monthly installment formula"""
        quote = rd_maturity_monthly(Decimal('1000'), Decimal('7'), 12)
        assert quote.principal == Decimal('12000.00')
        assert quote.interest == Decimal('455.00')
        assert quote.maturity_amount == Decimal('12455.00')
    
    def test_recurring_deposit_daily(self):
        """Test the daily installment formula"""
        quote = rd_maturity_daily(Decimal('100'), Decimal('7.3'), 10)
        assert quote.principal == Decimal('1000.00')
        assert quote.interest == Decimal('1.10')
        assert quote.maturity_amount == Decimal('1001.10')


class TestMonthlyInterest:
    """Test one-month interest helpers"""
    
    def test_flat_interest_uses_original_principal(self):
        """Test flat loan interest"""
        assert flat_monthly_interest(Decimal('12000'), Decimal('14')) == Decimal('140.00')
    
    def test_reducing_interest(self):
        """Test reducing-balance loan interest"""
        assert reducing_monthly_interest(Decimal('10000'), Decimal('12')) == Decimal('100.00')
    
    def test_deposit_interest_rounds_half_up(self):
        """Test deposit interest rounding to paise"""
        assert deposit_monthly_interest(Decimal('1000'), Decimal('3.5')) == Decimal('2.92')
        assert deposit_monthly_interest(Decimal('600'), Decimal('1')) == Decimal('0.50')
