"""
Product Catalogue Module

Account products offered by the society, their lifecycle states, and the
per-product defaults applied at opening: account code, interest rate and
term. Rates and terms come from configuration.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from .config import SamitiConfig, get_config


class AccountType(Enum):
    """Society account products"""
    SHARE_CAPITAL = "Share Capital"
    COMPULSORY_DEPOSIT = "Compulsory Deposit"
    OPTIONAL_DEPOSIT = "Optional Deposit"
    FIXED_DEPOSIT = "Fixed Deposit"
    RECURRING_DEPOSIT = "Recurring Deposit"
    LOAN = "Loan"


class LoanType(Enum):
    """Loan sub-categories"""
    HOME = "Home"
    PERSONAL = "Personal"
    GOLD = "Gold"
    AGRICULTURE = "Agriculture"
    VEHICLE = "Vehicle"
    EMERGENCY = "Emergency"


class AccountStatus(Enum):
    """Account lifecycle states"""
    PENDING = "Pending"    # Loan awaiting approval
    ACTIVE = "Active"
    DORMANT = "Dormant"    # Owner suspended or administratively parked
    MATURED = "Matured"    # FD/RD paid out at maturity or early closure
    CLOSED = "Closed"


class RDFrequency(Enum):
    """Recurring deposit installment frequency"""
    MONTHLY = "Monthly"
    DAILY = "Daily"


SINGLETON_TYPES = frozenset({
    AccountType.SHARE_CAPITAL,
    AccountType.COMPULSORY_DEPOSIT,
    AccountType.OPTIONAL_DEPOSIT,
})

TERM_DEPOSIT_TYPES = frozenset({
    AccountType.FIXED_DEPOSIT,
    AccountType.RECURRING_DEPOSIT,
})

# Loan sub-categories whose interest is charged on the original principal
# rather than the declining balance.
FLAT_RATE_LOAN_TYPES = frozenset({LoanType.EMERGENCY})

_ACCOUNT_CODES = {
    AccountType.SHARE_CAPITAL: "SHR",
    AccountType.COMPULSORY_DEPOSIT: "CD",
    AccountType.OPTIONAL_DEPOSIT: "ODP",
    AccountType.FIXED_DEPOSIT: "FD",
    AccountType.RECURRING_DEPOSIT: "RD",
}

_LOAN_CODES = {
    LoanType.HOME: "HL",
    LoanType.PERSONAL: "PL",
    LoanType.GOLD: "GL",
    LoanType.AGRICULTURE: "AL",
    LoanType.VEHICLE: "VL",
    LoanType.EMERGENCY: "EL",
}


def is_loan(account_type: AccountType) -> bool:
    return account_type == AccountType.LOAN


def uses_flat_rate(loan_type: Optional[LoanType]) -> bool:
    """Check if a loan sub-category is charged flat-rate interest"""
    return loan_type in FLAT_RATE_LOAN_TYPES


def account_code(account_type: AccountType, loan_type: Optional[LoanType] = None) -> str:
    """Short product code used in account ids and account numbers"""
    if account_type == AccountType.LOAN:
        return _LOAN_CODES[loan_type or LoanType.PERSONAL]
    return _ACCOUNT_CODES[account_type]


def default_interest_rate(
    account_type: AccountType,
    loan_type: Optional[LoanType] = None,
    config: Optional[SamitiConfig] = None
) -> Decimal:
    """Default annual rate (percent) for a product"""
    config = config or get_config()
    if account_type == AccountType.LOAN:
        loan_type = loan_type or LoanType.PERSONAL
        return getattr(config, f"rate_{loan_type.name.lower()}_loan")
    return getattr(config, f"rate_{account_type.name.lower()}")


def default_term_months(
    account_type: AccountType,
    loan_type: Optional[LoanType] = None,
    config: Optional[SamitiConfig] = None
) -> Optional[int]:
    """Default term in months, or None for open-ended products"""
    config = config or get_config()
    if account_type == AccountType.LOAN:
        loan_type = loan_type or LoanType.PERSONAL
        return getattr(config, f"term_{loan_type.name.lower()}_loan")
    if account_type in TERM_DEPOSIT_TYPES:
        return getattr(config, f"term_{account_type.name.lower()}")
    return None


def match_account_type(text: str) -> Optional[AccountType]:
    """
    Map free-form product text to an account type by keyword.
    
    Returns None when no keyword matches.
    """
    lowered = text.lower()
    if "share" in lowered:
        return AccountType.SHARE_CAPITAL
    if "compulsory" in lowered:
        return AccountType.COMPULSORY_DEPOSIT
    if "fixed" in lowered:
        return AccountType.FIXED_DEPOSIT
    if "recurring" in lowered:
        return AccountType.RECURRING_DEPOSIT
    if "loan" in lowered:
        return AccountType.LOAN
    if "optional" in lowered or "saving" in lowered:
        return AccountType.OPTIONAL_DEPOSIT
    return None


def match_loan_type(text: str) -> Optional[LoanType]:
    lowered = text.lower()
    for loan_type in LoanType:
        if loan_type.value.lower() in lowered:
            return loan_type
    return None
