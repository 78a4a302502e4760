"""
Account Type Policy Module

Static rules deciding which operations each product accepts, combined with
the account's lifecycle status. Every transaction applied to an account is
checked here first.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .products import AccountType, AccountStatus, SINGLETON_TYPES


class OperationType(Enum):
    """Kinds of balance-changing operations"""
    CREDIT = "credit"
    DEBIT = "debit"
    INTEREST = "interest"
    CLOSURE = "closure"  # Paired payout transfer on FD/RD maturity or early closure


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a permission check; truthy when allowed"""
    allowed: bool
    reason: Optional[str] = None
    
    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = PolicyDecision(True)

_C, _D, _I, _X = (OperationType.CREDIT, OperationType.DEBIT,
                  OperationType.INTEREST, OperationType.CLOSURE)

# FD takes its single principal at creation, never afterwards.
# RD and CD never pay out except through closure.
PERMISSIONS = {
    AccountType.SHARE_CAPITAL: frozenset({_C, _D}),
    AccountType.COMPULSORY_DEPOSIT: frozenset({_C, _I}),
    AccountType.OPTIONAL_DEPOSIT: frozenset({_C, _D, _I}),
    AccountType.FIXED_DEPOSIT: frozenset({_I, _X}),
    AccountType.RECURRING_DEPOSIT: frozenset({_C, _I, _X}),
    AccountType.LOAN: frozenset({_C, _D, _I}),
}

_STATUS_PERMISSIONS = {
    AccountStatus.PENDING: frozenset(),
    AccountStatus.ACTIVE: frozenset(OperationType),
    AccountStatus.DORMANT: frozenset({_C, _I}),
    AccountStatus.MATURED: frozenset(),
    AccountStatus.CLOSED: frozenset(),
}

_DENIAL_MESSAGES = {
    (AccountType.FIXED_DEPOSIT, _C): "Fixed Deposit accepts its principal only at creation",
    (AccountType.FIXED_DEPOSIT, _D): "Fixed Deposit cannot be debited before maturity or closure",
    (AccountType.RECURRING_DEPOSIT, _D): "Recurring Deposit does not allow withdrawals",
    (AccountType.COMPULSORY_DEPOSIT, _D): "Compulsory Deposit does not allow withdrawals",
    (AccountType.SHARE_CAPITAL, _I): "Share Capital does not accrue interest",
}


def can_apply(
    account_type: AccountType,
    operation: OperationType,
    status: AccountStatus = AccountStatus.ACTIVE
) -> PolicyDecision:
    """
    Check whether an operation is permitted on an account
    
    Args:
        account_type: Product of the account
        operation: Operation being attempted
        status: Current lifecycle status of the account
        
    Returns:
        PolicyDecision, with a human-readable reason when denied
    """
    if operation not in PERMISSIONS[account_type]:
        reason = _DENIAL_MESSAGES.get(
            (account_type, operation),
            f"{account_type.value} does not permit {operation.value}"
        )
        return PolicyDecision(False, reason)
    
    if operation not in _STATUS_PERMISSIONS[status]:
        if status == AccountStatus.PENDING:
            return PolicyDecision(False, "Account is pending approval")
        return PolicyDecision(False, f"{status.value} account does not permit {operation.value}")
    
    return ALLOWED


def is_singleton(account_type: AccountType) -> bool:
    """Check if a member may hold at most one account of this type"""
    return account_type in SINGLETON_TYPES


def selectable_account_types(held: Iterable[AccountType]) -> List[AccountType]:
    """
    Account types a member may still open, given the types already held
    
    Singleton types already held are filtered out; multi-instance types
    always remain.
    """
    held = set(held)
    return [t for t in AccountType if not (is_singleton(t) and t in held)]
