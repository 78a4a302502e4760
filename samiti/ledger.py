"""
Transaction Ledger Module

Applies transactions to accounts and replays histories. ``apply_transaction``
is a pure reducer (Account, Transaction) -> Account: it never persists and
never mutates its inputs, so the caller owns ordering and storage.

Callers posting withdrawals, fees or interest must also book the matching
society LedgerEntry (see bookkeeping.SocietyLedger); the two writes target
different collections, so this module does not do it for them.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from .dates import clamp_date
from .exceptions import InsufficientFunds, PolicyViolation
from .policy import OperationType, can_apply
from .products import AccountType
from .transactions import INTEREST, MATURITY_TRANSFER, Transaction, TransactionType

if TYPE_CHECKING:
    from .accounts import Account


def operation_for(transaction: Transaction) -> OperationType:
    """Policy operation a transaction represents"""
    if transaction.category == INTEREST:
        return OperationType.INTEREST
    if transaction.category == MATURITY_TRANSFER:
        return OperationType.CLOSURE
    if transaction.type == TransactionType.CREDIT:
        return OperationType.CREDIT
    return OperationType.DEBIT


def signed_amount(account_type: AccountType, transaction: Transaction) -> Decimal:
    """
    Balance delta of a transaction.
    
    Deposits grow on credit and shrink on debit. Loans carry the balance as
    outstanding debt, so the sign is inverted: repayment (credit) reduces it,
    disbursement and interest (debit) increase it.
    """
    delta = transaction.amount if transaction.is_credit else -transaction.amount
    if account_type == AccountType.LOAN:
        return -delta
    return delta


def apply_transaction(
    account: 'Account',
    transaction: Transaction,
    min_date: Optional[date] = None
) -> 'Account':
    """
    Apply a transaction to an account
    
    Args:
        account: Account to update (left untouched)
        transaction: Transaction to apply
        min_date: Minimum system date; earlier transaction dates are clamped
        
    Returns:
        Updated copy of the account, or the same account if a transaction
        with this id was already applied
        
    Raises:
        PolicyViolation: If the account's product or status denies the operation
        InsufficientFunds: If a deposit debit exceeds the balance
        ValueError: If the transaction belongs to another account
    """
    if any(existing.id == transaction.id for existing in account.transactions):
        return account
    
    if transaction.account_id != account.id:
        raise ValueError(
            f"Transaction {transaction.id} belongs to account {transaction.account_id}, not {account.id}"
        )
    
    decision = can_apply(account.account_type, operation_for(transaction), account.status)
    if not decision:
        raise PolicyViolation(decision.reason)
    
    clamped = clamp_date(transaction.date, min_date)
    if clamped != transaction.date:
        transaction = replace(transaction, date=clamped)
    
    new_balance = account.balance + signed_amount(account.account_type, transaction)
    if account.account_type != AccountType.LOAN and new_balance < Decimal('0'):
        raise InsufficientFunds(
            f"Insufficient funds: balance {account.balance}, requested {transaction.amount}"
        )
    
    return replace(
        account,
        balance=new_balance,
        transactions=[*account.transactions, transaction],
        updated_at=datetime.now(timezone.utc),
    )


def derive_balance(account: 'Account', opening_value: Decimal = Decimal('0')) -> Decimal:
    """Recompute the balance by replaying the account's full history"""
    balance = opening_value
    for transaction in account.transactions:
        balance += signed_amount(account.account_type, transaction)
    return balance


def is_consistent(account: 'Account') -> bool:
    """Check that the maintained balance matches a full replay"""
    return derive_balance(account) == account.balance
