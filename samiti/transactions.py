"""
Transaction Module

Per-account transactions. A transaction id is globally unique and doubles
as the idempotency key: applying or persisting the same id twice has no
further effect.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .ids import generate_id
from .storage import StorageRecord, parse_date, parse_decimal


class TransactionType(Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class PaymentMethod(Enum):
    CASH = "Cash"
    ONLINE = "Online"
    BOTH = "Both"


# Transaction categories
OPENING_BALANCE = "Opening Balance"
LOAN_DISBURSEMENT = "Loan Disbursement"
LOAN_REPAYMENT = "Loan Repayment"
MEMBER_DEPOSIT = "Member Deposit"
MEMBER_WITHDRAWAL = "Member Withdrawal"
FEES_AND_FINES = "Fees & Fines"
MATURITY_TRANSFER = "Maturity Transfer"
MATURITY_CREDIT = "Maturity Credit"
INTEREST = "Interest"  # Reserved: consumed by the accrual engine and repair tooling


@dataclass
class Transaction(StorageRecord):
    """A single credit or debit against one account"""
    account_id: str
    date: date
    amount: Decimal
    type: TransactionType
    category: str
    description: str = ""
    payment_method: PaymentMethod = PaymentMethod.CASH
    cash_amount: Optional[Decimal] = None
    online_amount: Optional[Decimal] = None
    utr_number: Optional[str] = None
    
    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))
        if self.amount <= Decimal('0'):
            raise ValueError("Transaction amount must be positive")
        
        if self.payment_method == PaymentMethod.BOTH:
            if self.cash_amount is None or self.online_amount is None:
                raise ValueError("Split payment requires both cash and online amounts")
            if self.cash_amount + self.online_amount != self.amount:
                raise ValueError("Cash and online amounts must add up to the transaction amount")
    
    @property
    def is_credit(self) -> bool:
        return self.type == TransactionType.CREDIT
    
    @property
    def is_interest(self) -> bool:
        return self.category == INTEREST
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            **cls._base_kwargs(data),
            account_id=data['account_id'],
            date=parse_date(data['date']),
            amount=Decimal(data['amount']),
            type=TransactionType(data['type']),
            category=data['category'],
            description=data.get('description', ""),
            payment_method=PaymentMethod(data.get('payment_method', PaymentMethod.CASH.value)),
            cash_amount=parse_decimal(data.get('cash_amount')),
            online_amount=parse_decimal(data.get('online_amount')),
            utr_number=data.get('utr_number'),
        )


def new_transaction(
    account_id: str,
    transaction_type: TransactionType,
    amount: Decimal,
    txn_date: date,
    category: str,
    description: str = "",
    transaction_id: Optional[str] = None,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    cash_amount: Optional[Decimal] = None,
    online_amount: Optional[Decimal] = None,
    utr_number: Optional[str] = None
) -> Transaction:
    """Create a transaction, generating a ``TX-<ms>-<rand>`` id when none is given"""
    now = datetime.now(timezone.utc)
    return Transaction(
        id=transaction_id or generate_id("TX", now=now),
        created_at=now,
        updated_at=now,
        account_id=account_id,
        date=txn_date,
        amount=amount,
        type=transaction_type,
        category=category,
        description=description,
        payment_method=payment_method,
        cash_amount=cash_amount,
        online_amount=online_amount,
        utr_number=utr_number,
    )


def categorize(is_loan_account: bool, transaction_type: TransactionType, description: str = "") -> str:
    """
    Category for a manually posted transaction
    
    Descriptions mentioning a fine or fee are booked as fees regardless of
    the account; otherwise the category follows the account kind and
    direction.
    """
    lowered = description.lower()
    if "fine" in lowered or "fee" in lowered:
        return FEES_AND_FINES
    if is_loan_account:
        return LOAN_REPAYMENT if transaction_type == TransactionType.CREDIT else LOAN_DISBURSEMENT
    return MEMBER_DEPOSIT if transaction_type == TransactionType.CREDIT else MEMBER_WITHDRAWAL
