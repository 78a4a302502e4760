"""
Society Bookkeeping Module

Society-wide income and expense entries, kept separately from per-account
transactions. Entries are booked as a side effect of registration fees,
account openings, manual postings and interest; they are not reconciled
against account balances.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from enum import Enum

from .config import SamitiConfig, get_config
from .ids import generate_id
from .products import AccountType, uses_flat_rate
from .storage import StorageInterface, StorageRecord, parse_date, parse_decimal
from .transactions import (
    Transaction, PaymentMethod, INTEREST, MEMBER_WITHDRAWAL, MEMBER_DEPOSIT,
    FEES_AND_FINES, LOAN_REPAYMENT, LOAN_DISBURSEMENT
)

if TYPE_CHECKING:
    from .accounts import Account
    from .members import Member


class LedgerEntryType(Enum):
    INCOME = "Income"
    EXPENSE = "Expense"


# Ledger categories
ADMISSION_FEES = "Admission Fees & Deposits"
MEMBER_DEPOSITS = "Member Deposits"
LOAN_PROCESSING_FEES = "Loan Processing Fees"
INTEREST_PAID = "Interest Paid"
INTEREST_INCOME = "Interest Income"

# Transaction category -> (entry type, ledger category) for manual postings
_POSTING_CATEGORIES = {
    MEMBER_WITHDRAWAL: (LedgerEntryType.EXPENSE, MEMBER_WITHDRAWAL),
    MEMBER_DEPOSIT: (LedgerEntryType.INCOME, MEMBER_DEPOSIT),
    FEES_AND_FINES: (LedgerEntryType.INCOME, FEES_AND_FINES),
    LOAN_REPAYMENT: (LedgerEntryType.INCOME, LOAN_REPAYMENT),
    LOAN_DISBURSEMENT: (LedgerEntryType.EXPENSE, LOAN_DISBURSEMENT),
}


@dataclass
class LedgerEntry(StorageRecord):
    """One line of the society's cash book"""
    date: date
    description: str
    amount: Decimal
    type: LedgerEntryType
    category: str
    payment_method: PaymentMethod = PaymentMethod.CASH
    cash_amount: Optional[Decimal] = None
    online_amount: Optional[Decimal] = None
    reference_id: Optional[str] = None  # Transaction or member that caused the entry
    
    def __post_init__(self):
        if self.amount <= Decimal('0'):
            raise ValueError("Ledger entry amount must be positive")
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        return cls(
            **cls._base_kwargs(data),
            date=parse_date(data['date']),
            description=data['description'],
            amount=Decimal(data['amount']),
            type=LedgerEntryType(data['type']),
            category=data['category'],
            payment_method=PaymentMethod(data.get('payment_method', PaymentMethod.CASH.value)),
            cash_amount=parse_decimal(data.get('cash_amount')),
            online_amount=parse_decimal(data.get('online_amount')),
            reference_id=data.get('reference_id'),
        )


def _entry(entry_id: str, entry_date: date, description: str, amount: Decimal,
           entry_type: LedgerEntryType, category: str, reference_id: Optional[str] = None,
           transaction: Optional[Transaction] = None) -> LedgerEntry:
    now = datetime.now(timezone.utc)
    return LedgerEntry(
        id=entry_id,
        created_at=now,
        updated_at=now,
        date=entry_date,
        description=description,
        amount=amount,
        type=entry_type,
        category=category,
        payment_method=transaction.payment_method if transaction else PaymentMethod.CASH,
        cash_amount=transaction.cash_amount if transaction else None,
        online_amount=transaction.online_amount if transaction else None,
        reference_id=reference_id,
    )


class SocietyLedger:
    """
    Builds and stores society-wide ledger entries
    
    Entry ids are derived from the causing transaction or member, so
    re-booking the same event overwrites rather than duplicates.
    """
    
    def __init__(self, storage: StorageInterface, config: Optional[SamitiConfig] = None):
        self.storage = storage
        self.config = config or get_config()
        self.entries_table = "ledger_entries"
    
    def entry_for_transaction(self, account: 'Account', transaction: Transaction) -> Optional[LedgerEntry]:
        """
        Ledger entry a posted transaction obliges, if any
        
        Opening balances and maturity transfers are internal movements and
        produce no entry here.
        """
        if transaction.category == INTEREST:
            if account.account_type == AccountType.LOAN:
                entry_type, category = LedgerEntryType.INCOME, INTEREST_INCOME
            else:
                entry_type, category = LedgerEntryType.EXPENSE, INTEREST_PAID
        elif transaction.category in _POSTING_CATEGORIES:
            entry_type, category = _POSTING_CATEGORIES[transaction.category]
        else:
            return None
        
        description = transaction.description or f"{category} - {account.account_number}"
        return _entry(f"LDG-{transaction.id}", transaction.date, description,
                      transaction.amount, entry_type, category,
                      reference_id=transaction.id, transaction=transaction)
    
    def opening_entries(self, account: 'Account', transaction: Optional[Transaction]) -> List[LedgerEntry]:
        """Entries booked when an account is opened through the front desk"""
        entries = []
        if transaction is not None:
            if account.account_type == AccountType.LOAN:
                entries.append(_entry(
                    f"LDG-{transaction.id}", transaction.date,
                    f"Loan Disbursement - {account.account_number}", transaction.amount,
                    LedgerEntryType.EXPENSE, LOAN_DISBURSEMENT,
                    reference_id=transaction.id, transaction=transaction
                ))
            else:
                entries.append(_entry(
                    f"LDG-{transaction.id}", transaction.date,
                    f"Account Opening - {account.account_number}", transaction.amount,
                    LedgerEntryType.INCOME, MEMBER_DEPOSITS,
                    reference_id=transaction.id, transaction=transaction
                ))
        
        if account.account_type == AccountType.LOAN and uses_flat_rate(account.loan_type):
            fee = self.config.loan_processing_fee
            if fee > Decimal('0'):
                entries.append(_entry(
                    f"LDG-{account.id}-FEE", account.opening_date,
                    f"Loan Processing Fees - {account.account_number}", fee,
                    LedgerEntryType.INCOME, LOAN_PROCESSING_FEES, reference_id=account.id
                ))
        return entries
    
    def registration_entry(self, member: 'Member') -> Optional[LedgerEntry]:
        """Admission fees and initial deposits collected at registration; None when nothing is due"""
        total = self.config.total_registration_fees
        if total <= Decimal('0'):
            return None
        return _entry(
            f"LDG-REG-{member.id}", member.join_date,
            f"New Registration - {member.full_name}",
            total,
            LedgerEntryType.INCOME, ADMISSION_FEES, reference_id=member.id
        )
    
    def manual_entry(self, entry_date: date, description: str, amount: Decimal,
                     entry_type: LedgerEntryType, category: str) -> LedgerEntry:
        """Book a free-standing entry (office expenses, grants, ...)"""
        entry = _entry(generate_id("LDG"), entry_date, description, amount, entry_type, category)
        self.record(entry)
        return entry
    
    def record(self, entry: LedgerEntry) -> None:
        self.storage.save(self.entries_table, entry.id, entry.to_dict())
    
    def record_many(self, entries: Iterable[LedgerEntry]) -> int:
        return self.storage.save_many(self.entries_table, [e.to_dict() for e in entries])
    
    def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        data = self.storage.load(self.entries_table, entry_id)
        return LedgerEntry.from_dict(data) if data else None
    
    def list_entries(self, start: Optional[date] = None, end: Optional[date] = None) -> List[LedgerEntry]:
        """Entries in date order, optionally limited to an inclusive range"""
        entries = [LedgerEntry.from_dict(d) for d in self.storage.load_all(self.entries_table)]
        if start:
            entries = [e for e in entries if e.date >= start]
        if end:
            entries = [e for e in entries if e.date <= end]
        entries.sort(key=lambda e: (e.date, e.id))
        return entries
    
    def summarize(self, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, Decimal]:
        """Income, expense and net totals for a period"""
        income = expense = Decimal('0')
        for entry in self.list_entries(start, end):
            if entry.type == LedgerEntryType.INCOME:
                income += entry.amount
            else:
                expense += entry.amount
        return {"income": income, "expense": expense, "net": income - expense}
