"""
Account Management Module

Member accounts across all society products: opening with product defaults,
posting transactions through the ledger reducer, administrative status
transitions, and the paired payout transfer made when a Fixed or Recurring
Deposit matures or is closed early.
"""

from decimal import Decimal
from datetime import date, datetime, timedelta, timezone
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .audit import AuditTrail, AuditEventType
from .bookkeeping import SocietyLedger
from .calculators import calculate_emi, calculate_flat_emi
from .config import SamitiConfig, get_config
from .currency import Money
from .dates import add_months, clamp_date
from .exceptions import LinkageError, PolicyViolation
from .ids import generate_id
from .ledger import apply_transaction
from .logging_config import get_logger, log_action
from .policy import OperationType, can_apply, is_singleton
from .products import (
    AccountType, AccountStatus, LoanType, RDFrequency, TERM_DEPOSIT_TYPES,
    account_code, default_interest_rate, default_term_months, uses_flat_rate
)
from .storage import StorageInterface, StorageRecord, parse_date, parse_decimal
from .transactions import (
    Transaction, TransactionType, PaymentMethod, OPENING_BALANCE, LOAN_DISBURSEMENT,
    MATURITY_TRANSFER, MATURITY_CREDIT, categorize, new_transaction
)

MAX_GUARANTORS = 2

# Administrative status transitions
_TRANSITIONS = {
    AccountStatus.PENDING: {AccountStatus.ACTIVE, AccountStatus.CLOSED},
    AccountStatus.ACTIVE: {AccountStatus.DORMANT, AccountStatus.CLOSED, AccountStatus.MATURED},
    AccountStatus.DORMANT: {AccountStatus.ACTIVE, AccountStatus.CLOSED},
    AccountStatus.MATURED: {AccountStatus.CLOSED},
    AccountStatus.CLOSED: set(),
}


@dataclass
class Account(StorageRecord):
    """
    A member's account in one society product.

    ``balance`` is a signed magnitude: money held for deposit products,
    outstanding debt for loans. ``original_amount`` and ``initial_amount``
    are the principal basis for EMI and maturity formulas and never change
    after opening.
    """
    member_id: str
    account_type: AccountType
    account_number: str
    status: AccountStatus
    balance: Decimal
    interest_rate: Decimal  # Percent per annum
    original_amount: Decimal
    initial_amount: Decimal
    opening_date: Optional[date]
    loan_type: Optional[LoanType] = None
    term_months: Optional[int] = None
    tenure_days: Optional[int] = None
    rd_frequency: Optional[RDFrequency] = None
    emi: Optional[Decimal] = None
    maturity_date: Optional[date] = None
    maturity_processed: bool = False
    last_interest_post_date: Optional[date] = None  # Accrual watermark
    guarantors: List[str] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)

    TRANSIENT_FIELDS = ('transactions',)

    def __post_init__(self):
        if self.account_type == AccountType.LOAN:
            if len(self.guarantors) > MAX_GUARANTORS:
                raise ValueError(f"A loan can have at most {MAX_GUARANTORS} guarantors")
        else:
            if self.loan_type is not None:
                raise ValueError("Loan type is only valid for loan accounts")
            if self.guarantors:
                raise ValueError("Guarantors are only valid for loan accounts")

        if self.rd_frequency is not None and self.account_type != AccountType.RECURRING_DEPOSIT:
            raise ValueError("Installment frequency is only valid for recurring deposits")

    @property
    def is_loan(self) -> bool:
        return self.account_type == AccountType.LOAN

    @property
    def is_term_deposit(self) -> bool:
        return self.account_type in TERM_DEPOSIT_TYPES

    @property
    def uses_flat_rate(self) -> bool:
        return self.is_loan and uses_flat_rate(self.loan_type)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], transactions: Optional[List[Transaction]] = None) -> 'Account':
        return cls(
            **cls._base_kwargs(data),
            member_id=data['member_id'],
            account_type=AccountType(data['account_type']),
            account_number=data['account_number'],
            status=AccountStatus(data['status']),
            balance=Decimal(data['balance']),
            interest_rate=Decimal(data['interest_rate']),
            original_amount=Decimal(data['original_amount']),
            initial_amount=Decimal(data['initial_amount']),
            opening_date=parse_date(data.get('opening_date')),
            loan_type=LoanType(data['loan_type']) if data.get('loan_type') else None,
            term_months=data.get('term_months'),
            tenure_days=data.get('tenure_days'),
            rd_frequency=RDFrequency(data['rd_frequency']) if data.get('rd_frequency') else None,
            emi=parse_decimal(data.get('emi')),
            maturity_date=parse_date(data.get('maturity_date')),
            maturity_processed=data.get('maturity_processed', False),
            last_interest_post_date=parse_date(data.get('last_interest_post_date')),
            guarantors=list(data.get('guarantors') or []),
            transactions=list(transactions or []),
        )


def build_account(
    member_id: str,
    account_type: AccountType,
    amount: Decimal = Decimal('0'),
    opening_date: Optional[date] = None,
    loan_type: Optional[LoanType] = None,
    interest_rate: Optional[Decimal] = None,
    term_months: Optional[int] = None,
    tenure_days: Optional[int] = None,
    rd_frequency: Optional[RDFrequency] = None,
    guarantors: Optional[List[str]] = None,
    status: AccountStatus = AccountStatus.ACTIVE,
    series: int = 1,
    account_id: Optional[str] = None,
    opening_transaction_id: Optional[str] = None,
    opening_description: Optional[str] = None,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    utr_number: Optional[str] = None,
    config: Optional[SamitiConfig] = None
) -> Account:
    """
    Construct a new account with its opening transaction

    Opening is construction, not application: the opening transaction is
    placed in the history directly so that Pending loans and Fixed Deposits
    can carry their principal. Nothing is persisted.

    Args:
        member_id: Owning member
        account_type: Product to open
        amount: Opening deposit, RD installment, or loan principal
        opening_date: Opening date (today when omitted), clamped to the minimum system date
        loan_type: Loan sub-category (loans only; Personal when omitted)
        interest_rate: Annual rate override in percent
        term_months: Term override in months
        tenure_days: Tenure in days (daily recurring deposits)
        rd_frequency: Installment frequency (recurring deposits only)
        guarantors: Guarantor member ids (loans only, at most two)
        status: Initial status
        series: Per-member sequence for this product code
        account_id: Explicit id (generated when omitted)
        opening_transaction_id: Explicit opening transaction id
        opening_description: Description for the opening transaction

    Returns:
        Unsaved Account
    """
    config = config or get_config()
    amount = Decimal(amount)
    if amount < Decimal('0'):
        raise ValueError("Opening amount cannot be negative")

    if account_type == AccountType.LOAN:
        loan_type = loan_type or LoanType.PERSONAL
    if account_type == AccountType.RECURRING_DEPOSIT:
        rd_frequency = rd_frequency or RDFrequency.MONTHLY

    code = account_code(account_type, loan_type)
    rate = interest_rate if interest_rate is not None else default_interest_rate(account_type, loan_type, config)
    if term_months is None and tenure_days is None:
        term_months = default_term_months(account_type, loan_type, config)

    opened = clamp_date(opening_date or date.today(), config.min_system_date)

    emi = None
    if account_type == AccountType.LOAN and amount > Decimal('0') and term_months:
        if uses_flat_rate(loan_type):
            emi = calculate_flat_emi(amount, rate, term_months)
        else:
            emi = calculate_emi(amount, rate, term_months)
    elif account_type == AccountType.RECURRING_DEPOSIT:
        emi = amount

    maturity_date = None
    if account_type in TERM_DEPOSIT_TYPES:
        if tenure_days:
            maturity_date = opened + timedelta(days=tenure_days)
        elif term_months:
            maturity_date = add_months(opened, term_months)

    now = datetime.now(timezone.utc)
    account_id = account_id or generate_id("ACC", member_id, code, now=now)

    transactions = []
    if amount > Decimal('0'):
        if account_type == AccountType.LOAN:
            txn_type, category = TransactionType.DEBIT, LOAN_DISBURSEMENT
            description = opening_description or f"New {loan_type.value} Loan"
        else:
            txn_type, category = TransactionType.CREDIT, OPENING_BALANCE
            description = opening_description or "Initial Deposit"
        transactions.append(new_transaction(
            account_id, txn_type, amount, opened, category, description,
            transaction_id=opening_transaction_id,
            payment_method=payment_method, utr_number=utr_number
        ))

    return Account(
        id=account_id,
        created_at=now,
        updated_at=now,
        member_id=member_id,
        account_type=account_type,
        account_number=f"{member_id}-{code}-{series}",
        status=status,
        balance=amount,
        interest_rate=Decimal(rate),
        original_amount=amount,
        initial_amount=amount,
        opening_date=opened,
        loan_type=loan_type,
        term_months=term_months,
        tenure_days=tenure_days,
        rd_frequency=rd_frequency,
        emi=emi,
        maturity_date=maturity_date,
        guarantors=list(guarantors or []),
        transactions=transactions,
    )


class AccountManager:
    """
    Manages account lifecycle and persistence
    """

    def __init__(
        self,
        storage: StorageInterface,
        society_ledger: SocietyLedger,
        audit_trail: AuditTrail,
        config: Optional[SamitiConfig] = None
    ):
        self.storage = storage
        self.society_ledger = society_ledger
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.accounts_table = "accounts"
        self.transactions_table = "transactions"
        self.members_table = "members"
        self.logger = get_logger("samiti.accounts")

    # Persistence

    def get_account(self, account_id: str) -> Optional[Account]:
        """Load an account together with its transaction history"""
        data = self.storage.load(self.accounts_table, account_id)
        if not data:
            return None
        return Account.from_dict(data, self._load_transactions(account_id))

    def find_by_account_number(self, account_number: str) -> Optional[Account]:
        matches = self.storage.find(self.accounts_table, {"account_number": account_number})
        if not matches:
            return None
        return Account.from_dict(matches[0], self._load_transactions(matches[0]['id']))

    def get_member_accounts(self, member_id: str) -> List[Account]:
        records = self.storage.find(self.accounts_table, {"member_id": member_id})
        accounts = [Account.from_dict(d, self._load_transactions(d['id'])) for d in records]
        accounts.sort(key=lambda a: (a.opening_date or date.min, a.account_number))
        return accounts

    def list_accounts(self) -> List[Account]:
        """All accounts with their histories"""
        histories: Dict[str, List[Transaction]] = {}
        for data in self.storage.load_all(self.transactions_table):
            txn = Transaction.from_dict(data)
            histories.setdefault(txn.account_id, []).append(txn)
        accounts = []
        for data in self.storage.load_all(self.accounts_table):
            history = sorted(histories.get(data['id'], []), key=lambda t: (t.date, t.created_at))
            accounts.append(Account.from_dict(data, history))
        return accounts

    def save_account(self, account: Account) -> None:
        """Upsert an account and its transactions"""
        self.save_accounts([account])

    def save_accounts(self, accounts: Iterable[Account]) -> None:
        """
        Batch upsert accounts and their transactions

        Raises:
            ValueError: If an account's principal basis differs from the stored one
        """
        accounts = list(accounts)
        for account in accounts:
            stored = self.storage.load(self.accounts_table, account.id)
            if stored and Decimal(stored['original_amount']) != account.original_amount:
                raise ValueError(f"Original amount of account {account.id} cannot change")

        self.storage.save_many(self.accounts_table, [a.to_dict() for a in accounts])
        self.storage.save_many(
            self.transactions_table,
            [t.to_dict() for a in accounts for t in a.transactions]
        )

    def record_posting(self, account: Account, transaction: Transaction) -> None:
        """Persist an account record plus one newly applied transaction"""
        self.storage.save(self.accounts_table, account.id, account.to_dict())
        self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())

    def upsert_account_records(self, accounts: Iterable[Account]) -> int:
        """Batch upsert account records without touching their histories"""
        return self.storage.save_many(self.accounts_table, [a.to_dict() for a in accounts])

    def upsert_transactions(self, transactions: Iterable[Transaction]) -> int:
        return self.storage.save_many(self.transactions_table, [t.to_dict() for t in transactions])

    def _load_transactions(self, account_id: str) -> List[Transaction]:
        records = self.storage.find(self.transactions_table, {"account_id": account_id})
        transactions = [Transaction.from_dict(d) for d in records]
        transactions.sort(key=lambda t: (t.date, t.created_at))
        return transactions

    def _get_required(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise LinkageError(f"Account {account_id} not found", reference=account_id)
        return account

    def next_series(self, member_id: str, account_type: AccountType,
                    loan_type: Optional[LoanType] = None) -> int:
        """Next per-member sequence number for a product code"""
        code = account_code(account_type, loan_type)
        prefix = f"{member_id}-{code}-"
        existing = self.storage.find(self.accounts_table, {"member_id": member_id})
        return 1 + sum(1 for d in existing if d['account_number'].startswith(prefix))

    # Lifecycle

    def open_account(
        self,
        member_id: str,
        account_type: AccountType,
        amount: Decimal = Decimal('0'),
        opening_date: Optional[date] = None,
        loan_type: Optional[LoanType] = None,
        interest_rate: Optional[Decimal] = None,
        term_months: Optional[int] = None,
        tenure_days: Optional[int] = None,
        rd_frequency: Optional[RDFrequency] = None,
        guarantors: Optional[List[str]] = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        utr_number: Optional[str] = None,
        requires_approval: Optional[bool] = None
    ) -> Account:
        """
        Open and persist a new account for an existing member

        Loans open Pending when approval is required (configuration default),
        all other products open Active. The opening is booked in the society
        ledger.

        Raises:
            LinkageError: If the member or a guarantor does not exist
            PolicyViolation: If the member already holds this singleton product
        """
        if not self.storage.exists(self.members_table, member_id):
            raise LinkageError(f"Member {member_id} not found", reference=member_id)

        if is_singleton(account_type):
            held = [a for a in self.storage.find(self.accounts_table, {"member_id": member_id})
                    if a['account_type'] == account_type.value and a['status'] != AccountStatus.CLOSED.value]
            if held:
                raise PolicyViolation(f"Member {member_id} already holds a {account_type.value} account")

        for guarantor_id in guarantors or []:
            if guarantor_id == member_id:
                raise ValueError("A member cannot guarantee their own loan")
            if not self.storage.exists(self.members_table, guarantor_id):
                raise LinkageError(f"Guarantor {guarantor_id} not found", reference=guarantor_id)

        if requires_approval is None:
            requires_approval = self.config.loans_require_approval
        status = AccountStatus.ACTIVE
        if account_type == AccountType.LOAN and requires_approval:
            status = AccountStatus.PENDING

        account = build_account(
            member_id, account_type, amount,
            opening_date=opening_date,
            loan_type=loan_type,
            interest_rate=interest_rate,
            term_months=term_months,
            tenure_days=tenure_days,
            rd_frequency=rd_frequency,
            guarantors=guarantors,
            status=status,
            series=self.next_series(member_id, account_type, loan_type),
            payment_method=payment_method,
            utr_number=utr_number,
            config=self.config
        )

        self.save_account(account)
        opening_txn = account.transactions[0] if account.transactions else None
        self.society_ledger.record_many(self.society_ledger.opening_entries(account, opening_txn))

        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_OPENED, "account", account.id,
            metadata={
                "member_id": member_id,
                "account_type": account_type.value,
                "amount": amount,
                "status": status.value,
            }
        )
        log_action(
            self.logger, "info", f"Opened {account_type.value} account {account.account_number}",
            action="account_opened", resource=f"account:{account.id}",
            extra={"amount": str(amount), "status": status.value}
        )
        return account

    def post_transaction(
        self,
        account_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        txn_date: Optional[date] = None,
        description: str = "",
        payment_method: PaymentMethod = PaymentMethod.CASH,
        cash_amount: Optional[Decimal] = None,
        online_amount: Optional[Decimal] = None,
        utr_number: Optional[str] = None,
        transaction_id: Optional[str] = None
    ) -> Transaction:
        """
        Post a manual credit or debit and book its ledger entry

        Re-posting an id that is already in the account's history changes
        nothing and returns the existing transaction. Transaction ids are
        unique across all accounts.

        Raises:
            PolicyViolation: If the product or status denies the operation
            InsufficientFunds: If a deposit withdrawal exceeds the balance
            ValueError: If the id is already used by another account
        """
        account = self._get_required(account_id)
        if transaction_id:
            stored = self.storage.load(self.transactions_table, transaction_id)
            if stored is not None:
                if stored["account_id"] != account.id:
                    raise ValueError(
                        f"Transaction id {transaction_id} is already used by account {stored['account_id']}"
                    )
                return Transaction.from_dict(stored)

        transaction = new_transaction(
            account.id, transaction_type, Decimal(amount), txn_date or date.today(),
            categorize(account.is_loan, transaction_type, description),
            description,
            transaction_id=transaction_id,
            payment_method=payment_method,
            cash_amount=cash_amount,
            online_amount=online_amount,
            utr_number=utr_number
        )
        updated = apply_transaction(account, transaction, self.config.min_system_date)
        posted = updated.transactions[-1]
        self.save_account(updated)

        entry = self.society_ledger.entry_for_transaction(updated, posted)
        if entry:
            self.society_ledger.record(entry)

        self.audit_trail.log_event(
            AuditEventType.TRANSACTION_POSTED, "account", account.id,
            metadata={
                "transaction_id": posted.id,
                "type": posted.type.value,
                "amount": posted.amount,
                "category": posted.category,
                "balance": updated.balance,
            }
        )
        log_action(
            self.logger, "info",
            f"Posted {posted.type.value} of {Money(posted.amount).to_string()} to {account.account_number}",
            action="transaction_posted", resource=f"account:{account.id}",
            extra={"transaction_id": posted.id, "category": posted.category}
        )
        return posted

    def update_status(self, account_id: str, new_status: AccountStatus,
                      reason: Optional[str] = None) -> Account:
        """
        Apply an administrative status transition

        Raises:
            ValueError: If the transition is not allowed from the current status
        """
        account = self._get_required(account_id)
        if new_status == account.status:
            return account
        if new_status not in _TRANSITIONS[account.status]:
            raise ValueError(
                f"Cannot change account status from {account.status.value} to {new_status.value}"
            )

        updated = replace(account, status=new_status, updated_at=datetime.now(timezone.utc))
        self.storage.save(self.accounts_table, updated.id, updated.to_dict())

        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_STATUS_CHANGED, "account", account.id,
            metadata={"from": account.status.value, "to": new_status.value, "reason": reason}
        )
        return updated

    def approve_loan(self, account_id: str) -> Account:
        """Move a pending loan to Active"""
        account = self._get_required(account_id)
        if account.status != AccountStatus.PENDING:
            raise ValueError(f"Account {account_id} is not pending approval")
        return self.update_status(account_id, AccountStatus.ACTIVE, reason="loan approved")

    def set_member_accounts_dormant(self, member_id: str) -> int:
        """Park all of a member's Active accounts; returns how many changed"""
        changed = 0
        for account in self.get_member_accounts(member_id):
            if account.status == AccountStatus.ACTIVE:
                self.update_status(account.id, AccountStatus.DORMANT, reason="member suspended")
                changed += 1
        return changed

    def reactivate_member_accounts(self, member_id: str) -> int:
        changed = 0
        for account in self.get_member_accounts(member_id):
            if account.status == AccountStatus.DORMANT:
                self.update_status(account.id, AccountStatus.ACTIVE, reason="member reactivated")
                changed += 1
        return changed

    # Maturity and early closure

    def _payout_account(self, source: Account, target_account_id: Optional[str],
                        payout_date: date) -> Account:
        """Target of a closure transfer: explicit, else the member's Optional Deposit"""
        if target_account_id:
            target = self._get_required(target_account_id)
            if target.id == source.id:
                raise ValueError("Closure target must differ from the closing account")
            return target

        for account in self.get_member_accounts(source.member_id):
            if account.account_type == AccountType.OPTIONAL_DEPOSIT and account.status != AccountStatus.CLOSED:
                return account
        return self.open_account(source.member_id, AccountType.OPTIONAL_DEPOSIT,
                                 opening_date=payout_date)

    def close_early(
        self,
        account_id: str,
        closing_date: Optional[date] = None,
        target_account_id: Optional[str] = None
    ) -> Tuple[Account, Optional[Transaction], Optional[Transaction]]:
        """
        Close a Fixed or Recurring Deposit and pay its balance out

        Produces a paired transfer: a debit of the full balance on the
        closing account and a credit of the identical amount on the target
        (the member's Optional Deposit, opened if absent). Transfer ids are
        derived from the closing account, so retries do not double-pay.

        Returns:
            (matured account, debit, credit); the transactions are None
            when the balance was zero

        Raises:
            PolicyViolation: If the product or status does not allow closure
        """
        source = self._get_required(account_id)
        decision = can_apply(source.account_type, OperationType.CLOSURE, source.status)
        if not decision:
            raise PolicyViolation(decision.reason)

        closing_date = clamp_date(closing_date or date.today(), self.config.min_system_date)
        debit = credit = None

        if source.balance > Decimal('0'):
            target = self._payout_account(source, target_account_id, closing_date)
            amount = source.balance

            debit = new_transaction(
                source.id, TransactionType.DEBIT, amount, closing_date, MATURITY_TRANSFER,
                f"Maturity transfer to {target.account_number}",
                transaction_id=f"TX-{source.id}-MAT-OUT"
            )
            credit = new_transaction(
                target.id, TransactionType.CREDIT, amount, closing_date, MATURITY_CREDIT,
                f"Maturity proceeds from {source.account_number}",
                transaction_id=f"TX-{source.id}-MAT-IN"
            )
            source = apply_transaction(source, debit, self.config.min_system_date)
            target = apply_transaction(target, credit, self.config.min_system_date)
            self.save_accounts([source, target])

        matured = replace(source, status=AccountStatus.MATURED, maturity_processed=True,
                          updated_at=datetime.now(timezone.utc))
        self.save_account(matured)

        self.audit_trail.log_event(
            AuditEventType.ACCOUNT_MATURED, "account", matured.id,
            metadata={
                "closing_date": closing_date,
                "amount": debit.amount if debit else Decimal('0'),
                "target_account_id": credit.account_id if credit else None,
            }
        )
        log_action(
            self.logger, "info", f"Closed {matured.account_type.value} {matured.account_number}",
            action="closure_transfer", resource=f"account:{matured.id}",
            extra={"amount": str(debit.amount) if debit else "0"}
        )
        return matured, debit, credit

    def process_maturities(self, as_of: Optional[date] = None) -> List[str]:
        """
        Pay out every term deposit past its maturity date plus the grace period

        Failures are logged per account and do not stop the run.

        Returns:
            Ids of accounts matured in this run
        """
        as_of = as_of or date.today()
        grace = timedelta(days=self.config.maturity_grace_days)
        matured = []

        for account in self.list_accounts():
            if (not account.is_term_deposit or account.maturity_processed
                    or account.status != AccountStatus.ACTIVE or account.maturity_date is None):
                continue
            if as_of < account.maturity_date + grace:
                continue
            try:
                self.close_early(account.id, closing_date=as_of)
                matured.append(account.id)
            except Exception as e:
                log_action(
                    self.logger, "error", f"Maturity processing failed: {e}",
                    action="maturity_failed", resource=f"account:{account.id}"
                )
        return matured
