"""
Interest Accrual Engine Module

Catch-up monthly interest posting driven by a per-account watermark
(``last_interest_post_date``). Each run walks forward one month at a time
from the watermark, posts that month's interest as a transaction dated at
the period boundary, and persists the advanced watermark together with the
posting. Re-running against an unchanged watermark posts nothing.

Two concurrent runs against the same account's stale watermark are not
guarded here; multi-process deployments must serialize runs per account.
"""

from datetime import date
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional

from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .bookkeeping import SocietyLedger
from .calculators import deposit_monthly_interest, flat_monthly_interest, reducing_monthly_interest
from .config import SamitiConfig, get_config
from .dates import add_months
from .ledger import apply_transaction
from .logging_config import get_logger, log_action
from .members import MemberManager
from .policy import OperationType, can_apply
from .products import AccountType
from .transactions import Transaction, TransactionType, INTEREST, new_transaction


class InterestEngine:
    """
    Posts monthly interest for deposits (credits) and loans (debits)
    """
    
    def __init__(
        self,
        account_manager: AccountManager,
        member_manager: MemberManager,
        society_ledger: SocietyLedger,
        audit_trail: AuditTrail,
        config: Optional[SamitiConfig] = None
    ):
        self.account_manager = account_manager
        self.member_manager = member_manager
        self.society_ledger = society_ledger
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.max_periods = self.config.interest_max_catchup_periods
        self.logger = get_logger("samiti.interest")
    
    def watermark(self, account: Account) -> Optional[date]:
        """Last posted period boundary, falling back to opening date then member join date"""
        if account.last_interest_post_date:
            return account.last_interest_post_date
        if account.opening_date:
            return account.opening_date
        member = self.member_manager.get_member(account.member_id)
        return member.join_date if member else None
    
    def monthly_interest(self, account: Account) -> Decimal:
        """
        One month of interest at the account's current state
        
        Loans use the flat-rate formula on the original principal for
        flat-rate sub-categories and the reducing-balance formula otherwise;
        deposits earn balance·R/1200.
        """
        if account.account_type == AccountType.SHARE_CAPITAL:
            return Decimal('0')
        if account.is_loan:
            if account.uses_flat_rate:
                # Flat interest stops once the debt is cleared
                if account.balance <= Decimal('0'):
                    return Decimal('0')
                return flat_monthly_interest(account.original_amount, account.interest_rate)
            return reducing_monthly_interest(account.balance, account.interest_rate)
        return deposit_monthly_interest(account.balance, account.interest_rate)
    
    def accrue_account(self, account_id: str, as_of: Optional[date] = None) -> List[Transaction]:
        """
        Catch an account's interest up to ``as_of``
        
        Args:
            account_id: Account to process
            as_of: Posting horizon (today when omitted); periods ending
                after it are left for a later run
            
        Returns:
            Interest transactions posted by this call, oldest first
        """
        as_of = as_of or date.today()
        account = self.account_manager.get_account(account_id)
        if not account or account.account_type == AccountType.SHARE_CAPITAL:
            return []
        
        cursor = self.watermark(account)
        if cursor is None:
            return []
        
        posted = []
        for _ in range(self.max_periods):
            period_end = add_months(cursor, 1)
            if period_end > as_of:
                break
            if not can_apply(account.account_type, OperationType.INTEREST, account.status):
                break
            
            interest = self.monthly_interest(account)
            if interest <= Decimal('0'):
                break
            
            transaction = new_transaction(
                account.id,
                TransactionType.DEBIT if account.is_loan else TransactionType.CREDIT,
                interest,
                period_end,
                INTEREST,
                f"Interest for {period_end:%B %Y}",
                transaction_id=f"INT-{account.id}-{period_end:%Y%m%d}",
            )
            account = apply_transaction(account, transaction, self.config.min_system_date)
            account = replace(account, last_interest_post_date=period_end)
            self.account_manager.record_posting(account, transaction)
            
            entry = self.society_ledger.entry_for_transaction(account, transaction)
            if entry:
                self.society_ledger.record(entry)
            
            self.audit_trail.log_event(
                AuditEventType.INTEREST_POSTED, "account", account.id,
                metadata={
                    "transaction_id": transaction.id,
                    "period_end": period_end,
                    "amount": interest,
                    "balance": account.balance,
                }
            )
            posted.append(transaction)
            cursor = period_end
        else:
            log_action(
                self.logger, "warning",
                f"Interest catch-up stopped after {self.max_periods} periods",
                action="interest_catchup_capped", resource=f"account:{account.id}",
                extra={"watermark": cursor.isoformat()}
            )
        
        if posted:
            log_action(
                self.logger, "info", f"Posted {len(posted)} interest period(s) to {account.account_number}",
                action="interest_posted", resource=f"account:{account.id}",
                extra={"through": cursor.isoformat(), "total": str(sum(t.amount for t in posted))}
            )
        return posted
    
    def run(self, as_of: Optional[date] = None) -> Dict[str, int]:
        """
        Run the catch-up for every account
        
        An account that fails is logged and skipped; the run continues.
        
        Returns:
            Number of interest postings per account type
        """
        results = {account_type.value: 0 for account_type in AccountType}
        for account in self.account_manager.list_accounts():
            try:
                posted = self.accrue_account(account.id, as_of)
                results[account.account_type.value] += len(posted)
            except Exception as e:
                log_action(
                    self.logger, "error", f"Interest accrual failed: {e}",
                    action="interest_failed", resource=f"account:{account.id}"
                )
        return results
