"""
Tests for date corruption repair and missing transaction backfill
"""

import pytest
from dataclasses import replace
from decimal import Decimal
from datetime import date, datetime, timezone

from samiti.accounts import AccountManager, build_account
from samiti.audit import AuditTrail, AuditEventType
from samiti.bookkeeping import SocietyLedger
from samiti.config import SamitiConfig
from samiti.ledger import is_consistent
from samiti.members import Member, MemberManager
from samiti.products import AccountType, LoanType
from samiti.repair import (
    BACKFILL_DESCRIPTION, RepairService, backfill_missing_transactions, extract_timestamp_from_id,
    scan_for_date_corruption
)
from samiti.storage import InMemoryStorage
from samiti.transactions import OPENING_BALANCE, TransactionType


STAMPED_ID = "MEM-1700000000000-a1b2c"  # 2023-11-14 UTC
MIN_DATE = date(2010, 1, 1)


def member(member_id, join_date):
    now = datetime.now(timezone.utc)
    return Member(id=member_id, created_at=now, updated_at=now, full_name="Test",
                  phone="", join_date=join_date)


class TestExtractTimestamp:
    """Test recovering creation dates from ids"""
    
    def test_epoch_millis(self):
        """Test a generated id"""
        assert extract_timestamp_from_id("ACC-1001-FD-1700000000000-a1b2c") == date(2023, 11, 14)
    
    def test_no_timestamp(self):
        """Test ids without a standalone 13-digit run"""
        assert extract_timestamp_from_id("ACC-1001-SHR-INIT") is None
        assert extract_timestamp_from_id("X-12345678901234") is None
        assert extract_timestamp_from_id("") is None


class TestScan:
    """Test proposing date corrections"""
    
    def test_divergence_beyond_threshold(self):
        """Test that only divergences over a month are flagged"""
        members = [
            member(STAMPED_ID, date(2021, 1, 1)),
            member("MEM-1700000000000-zzzzz", date(2023, 11, 20)),
            member("LEGACY-7", date(1999, 1, 1)),
        ]
        corrections = scan_for_date_corruption(members, [], min_date=MIN_DATE)
        
        assert len(corrections) == 1
        correction = corrections[0]
        assert correction.entity_id == STAMPED_ID
        assert correction.field == "join_date"
        assert correction.proposed == date(2023, 11, 14)
        assert correction.divergence_days == (date(2023, 11, 14) - date(2021, 1, 1)).days
        assert correction.to_dict()["recorded"] == "2021-01-01"
    
    def test_missing_recorded_date(self):
        """Test that an account without an opening date is always flagged"""
        account = replace(build_account("1001", AccountType.OPTIONAL_DEPOSIT, config=SamitiConfig()),
                          id="ACC-1001-ODP-1700000000000-q", opening_date=None)
        corrections = scan_for_date_corruption([], [account], min_date=MIN_DATE)
        
        assert corrections[0].recorded is None
        assert corrections[0].divergence_days is None
        assert corrections[0].entity_type == "account"
    
    def test_proposal_is_clamped(self):
        """Test that proposals respect the minimum system date"""
        early = member("MEM-1199145600000-old", date(2016, 1, 1))  # 2008-01-01
        corrections = scan_for_date_corruption([early], [], min_date=MIN_DATE)
        
        assert corrections[0].proposed == MIN_DATE


class TestBackfill:
    """Test synthesizing missing opening transactions"""
    
    def history_less(self, account_type, amount, **kwargs):
        account = build_account("1001", account_type, Decimal(amount), opening_date=date(2022, 6, 1),
                                config=SamitiConfig(), **kwargs)
        return replace(account, transactions=[])
    
    def test_deposit_and_loan(self):
        """Test direction follows the product's sign convention"""
        deposit = self.history_less(AccountType.OPTIONAL_DEPOSIT, "500")
        loan = self.history_less(AccountType.LOAN, "1000", loan_type=LoanType.HOME)
        overpaid = replace(self.history_less(AccountType.LOAN, "100"), balance=Decimal('-50'))
        
        filled = backfill_missing_transactions([deposit, loan, overpaid], MIN_DATE)
        
        assert [a.transactions[0].type for a in filled] == [
            TransactionType.CREDIT, TransactionType.DEBIT, TransactionType.CREDIT
        ]
        assert filled[2].transactions[0].amount == Decimal('50')
        for account in filled:
            txn = account.transactions[0]
            assert txn.id == f"TX-{account.id}-BACKFILL"
            assert txn.category == OPENING_BALANCE
            assert txn.description == BACKFILL_DESCRIPTION
            assert txn.date == date(2022, 6, 1)
            assert is_consistent(account)
    
    def test_skips_accounts_with_history_or_zero_balance(self):
        """Test which accounts are left alone"""
        with_history = build_account("1001", AccountType.OPTIONAL_DEPOSIT, Decimal('10'), config=SamitiConfig())
        empty = self.history_less(AccountType.OPTIONAL_DEPOSIT, "0")
        
        assert backfill_missing_transactions([with_history, empty], MIN_DATE) == []


class TestRepairService:
    """Test repairs against persisted data"""
    
    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.config = SamitiConfig()
        self.audit = AuditTrail(self.storage)
        self.ledger = SocietyLedger(self.storage, self.config)
        self.accounts = AccountManager(self.storage, self.ledger, self.audit, self.config)
        self.members = MemberManager(self.storage, self.accounts, self.ledger, self.audit, self.config)
        self.service = RepairService(self.members, self.accounts, self.audit)
    
    def test_apply_requires_confirmation(self):
        """Test corrections are never written implicitly"""
        self.members.register_member("Anil", "9000000000", join_date=date(2020, 1, 1), member_id=STAMPED_ID)
        corrections = self.service.scan()
        
        with pytest.raises(ValueError):
            self.service.apply_corrections(corrections)
        assert self.members.get_member(STAMPED_ID).join_date == date(2020, 1, 1)
    
    def test_apply_corrections(self):
        """Test members and accounts are corrected and audited"""
        self.members.register_member("Anil", "9000000000", join_date=date(2020, 1, 1), member_id=STAMPED_ID)
        corrections = self.service.scan()
        assert {c.entity_type for c in corrections} == {"member", "account"}
        
        applied = self.service.apply_corrections(corrections, confirmed=True)
        
        assert applied == len(corrections) == 3
        assert self.members.get_member(STAMPED_ID).join_date == date(2023, 11, 14)
        for account in self.accounts.get_member_accounts(STAMPED_ID):
            assert account.opening_date == date(2023, 11, 14)
            assert len(account.transactions) == 1
        assert len(self.audit.get_events_by_type(AuditEventType.DATA_REPAIRED)) == 3
        assert self.service.scan() == []
    
    def test_backfill(self):
        """Test persisted backfill restores replay consistency"""
        account = build_account("1001", AccountType.OPTIONAL_DEPOSIT, Decimal('750'),
                                opening_date=date(2021, 3, 1), account_id="ACC-LEGACY-1", config=self.config)
        self.accounts.upsert_account_records([account])
        assert not is_consistent(self.accounts.get_account("ACC-LEGACY-1"))
        
        transactions = self.service.backfill()
        
        assert [t.id for t in transactions] == ["TX-ACC-LEGACY-1-BACKFILL"]
        stored = self.accounts.get_account("ACC-LEGACY-1")
        assert stored.balance == Decimal('750')
        assert is_consistent(stored)
        assert self.service.backfill() == []
