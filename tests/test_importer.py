"""
Test suite for the spreadsheet import pipeline

Tests header aliasing, wide-format unpivoting, grid pastes, per-row
validation and linking, deduplication, and per-kind batch commits.
"""

import pytest
from decimal import Decimal
from datetime import date

from samiti.accounts import AccountManager
from samiti.audit import AuditTrail, AuditEventType
from samiti.bookkeeping import SocietyLedger
from samiti.config import SamitiConfig
from samiti.importer import ImportKind, ImportPipeline, PasteGrid, Severity, parse_rows, split_row
from samiti.importer.pipeline import (
    IMPORTED_OPENING_DESCRIPTION, dedupe_by_id, parse_payment_method, parse_transaction_type
)
from samiti.importer.schema import (
    canonical_columns, detect_wide_columns, looks_like_header, map_headers, normalize_header,
    resolve_field
)
from samiti.ledger import is_consistent
from samiti.members import MemberManager
from samiti.products import AccountType, AccountStatus, LoanType
from samiti.staff import StaffManager
from samiti.storage import InMemoryStorage
from samiti.transactions import PaymentMethod, TransactionType


class FlakyStorage(InMemoryStorage):
    """In-memory storage whose batch upserts fail for selected tables"""
    
    def __init__(self):
        super().__init__()
        self.failing_tables = set()
    
    def save_many(self, table, records):
        if table in self.failing_tables:
            raise IOError(f"{table} unavailable")
        return super().save_many(table, records)


class TestSchema:
    """Test header normalization and aliasing"""
    
    def test_normalize_header(self):
        """Test lowercasing and stripping of punctuation"""
        assert normalize_header("Mobile No.") == "mobileno"
        assert normalize_header(" Member-ID ") == "memberid"
    
    def test_resolve_field(self):
        """Test alias lookup per import kind"""
        assert resolve_field(ImportKind.MEMBERS, "Mobile No") == "phone"
        assert resolve_field(ImportKind.MEMBERS, "Legacy ID") == "member_id"
        assert resolve_field(ImportKind.ACCOUNTS, "Member Phone") == "member_id"
        assert resolve_field(ImportKind.TRANSACTIONS, "Narration") == "description"
        assert resolve_field(ImportKind.MEMBERS, "Favourite Colour") is None
        assert resolve_field(ImportKind.MEMBERS, "") is None
    
    def test_map_headers_first_match_wins(self):
        """Test that two headers for one field keep the first"""
        assert map_headers(ImportKind.ACCOUNTS, ["Balance", "Amount", "Member ID"]) == {
            0: "opening_balance", 2: "member_id"
        }
    
    def test_looks_like_header(self):
        """Test keyword-based header detection"""
        assert looks_like_header("Full Name,Mobile No")
        assert not looks_like_header("101,Asha,9876543210")
        # Known false positive: a name containing a keyword
        assert looks_like_header("5,David,9000000000")
    
    def test_detect_wide_columns(self):
        """Test that wide format needs two distinct account types"""
        headers = ["Member ID", "Share Capital", "Compulsory Deposit"]
        assert detect_wide_columns(ImportKind.ACCOUNTS, headers) == {
            1: AccountType.SHARE_CAPITAL, 2: AccountType.COMPULSORY_DEPOSIT
        }
        assert detect_wide_columns(ImportKind.ACCOUNTS, ["Member ID", "Share Capital"]) == {}
        assert detect_wide_columns(ImportKind.MEMBERS, headers) == {}
    
    def test_canonical_columns(self):
        """Test the header-less column order"""
        assert canonical_columns(ImportKind.ACCOUNTS) == [
            "member_id", "account_type", "opening_balance", "opening_date"
        ]


class TestParsing:
    """Test tabular text parsing and the paste grid"""
    
    def test_split_row_quotes(self):
        """Test quoted delimiters and doubled quotes"""
        assert split_row('a, "b,c" ,d') == ["a", "b,c", "d"]
        assert split_row('"say ""hi""",x') == ['say "hi"', "x"]
        assert split_row("a\tb", "\t") == ["a", "b"]
    
    def test_parse_rows_detects_tabs(self):
        """Test delimiter detection and blank line removal"""
        assert parse_rows("a\tb,c\n\n1\t2\r\n") == [["a", "b,c"], ["1", "2"]]
        assert parse_rows("   \n") == []
    
    def test_quoted_cells_span_lines(self):
        """Test a multi-line address stays in one record"""
        text = 'Name,Address\nAsha,"12 Main Rd\nWard 3"\nRavi,Market\n'
        
        assert parse_rows(text) == [["Name", "Address"], ["Asha", "12 Main Rd\nWard 3"], ["Ravi", "Market"]]
    
    def test_empty_csv_record_is_kept(self):
        """Test that a row of empty cells is data, not a blank line"""
        assert parse_rows("a,b\n,\n\n") == [["a", "b"], ["", ""]]
    
    def test_grid_paste_at_focus(self):
        """Test pasting relative to the focused cell"""
        grid = PasteGrid(["a", "b", "c"])
        grid.focus(1, 1)
        touched = grid.paste("x\ty\tz\n1\t2")
        
        assert touched == 2
        assert grid.cell(1, 1) == "x"
        assert grid.cell(1, 2) == "y"
        assert grid.records() == [
            (2, {"a": "", "b": "x", "c": "y"}),
            (3, {"a": "", "b": "1", "c": "2"}),
        ]
    
    def test_grid_overwrites_existing_cells(self):
        """Test that a paste overwrites and keeps untouched cells"""
        grid = PasteGrid(["a", "b"], rows=1)
        grid.set_cell(0, 0, "keep")
        grid.set_cell(0, 1, "old")
        grid.focus(0, 1)
        grid.paste("new")
        
        assert grid.records() == [(1, {"a": "keep", "b": "new"})]
    
    def test_grid_focus_bounds(self):
        """Test focusing outside the column layout"""
        grid = PasteGrid(["a", "b"])
        with pytest.raises(ValueError):
            grid.focus(0, 2)
        with pytest.raises(ValueError):
            grid.focus(-1, 0)


class TestHelpers:
    """Test pipeline helper functions"""
    
    def test_dedupe_keeps_last_at_first_position(self):
        """Test id deduplication ordering"""
        class Record:
            def __init__(self, id, value):
                self.id = id
                self.value = value
        
        records = [Record("a", 1), Record("b", 2), Record("a", 3)]
        result = dedupe_by_id(records)
        assert [(r.id, r.value) for r in result] == [("a", 3), ("b", 2)]
    
    def test_transaction_type_words(self):
        """Test credit and debit spellings"""
        assert parse_transaction_type("CR") == TransactionType.CREDIT
        assert parse_transaction_type(" Withdrawal ") == TransactionType.DEBIT
        assert parse_transaction_type("bonus") is None
    
    def test_payment_method_words(self):
        """Test payment method spellings"""
        assert parse_payment_method("UPI") == PaymentMethod.ONLINE
        assert parse_payment_method("both") == PaymentMethod.BOTH
        assert parse_payment_method("") == PaymentMethod.CASH


class TestImportPipeline:
    """Test previews and commits against a live society"""
    
    def setup_method(self):
        """Set up test fixtures"""
        self.storage = FlakyStorage()
        self.config = SamitiConfig()
        self.audit = AuditTrail(self.storage)
        self.ledger = SocietyLedger(self.storage, self.config)
        self.accounts = AccountManager(self.storage, self.ledger, self.audit, self.config)
        self.members = MemberManager(self.storage, self.accounts, self.ledger, self.audit, self.config)
        self.staff = StaffManager(self.storage)
        self.pipeline = ImportPipeline(self.members, self.accounts, self.ledger, self.staff,
                                       self.audit, self.config)
        self.members.register_member("Asha Devi", "9876543210", join_date=date(2020, 1, 1), member_id="1001")
    
    # Members
    
    def test_member_import_with_aliases(self):
        """Test header aliasing, date normalization and phone deduplication"""
        text = (
            "Member ID,Full Name,Mobile No,Join Date\n"
            "101,Ravi Kumar,9000000101,15/03/2021\n"
            "102,Gita,,01-01-2005\n"
            "103,Copy,9000000101,\n"
        )
        preview = self.pipeline.preview(ImportKind.MEMBERS, text)
        
        assert [m.id for m in preview.members] == ["101", "102"]
        assert preview.members[0].phone == "9000000101"
        assert preview.members[0].join_date == date(2021, 3, 15)
        assert preview.members[1].join_date == date(2010, 1, 1)
        assert preview.counts() == {
            "members": 2, "accounts": 4, "transactions": 4, "ledger_entries": 2, "staff": 0
        }
        assert [(w.row_number, w.category) for w in preview.warnings] == [(4, "cross_reference")]
        assert not preview.has_errors
        assert self.storage.count("members") == 1
    
    def test_member_import_skips_existing(self):
        """Test that existing ids and active phones are kept as they are"""
        text = "Member ID,Full Name,Phone\n1001,Someone,9111111111\n2002,Other,98765 43210\n"
        preview = self.pipeline.preview(ImportKind.MEMBERS, text)
        
        assert preview.members == []
        assert len(preview.warnings) == 2
    
    def test_member_row_without_identity_is_an_error(self):
        """Test a row with no name, phone or id"""
        preview = self.pipeline.preview(ImportKind.MEMBERS, "Member ID,Full Name,Mobile No\n,,\n")
        
        assert preview.has_errors
        assert preview.errors[0].severity == Severity.ERROR
        assert preview.errors[0].row_number == 2
        assert preview.members == []
    
    def test_duplicate_ids_keep_last_row(self):
        """Test deduplication of repeated member rows"""
        text = "Member ID,Full Name,Mobile No\n301,First,9000000301\n301,Second,9000000301\n"
        preview = self.pipeline.preview(ImportKind.MEMBERS, text)
        
        assert [m.full_name for m in preview.members] == ["Second"]
        assert len(preview.accounts) == 2
        assert len(preview.ledger_entries) == 1
    
    def test_headerless_paste_into_grid(self):
        """Test that data without a header uses the canonical column order"""
        text = "201\tKamla\tRamesh\t9000000201\tVillage Road\t2020-02-02\t"
        preview = self.pipeline.preview(ImportKind.MEMBERS, text)
        
        member = preview.members[0]
        assert member.id == "201"
        assert member.father_name == "Ramesh"
        assert member.current_address == "Village Road"
        assert member.join_date == date(2020, 2, 2)
    
    def test_paste_at_focused_column(self):
        """Test a partial paste starting at the name column"""
        grid = PasteGrid(canonical_columns(ImportKind.MEMBERS))
        grid.focus(0, 1)
        preview = self.pipeline.preview(ImportKind.MEMBERS, "Kamla\tRamesh\t9000000202", grid)
        
        member = preview.members[0]
        assert member.full_name == "Kamla"
        assert member.phone == "9000000202"
        assert member.id.startswith("MEM-")
    
    def test_unparseable_date_is_a_warning(self):
        """Test soft flagging of bad dates"""
        text = "Member ID,Full Name,Mobile No,Join Date\n401,Hari,9000000401,sometime\n"
        preview = self.pipeline.preview(ImportKind.MEMBERS, text)
        
        assert len(preview.members) == 1
        assert preview.warnings[0].category == "date"
        assert preview.members[0].join_date == date.today()
    
    # Accounts
    
    def test_wide_format_unpivot(self):
        """Test one row per account-type column"""
        rows, wide = self.pipeline.extract_rows(
            ImportKind.ACCOUNTS, "Member ID,Share Capital,Compulsory Deposit\n7,500,200\n8,0,150\n"
        )
        
        assert wide is True
        assert rows == [
            (2, {"member_id": "7", "account_type": "Share Capital", "opening_balance": "500", "opening_date": ""}),
            (2, {"member_id": "7", "account_type": "Compulsory Deposit", "opening_balance": "200", "opening_date": ""}),
            (3, {"member_id": "8", "account_type": "Compulsory Deposit", "opening_balance": "150", "opening_date": ""}),
        ]
    
    def test_wide_format_credits_registration_accounts(self):
        """Test a wide sheet lands on the accounts every member already holds"""
        self.members.register_member("Kamal", "9000000007", join_date=date(2020, 1, 1), member_id="7")
        text = "Share Capital,Compulsory Deposit,Member ID\n500,200,7\n"
        
        preview = self.pipeline.preview(ImportKind.ACCOUNTS, text)
        
        assert preview.wide_format is True
        assert [a.id for a in preview.accounts] == ["ACC-7-SHR-INIT", "ACC-7-CD-INIT"]
        assert [a.balance for a in preview.accounts] == [Decimal('900'), Decimal('400')]
        assert [t.amount for t in preview.transactions] == [Decimal('500'), Decimal('200')]
        assert all(t.description == IMPORTED_OPENING_DESCRIPTION for t in preview.transactions)
        assert [w.category for w in preview.warnings] == ["cross_reference", "cross_reference"]
        assert preview.ledger_entries == []
        assert not preview.has_errors
        
        assert self.pipeline.commit(preview).success
        share = self.accounts.get_account("ACC-7-SHR-INIT")
        assert share.balance == Decimal('900')
        assert len(share.transactions) == 2
        assert is_consistent(share)
        assert is_consistent(self.accounts.get_account("ACC-7-CD-INIT"))
        
        self.pipeline.commit(self.pipeline.preview(ImportKind.ACCOUNTS, text))
        assert self.accounts.get_account("ACC-7-SHR-INIT").balance == Decimal('900')
        assert len(self.accounts.get_member_accounts("7")) == 2
    
    def test_closed_singleton_is_replaced(self):
        """Test that a closed account does not block a fresh one"""
        od = self.accounts.open_account("1001", AccountType.OPTIONAL_DEPOSIT, Decimal('0'))
        self.accounts.update_status(od.id, AccountStatus.CLOSED)
        
        preview = self.pipeline.preview(ImportKind.ACCOUNTS,
                                        "Member ID,Account Type,Opening Balance\n1001,Optional Deposit,300\n")
        
        account, = preview.accounts
        assert account.id != od.id
        assert account.account_number == "1001-ODP-2"
        assert account.balance == Decimal('300')
        assert preview.warnings == []
    
    def test_account_import(self):
        """Test linking by phone, validation, held singletons and unknown types"""
        text = (
            "Member Phone,Account Type,Opening Balance,Opening Date\n"
            "9876543210,Fixed Deposit,\"5,000\",01/04/2022\n"
            "1001,Savings,abc,\n"
            "5555,Fixed Deposit,100,\n"
            "1001,Share Capital,400,\n"
            "1001,Locker,50,\n"
            "1001,Recurring Deposit,-10,\n"
        )
        preview = self.pipeline.preview(ImportKind.ACCOUNTS, text)
        
        fd, share, od = preview.accounts
        assert fd.account_number == "1001-FD-1"
        assert fd.balance == Decimal('5000')
        assert fd.status == AccountStatus.ACTIVE
        assert fd.opening_date == date(2022, 4, 1)
        assert fd.transactions[0].description == IMPORTED_OPENING_DESCRIPTION
        assert share.id == "ACC-1001-SHR-INIT"
        assert share.balance == Decimal('800')
        assert od.account_type == AccountType.OPTIONAL_DEPOSIT
        assert od.account_number == "1001-ODP-1"
        assert preview.ledger_entries == []
        
        assert [(e.row_number, e.category) for e in preview.errors] == [(3, "validation"), (7, "validation")]
        assert sorted((w.row_number, w.category) for w in preview.warnings) == [
            (4, "linkage"), (5, "cross_reference"), (6, "validation")
        ]
    
    def test_loan_import_is_active(self):
        """Test historical loans skip the approval step"""
        text = "Member ID,Account Type,Loan Type,Balance\n1001,Loan,Gold,25000\n1001,Loan,,1000\n"
        preview = self.pipeline.preview(ImportKind.ACCOUNTS, text)
        
        gold, personal = preview.accounts
        assert gold.loan_type == LoanType.GOLD
        assert gold.status == AccountStatus.ACTIVE
        assert gold.account_number == "1001-GL-1"
        assert personal.loan_type == LoanType.PERSONAL
    
    def test_repeated_singleton_in_batch(self):
        """Test the second optional deposit for the same member is skipped"""
        text = "Member ID,Account Type,Opening Balance\n1001,Optional Deposit,10\n1001,Optional Deposit,20\n"
        preview = self.pipeline.preview(ImportKind.ACCOUNTS, text)
        
        assert len(preview.accounts) == 1
        assert preview.warnings[0].row_number == 3
    
    # Transactions
    
    def test_transaction_import(self):
        """Test applying rows in order against the working account"""
        account = self.accounts.open_account("1001", AccountType.OPTIONAL_DEPOSIT, Decimal('1000'),
                                             opening_date=date(2024, 1, 1))
        text = (
            "Account No,Type,Amount,Date,Narration,Mode,UTR\n"
            "1001-ODP-1,Credit,500,05/01/2024,Counter deposit,Cash,\n"
            "1001-ODP-1,Dr,200,06/01/2024,ATM,UPI,UTR123\n"
            "1001-ODP-1,Debit,5000,07/01/2024,Too much,,\n"
            "9999-ODP-1,Credit,10,,,,\n"
            "1001-ODP-1,Bonus,10,,,,\n"
        )
        preview = self.pipeline.preview(ImportKind.TRANSACTIONS, text)
        
        assert len(preview.accounts) == 1
        assert preview.accounts[0].balance == Decimal('1300')
        credit, debit = preview.transactions
        assert credit.date == date(2024, 1, 5)
        assert debit.payment_method == PaymentMethod.ONLINE
        assert debit.utr_number == "UTR123"
        assert debit.id.startswith("TX-IMP-")
        assert len(preview.ledger_entries) == 2
        
        assert [(e.row_number, e.category) for e in preview.errors] == [(4, "policy"), (6, "validation")]
        assert [(w.row_number, w.category) for w in preview.warnings] == [(5, "linkage")]
        
        report = self.pipeline.commit(preview)
        assert report.success
        stored = self.accounts.get_account(account.id)
        assert stored.balance == Decimal('1300')
        assert len(stored.transactions) == 3
        assert is_consistent(stored)
    
    def test_reimport_is_idempotent(self):
        """Test that committing the same sheet twice posts once"""
        account = self.accounts.open_account("1001", AccountType.OPTIONAL_DEPOSIT, Decimal('100'),
                                             opening_date=date(2024, 1, 1))
        text = "Account No,Type,Amount,Date\n1001-ODP-1,Credit,50,02/02/2024\n"
        
        self.pipeline.commit(self.pipeline.preview(ImportKind.TRANSACTIONS, text))
        self.pipeline.commit(self.pipeline.preview(ImportKind.TRANSACTIONS, text))
        
        stored = self.accounts.get_account(account.id)
        assert stored.balance == Decimal('150')
        assert len(stored.transactions) == 2
    
    # Staff
    
    def test_staff_import(self):
        """Test staff rows with member links and commission"""
        text = (
            "Name,Phone,Member ID,Branch,Commission\n"
            "Raju,9000011111,1001,BR1,250\n"
            "Sita,,,,\n"
            "Vikram,9000022222,7777,,\n"
            "Mohan,9000033333,,,-5\n"
        )
        preview = self.pipeline.preview(ImportKind.STAFF, text)
        
        assert len(preview.staff) == 1
        staff = preview.staff[0]
        assert staff.member_id == "1001"
        assert staff.branch_id == "BR1"
        assert staff.commission_fee == Decimal('250')
        assert staff.id.startswith("AGT-")
        assert [e.row_number for e in preview.errors] == [3, 5]
        assert [w.category for w in preview.warnings] == ["linkage"]
    
    def test_staff_reimport_updates_in_place(self):
        """Test that the same staff sheet committed twice keeps one record per person"""
        text = "Name,Phone,Branch\nRaju,90000 11111,BR1\n"
        self.pipeline.commit(self.pipeline.preview(ImportKind.STAFF, text))
        self.pipeline.commit(self.pipeline.preview(ImportKind.STAFF, text.replace("BR1", "BR2")))
        
        staff, = self.staff.list_staff()
        assert staff.branch_id == "BR2"
    
    # Commit
    
    def test_commit_persists_all_kinds(self):
        """Test a successful commit writes every kind and forgets the preview"""
        preview = self.pipeline.preview(
            ImportKind.MEMBERS, "Member ID,Full Name,Mobile No\n501,Nirmala,9000000501\n"
        )
        report = self.pipeline.commit(preview)
        
        assert report.success
        assert report.committed == {"members": 1, "accounts": 2, "transactions": 2, "ledger_entries": 1}
        assert self.pipeline.get_preview(preview.id) is None
        assert self.members.get_member("501").full_name == "Nirmala"
        assert len(self.accounts.get_member_accounts("501")) == 2
        assert self.ledger.get_entry("LDG-REG-501") is not None
        events = self.audit.get_events_by_type(AuditEventType.IMPORT_COMMITTED)
        assert events[-1].entity_id == preview.id
    
    def test_commit_failure_is_scoped_to_one_kind(self):
        """Test that one failing kind does not stop the others"""
        preview = self.pipeline.preview(
            ImportKind.MEMBERS, "Member ID,Full Name,Mobile No\n502,Usha,9000000502\n"
        )
        self.storage.failing_tables.add("ledger_entries")
        report = self.pipeline.commit(preview)
        
        assert not report.success
        assert [(f.kind, f.count) for f in report.failures] == [("ledger_entries", 1)]
        assert "ledger_entries unavailable" in str(report.failures[0])
        assert report.committed["members"] == 1
        assert report.committed["transactions"] == 2
        assert self.members.get_member("502") is not None
        assert self.pipeline.get_preview(preview.id) is preview
        
        self.storage.failing_tables.clear()
        assert self.pipeline.commit(preview).success
        assert self.ledger.get_entry("LDG-REG-502") is not None
    
    def test_uncommitted_previews_are_capped(self):
        """Test that only the most recent uncommitted previews are kept"""
        pipeline = ImportPipeline(self.members, self.accounts, self.ledger, self.staff, self.audit,
                                  SamitiConfig(import_max_pending_previews=2))
        first, second, third = [
            pipeline.preview(ImportKind.STAFF, f"Name,Phone\nAgent {n},900000000{n}\n") for n in range(3)
        ]
        
        assert pipeline.get_preview(first.id) is None
        assert pipeline.get_preview(second.id) is second
        assert pipeline.get_preview(third.id) is third
    
    def test_report_to_dict(self):
        """Test the serialized commit report"""
        preview = self.pipeline.preview(ImportKind.STAFF, "Name,Phone\nRaju,9000011111\n")
        self.storage.failing_tables.add("staff")
        data = self.pipeline.commit(preview).to_dict()
        
        assert data["success"] is False
        assert data["failures"][0]["kind"] == "staff"
        assert data["committed"] == {}
