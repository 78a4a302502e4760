"""
Import Reconciliation Pipeline Module

Turns pasted or uploaded spreadsheet text into entities that are safe to
persist: header detection, column aliasing, wide-format unpivoting,
per-row validation and member linking, canonicalization into full entity
shapes, deduplication by id and a per-kind batch commit.

Row problems never abort a batch. Validation failures are collected as
errors, unresolved references and cross-reference clashes as warnings, and
the offending rows are left out of the preview.
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypeVar

from ..accounts import Account, AccountManager, build_account
from ..audit import AuditTrail, AuditEventType
from ..bookkeeping import LedgerEntry, SocietyLedger
from ..config import SamitiConfig, get_config
from ..currency import decimal_from_string
from ..dates import clamp_date, normalize_date, to_date
from ..exceptions import LinkageError, PersistenceError, PolicyViolation, ValidationError
from ..ledger import apply_transaction
from ..logging_config import get_logger, log_action
from ..members import Member, MemberManager, normalize_phone
from ..policy import is_singleton
from ..products import AccountStatus, AccountType, LoanType, account_code, match_account_type, match_loan_type
from ..staff import StaffManager, StaffMember, new_staff_member
from ..transactions import (
    OPENING_BALANCE, PaymentMethod, Transaction, TransactionType, categorize, new_transaction
)
from .parsing import PasteGrid, parse_rows
from .schema import ImportKind, canonical_columns, detect_wide_columns, looks_like_header, map_headers


IMPORTED_OPENING_DESCRIPTION = "Opening Balance (Imported)"

_CREDIT_WORDS = frozenset({"credit", "cr", "c", "deposit", "receipt", "received"})
_DEBIT_WORDS = frozenset({"debit", "dr", "d", "withdrawal", "withdraw", "payment", "paid"})

Row = Tuple[int, Dict[str, str]]
T = TypeVar('T')


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass
class RowIssue:
    """One itemized problem found while previewing an import"""
    row_number: Optional[int]
    severity: Severity
    message: str
    category: str = "validation"  # validation, linkage, policy, cross_reference or date
    fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_number": self.row_number,
            "severity": self.severity.value,
            "category": self.category,
            "message": self.message,
            "fields": list(self.fields),
        }


@dataclass
class ImportPreview:
    """Canonicalized, deduplicated entities of one import, not yet persisted"""
    id: str
    kind: ImportKind
    created_at: datetime
    rows: List[Row] = field(default_factory=list)
    wide_format: bool = False
    members: List[Member] = field(default_factory=list)
    accounts: List[Account] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    ledger_entries: List[LedgerEntry] = field(default_factory=list)
    staff: List[StaffMember] = field(default_factory=list)
    errors: List[RowIssue] = field(default_factory=list)
    warnings: List[RowIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def counts(self) -> Dict[str, int]:
        return {
            "members": len(self.members),
            "accounts": len(self.accounts),
            "transactions": len(self.transactions),
            "ledger_entries": len(self.ledger_entries),
            "staff": len(self.staff),
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "preview_id": self.id,
            "kind": self.kind.value,
            "rows": len(self.rows),
            "wide_format": self.wide_format,
            "counts": self.counts(),
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


@dataclass
class CommitReport:
    """Outcome of committing a preview; failed kinds are reported, not rolled back"""
    preview_id: str
    committed: Dict[str, int] = field(default_factory=dict)
    failures: List[PersistenceError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preview_id": self.preview_id,
            "success": self.success,
            "committed": dict(self.committed),
            "failures": [
                {"kind": f.kind, "count": f.count, "message": str(f)} for f in self.failures
            ],
        }


@dataclass
class _BatchState:
    """Cross-row bookkeeping while one preview is being built"""
    phones: Dict[str, Tuple[int, Optional[str]]] = field(default_factory=dict)
    singletons: Dict[Tuple[str, AccountType], int] = field(default_factory=dict)
    series: Dict[Tuple[str, str], int] = field(default_factory=dict)
    accounts: Dict[str, Account] = field(default_factory=dict)


def dedupe_by_id(records: Sequence[T]) -> List[T]:
    """
    Drop repeated ids, keeping the last occurrence

    Survivors keep the position of their first occurrence so that dependent
    entities stay ordered after the entities they depend on.
    """
    latest: Dict[str, T] = {}
    for record in records:
        latest[record.id] = record
    ordered = []
    seen = set()
    for record in records:
        if record.id not in seen:
            seen.add(record.id)
            ordered.append(latest[record.id])
    return ordered


def parse_transaction_type(text: str) -> Optional[TransactionType]:
    lowered = (text or "").strip().lower()
    if lowered in _CREDIT_WORDS:
        return TransactionType.CREDIT
    if lowered in _DEBIT_WORDS:
        return TransactionType.DEBIT
    return None


def parse_payment_method(text: str) -> PaymentMethod:
    lowered = (text or "").strip().lower()
    for method in PaymentMethod:
        if lowered == method.value.lower():
            return method
    if lowered in ("upi", "neft", "imps", "bank", "transfer"):
        return PaymentMethod.ONLINE
    return PaymentMethod.CASH


class ImportPipeline:
    """
    Previews and commits spreadsheet imports

    A preview is a pure read of current state plus the pasted text; only
    ``commit`` writes. Previews are kept by id until committed; only the
    most recent ``import_max_pending_previews`` uncommitted ones are kept.
    """

    def __init__(
        self,
        member_manager: MemberManager,
        account_manager: AccountManager,
        society_ledger: SocietyLedger,
        staff_manager: StaffManager,
        audit_trail: AuditTrail,
        config: Optional[SamitiConfig] = None
    ):
        self.member_manager = member_manager
        self.account_manager = account_manager
        self.society_ledger = society_ledger
        self.staff_manager = staff_manager
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.previews: Dict[str, ImportPreview] = {}
        self.logger = get_logger("samiti.importer")

    # Parsing

    def extract_rows(self, kind: ImportKind, text: str,
                     grid: Optional[PasteGrid] = None) -> Tuple[List[Row], bool]:
        """
        Turn raw text into canonical rows

        A first line that looks like a header drives column aliasing (and,
        for account imports, wide-format unpivoting). Otherwise the text is
        pasted into the grid at its focused cell, using the kind's canonical
        column order.

        Returns:
            (rows, wide_format) where rows are (row number, field -> value)
        """
        lines = parse_rows(text)
        if not lines:
            return [], False

        headers = lines[0]
        if not looks_like_header(" ".join(headers)):
            grid = grid or PasteGrid(canonical_columns(kind))
            grid.paste(text)
            return grid.records(), False

        mapping = map_headers(kind, headers)
        wide_columns = detect_wide_columns(kind, headers)
        rows: List[Row] = []
        for row_number, values in enumerate(lines[1:], start=2):
            record = {
                field_name: values[index] if index < len(values) else ""
                for index, field_name in mapping.items()
            }
            if wide_columns:
                rows.extend((row_number, r) for r in self._unpivot(record, values, wide_columns))
            else:
                rows.append((row_number, record))
        return rows, bool(wide_columns)

    @staticmethod
    def _unpivot(record: Dict[str, str], values: List[str],
                 wide_columns: Dict[int, AccountType]) -> List[Dict[str, str]]:
        """One account row per account-type column holding a positive amount"""
        unpivoted = []
        for index, account_type in wide_columns.items():
            raw = values[index] if index < len(values) else ""
            try:
                amount = decimal_from_string(raw) if raw else None
            except ValueError:
                amount = None
            if amount is None or amount <= Decimal('0'):
                continue
            unpivoted.append({
                "member_id": record.get("member_id", ""),
                "account_type": account_type.value,
                "opening_balance": raw,
                "opening_date": record.get("opening_date", ""),
            })
        return unpivoted

    # Preview

    def preview(self, kind: ImportKind, text: str, grid: Optional[PasteGrid] = None) -> ImportPreview:
        """
        Validate and canonicalize an import without persisting anything

        Args:
            kind: Import target
            text: Pasted or uploaded tabular text
            grid: Grid to overlay header-less pastes onto (a fresh one when omitted)

        Returns:
            ImportPreview with deduplicated entities and itemized issues
        """
        kind = ImportKind(kind)
        rows, wide_format = self.extract_rows(kind, text, grid)
        preview = ImportPreview(
            id=f"IMP-{uuid.uuid4().hex[:12]}",
            kind=kind,
            created_at=datetime.now(timezone.utc),
            rows=rows,
            wide_format=wide_format,
        )

        stages = {
            ImportKind.MEMBERS: self._stage_member,
            ImportKind.ACCOUNTS: self._stage_account,
            ImportKind.TRANSACTIONS: self._stage_transaction,
            ImportKind.STAFF: self._stage_staff,
        }
        stage = stages[kind]
        state = _BatchState()
        for row_number, row in rows:
            try:
                stage(preview, state, row_number, row)
            except LinkageError as e:
                preview.warnings.append(RowIssue(
                    row_number, Severity.WARNING, str(e), "linkage",
                    [e.reference] if e.reference else []
                ))
            except PolicyViolation as e:
                preview.errors.append(RowIssue(row_number, Severity.ERROR, str(e), "policy"))
            except ValidationError as e:
                preview.errors.append(RowIssue(row_number, Severity.ERROR, str(e), "validation", e.fields))

        # Accounts touched by transaction rows carry every applied row
        preview.accounts.extend(state.accounts.values())

        preview.members = dedupe_by_id(preview.members)
        preview.accounts = dedupe_by_id(preview.accounts)
        preview.transactions = dedupe_by_id(preview.transactions)
        preview.ledger_entries = dedupe_by_id(preview.ledger_entries)
        preview.staff = dedupe_by_id(preview.staff)

        self.previews[preview.id] = preview
        while len(self.previews) > max(self.config.import_max_pending_previews, 1):
            expired = next(iter(self.previews))
            del self.previews[expired]
            self.logger.debug(f"Dropped uncommitted import preview {expired}")
        log_action(
            self.logger, "info", f"Previewed {kind.value} import of {len(rows)} row(s)",
            action="import_previewed", correlation_id=preview.id,
            extra={**preview.counts(), "errors": len(preview.errors), "warnings": len(preview.warnings)}
        )
        return preview

    def _warn(self, preview: ImportPreview, row_number: int, message: str,
              category: str = "cross_reference", fields: Sequence[str] = ()) -> None:
        preview.warnings.append(RowIssue(row_number, Severity.WARNING, message, category, list(fields)))

    def _amount(self, value: str, field_name: str, row_number: int) -> Decimal:
        if not value:
            raise ValidationError(f"Missing {field_name}", row_number, [field_name])
        try:
            return decimal_from_string(value)
        except ValueError as e:
            raise ValidationError(f"Invalid {field_name} '{value}'", row_number, [field_name]) from e

    def _row_date(self, preview: ImportPreview, row_number: int, value: str, field_name: str) -> date:
        """Normalized row date; today (with a warning) when unparseable"""
        today = clamp_date(date.today(), self.config.min_system_date)
        if not value:
            return today
        parsed = to_date(normalize_date(value, self.config.min_system_date))
        if parsed is None:
            self._warn(preview, row_number, f"Unrecognised date '{value}', using today", "date", [field_name])
            return today
        return parsed

    def _resolve_member(self, reference: str, row_number: int) -> Member:
        """Existing member by id, falling back to an active member's phone"""
        member = self.member_manager.get_member(reference)
        if member is None:
            member = self.member_manager.find_by_phone(reference)
        if member is None:
            raise LinkageError(f"Member with phone/ID {reference} not found", row_number, reference)
        return member

    def _stage_member(self, preview: ImportPreview, state: _BatchState, row_number: int,
                      row: Dict[str, str]) -> None:
        member_id = row.get("member_id") or None
        full_name = row.get("full_name", "")
        phone = row.get("phone", "")
        if not (member_id or full_name or phone):
            raise ValidationError(
                "Missing name, phone and member id", row_number, ["full_name", "phone", "member_id"]
            )

        if member_id and self.member_manager.get_member(member_id):
            self._warn(preview, row_number, f"Member {member_id} already exists; keeping the existing record",
                       fields=["member_id"])
            return

        phone_key = normalize_phone(phone)
        if phone_key:
            existing = self.member_manager.find_by_phone(phone)
            if existing:
                self._warn(preview, row_number,
                           f"Phone {phone} already belongs to member {existing.id}; keeping the existing record",
                           fields=["phone"])
                return
            first = state.phones.get(phone_key)
            if first is not None and (not member_id or first[1] != member_id):
                self._warn(preview, row_number, f"Phone {phone} repeats row {first[0]}; row skipped",
                           fields=["phone"])
                return
            state.phones.setdefault(phone_key, (row_number, member_id))

        joined = self._row_date(preview, row_number, row.get("join_date", ""), "join_date")
        bundle = self.member_manager.build_registration(
            full_name or f"Member {member_id or phone}",
            phone,
            join_date=joined,
            member_id=member_id,
            father_name=row.get("father_name") or None,
            current_address=row.get("current_address") or None,
            email=row.get("email") or None,
        )
        preview.members.append(bundle.member)
        preview.accounts.extend(bundle.accounts)
        preview.transactions.extend(bundle.transactions)
        preview.ledger_entries.extend(bundle.ledger_entries)

    def _stage_account(self, preview: ImportPreview, state: _BatchState, row_number: int,
                       row: Dict[str, str]) -> None:
        reference = row.get("member_id", "")
        if not reference:
            raise ValidationError("Missing member reference", row_number, ["member_id"])
        amount = self._amount(row.get("opening_balance", ""), "opening_balance", row_number)
        if amount < Decimal('0'):
            raise ValidationError("Opening balance cannot be negative", row_number, ["opening_balance"])
        member = self._resolve_member(reference, row_number)

        type_text = row.get("account_type", "")
        account_type = match_account_type(type_text)
        if account_type is None:
            account_type = AccountType.OPTIONAL_DEPOSIT
            if type_text:
                self._warn(preview, row_number,
                           f"Unknown account type '{type_text}', importing as Optional Deposit",
                           "validation", ["account_type"])
        loan_type = None
        if account_type == AccountType.LOAN:
            loan_type = match_loan_type(row.get("loan_type", "")) or LoanType.PERSONAL

        opened = self._row_date(preview, row_number, row.get("opening_date", ""), "opening_date")

        if is_singleton(account_type):
            key = (member.id, account_type)
            held = [a for a in self.account_manager.get_member_accounts(member.id)
                    if a.account_type == account_type and a.status != AccountStatus.CLOSED]
            if held:
                self._credit_existing(preview, state, row_number, held[0], amount, opened)
                return
            if key in state.singletons:
                self._warn(preview, row_number,
                           f"Member {member.id} already has a {account_type.value} account "
                           f"from row {state.singletons[key]}; row skipped",
                           fields=["account_type"])
                return
            state.singletons[key] = row_number

        rate = None
        if row.get("interest_rate"):
            rate = self._amount(row["interest_rate"], "interest_rate", row_number)

        series_key = (member.id, account_code(account_type, loan_type))
        series = state.series.get(series_key) or self.account_manager.next_series(
            member.id, account_type, loan_type
        )
        state.series[series_key] = series + 1

        # Historical balances are migrated as-is: no approval step, no society ledger entries
        account = build_account(
            member.id, account_type, amount,
            opening_date=opened,
            loan_type=loan_type,
            interest_rate=rate,
            status=AccountStatus.ACTIVE,
            series=series,
            opening_description=IMPORTED_OPENING_DESCRIPTION,
            config=self.config
        )
        preview.accounts.append(account)
        preview.transactions.extend(account.transactions)

    def _credit_existing(self, preview: ImportPreview, state: _BatchState, row_number: int,
                         held: Account, amount: Decimal, opened: date) -> None:
        """Credit an imported balance to a singleton account the member already holds"""
        account = state.accounts.get(held.id, held)
        if amount == Decimal('0'):
            self._warn(preview, row_number,
                       f"Member {account.member_id} already holds {account.account_number}; "
                       f"nothing to import", fields=["account_type"])
            return

        fingerprint = "|".join([account.id, OPENING_BALANCE, opened.isoformat(), str(amount), str(row_number)])
        transaction = new_transaction(
            account.id, TransactionType.CREDIT, amount, opened,
            OPENING_BALANCE, IMPORTED_OPENING_DESCRIPTION,
            transaction_id=f"TX-IMP-{hashlib.sha256(fingerprint.encode()).hexdigest()[:16]}",
        )
        updated = apply_transaction(account, transaction, self.config.min_system_date)
        state.accounts[updated.id] = updated
        self._warn(preview, row_number,
                   f"Member {account.member_id} already holds {account.account_number}; "
                   f"crediting the imported balance to it", fields=["account_type"])

        applied = updated.transactions[-1] if updated is not account else transaction
        preview.accounts.append(updated)
        preview.transactions.append(applied)

    def _working_account(self, state: _BatchState, reference: str, row_number: int) -> Account:
        """Account by id or account number, reusing the copy earlier rows updated"""
        for account in state.accounts.values():
            if reference in (account.id, account.account_number):
                return account
        account = (self.account_manager.get_account(reference)
                   or self.account_manager.find_by_account_number(reference))
        if account is None:
            raise LinkageError(f"Account {reference} not found", row_number, reference)
        return account

    def _stage_transaction(self, preview: ImportPreview, state: _BatchState, row_number: int,
                           row: Dict[str, str]) -> None:
        missing = [f for f in ("account_no", "type", "amount") if not row.get(f)]
        if missing:
            raise ValidationError(f"Missing {', '.join(missing)}", row_number, missing)
        transaction_type = parse_transaction_type(row["type"])
        if transaction_type is None:
            raise ValidationError(f"Unknown transaction type '{row['type']}'", row_number, ["type"])
        amount = self._amount(row["amount"], "amount", row_number)
        if amount <= Decimal('0'):
            raise ValidationError("Amount must be positive", row_number, ["amount"])

        account = self._working_account(state, row["account_no"], row_number)
        txn_date = self._row_date(preview, row_number, row.get("date", ""), "date")
        description = row.get("description", "")
        utr = row.get("utr") or None

        # Content-derived id: re-importing the same sheet yields the same transactions
        fingerprint = "|".join([
            account.id, txn_date.isoformat(), str(amount), transaction_type.value,
            description, utr or "", str(row_number),
        ])
        transaction = new_transaction(
            account.id, transaction_type, amount, txn_date,
            categorize(account.is_loan, transaction_type, description),
            description,
            transaction_id=f"TX-IMP-{hashlib.sha256(fingerprint.encode()).hexdigest()[:16]}",
            payment_method=parse_payment_method(row.get("payment_method", "")),
            utr_number=utr,
        )
        updated = apply_transaction(account, transaction, self.config.min_system_date)
        state.accounts[updated.id] = updated

        applied = updated.transactions[-1] if updated is not account else transaction
        preview.transactions.append(applied)
        entry = self.society_ledger.entry_for_transaction(updated, applied)
        if entry:
            preview.ledger_entries.append(entry)

    def _stage_staff(self, preview: ImportPreview, state: _BatchState, row_number: int,
                     row: Dict[str, str]) -> None:
        missing = [f for f in ("name", "phone") if not row.get(f)]
        if missing:
            raise ValidationError(f"Missing {', '.join(missing)}", row_number, missing)

        member_id = None
        if row.get("member_id"):
            member_id = self._resolve_member(row["member_id"], row_number).id
        commission = None
        if row.get("commission_fee"):
            commission = self._amount(row["commission_fee"], "commission_fee", row_number)
            if commission < Decimal('0'):
                raise ValidationError("Commission fee cannot be negative", row_number, ["commission_fee"])

        # Keyed by person so that re-importing the sheet updates instead of duplicating
        fingerprint = f"{normalize_phone(row['phone'])}|{row['name'].strip().lower()}"
        preview.staff.append(new_staff_member(
            row["name"], row["phone"],
            member_id=member_id,
            branch_id=row.get("branch_id") or None,
            commission_fee=commission,
            staff_id=f"AGT-{hashlib.sha256(fingerprint.encode()).hexdigest()[:16]}",
        ))

    # Commit

    def get_preview(self, preview_id: str) -> Optional[ImportPreview]:
        return self.previews.get(preview_id)

    def commit(self, preview: ImportPreview) -> CommitReport:
        """
        Persist a preview as per-kind batch upserts

        Kinds are written members first, then accounts, transactions, ledger
        entries and staff. A failing kind is reported with its record count
        and the remaining kinds are still attempted; nothing already written
        is rolled back. Every upsert is keyed by entity id, so committing the
        same preview again is safe.

        Returns:
            CommitReport with per-kind counts and failures
        """
        report = CommitReport(preview_id=preview.id)
        batches = [
            ("members", preview.members, self.member_manager.save_members),
            ("accounts", preview.accounts, self.account_manager.upsert_account_records),
            ("transactions", preview.transactions, self.account_manager.upsert_transactions),
            ("ledger_entries", preview.ledger_entries, self.society_ledger.record_many),
            ("staff", preview.staff, self.staff_manager.save_many),
        ]
        for kind, records, upsert in batches:
            if not records:
                continue
            try:
                report.committed[kind] = upsert(records)
            except Exception as e:
                failure = PersistenceError(kind, len(records), e)
                report.failures.append(failure)
                log_action(
                    self.logger, "error", str(failure),
                    action="import_commit_failed", correlation_id=preview.id,
                    extra={"kind": kind, "count": len(records)}
                )

        self.audit_trail.log_event(
            AuditEventType.IMPORT_COMMITTED, "import", preview.id,
            metadata={
                "kind": preview.kind.value,
                "committed": report.committed,
                "failed": [f.kind for f in report.failures],
            }
        )
        if report.success:
            self.previews.pop(preview.id, None)
        log_action(
            self.logger, "info" if report.success else "warning",
            f"Committed {preview.kind.value} import",
            action="import_committed", correlation_id=preview.id,
            extra=report.committed
        )
        return report
