"""
Data Repair Module

Recovery tooling for damaged records. Generated ids embed their creation
time in epoch milliseconds; the scanner compares that timestamp with the
date recorded on the entity and proposes corrections where they diverge by
more than a month. Corrections are only written on explicit confirmation.
The backfill synthesizes a missing opening transaction for accounts whose
balance has no history behind it.
"""

import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .dates import clamp_date
from .logging_config import get_logger, log_action
from .members import Member, MemberManager
from .transactions import OPENING_BALANCE, Transaction, TransactionType, new_transaction


CORRUPTION_THRESHOLD_DAYS = 30
BACKFILL_DESCRIPTION = "Opening Balance (Backfilled)"

_EPOCH_MILLIS = re.compile(r'(?<!\d)(\d{13})(?!\d)')


@dataclass(frozen=True)
class DateCorrection:
    """A proposed fix for one entity's recorded date"""
    entity_type: str
    entity_id: str
    field: str
    recorded: Optional[date]
    proposed: date
    divergence_days: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "field": self.field,
            "recorded": self.recorded.isoformat() if self.recorded else None,
            "proposed": self.proposed.isoformat(),
            "divergence_days": self.divergence_days,
        }


def extract_timestamp_from_id(entity_id: str) -> Optional[date]:
    """
    Creation date embedded in a generated id

    Looks for the first standalone 13-digit run and reads it as epoch
    milliseconds (UTC). Returns None for ids without one.
    """
    match = _EPOCH_MILLIS.search(entity_id or "")
    if not match:
        return None
    try:
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        return None


def _propose(entity_type: str, entity_id: str, field_name: str, recorded: Optional[date],
             threshold_days: int, min_date: Optional[date]) -> Optional[DateCorrection]:
    stamped = extract_timestamp_from_id(entity_id)
    if stamped is None:
        return None
    proposed = clamp_date(stamped, min_date)
    if recorded is None:
        return DateCorrection(entity_type, entity_id, field_name, None, proposed, None)
    divergence = abs((recorded - proposed).days)
    if divergence <= threshold_days:
        return None
    return DateCorrection(entity_type, entity_id, field_name, recorded, proposed, divergence)


def scan_for_date_corruption(
    members: Iterable[Member],
    accounts: Iterable[Account],
    threshold_days: int = CORRUPTION_THRESHOLD_DAYS,
    min_date: Optional[date] = None
) -> List[DateCorrection]:
    """
    Propose date fixes where a recorded date disagrees with the id timestamp

    Divergences of up to ``threshold_days`` are legitimate backdating and
    are left alone. Entities whose id carries no timestamp are skipped.

    Returns:
        Proposed corrections; nothing is modified
    """
    corrections = []
    for member in members:
        proposal = _propose("member", member.id, "join_date", member.join_date, threshold_days, min_date)
        if proposal:
            corrections.append(proposal)
    for account in accounts:
        proposal = _propose("account", account.id, "opening_date", account.opening_date,
                            threshold_days, min_date)
        if proposal:
            corrections.append(proposal)
    return corrections


def backfill_missing_transactions(accounts: Iterable[Account],
                                  min_date: Optional[date] = None) -> List[Account]:
    """
    Give history-less accounts with a nonzero balance an opening transaction

    The synthesized transaction has id ``TX-{account id}-BACKFILL``, carries
    the whole balance and is dated on the account's opening date. Balances
    are left untouched, so replaying the new history reproduces them.

    Returns:
        Updated copies of the accounts that were backfilled
    """
    backfilled = []
    for account in accounts:
        if account.transactions or account.balance == Decimal('0'):
            continue
        positive = account.balance > Decimal('0')
        if account.is_loan:
            txn_type = TransactionType.DEBIT if positive else TransactionType.CREDIT
        else:
            txn_type = TransactionType.CREDIT if positive else TransactionType.DEBIT
        opened = account.opening_date or extract_timestamp_from_id(account.id) or date.today()
        transaction = new_transaction(
            account.id, txn_type, abs(account.balance), clamp_date(opened, min_date),
            OPENING_BALANCE, BACKFILL_DESCRIPTION,
            transaction_id=f"TX-{account.id}-BACKFILL"
        )
        backfilled.append(replace(account, transactions=[transaction]))
    return backfilled


class RepairService:
    """
    Runs repairs against persisted data
    """

    def __init__(
        self,
        member_manager: MemberManager,
        account_manager: AccountManager,
        audit_trail: AuditTrail
    ):
        self.member_manager = member_manager
        self.account_manager = account_manager
        self.audit_trail = audit_trail
        self.config = account_manager.config
        self.logger = get_logger("samiti.repair")

    def scan(self) -> List[DateCorrection]:
        return scan_for_date_corruption(
            self.member_manager.list_members(),
            self.account_manager.list_accounts(),
            min_date=self.config.min_system_date
        )

    def apply_corrections(self, corrections: Iterable[DateCorrection], confirmed: bool = False) -> int:
        """
        Write proposed date corrections

        Args:
            corrections: Proposals from ``scan``
            confirmed: Must be True; corrections are never applied implicitly

        Returns:
            Number of entities updated

        Raises:
            ValueError: If not confirmed
        """
        if not confirmed:
            raise ValueError("Date corrections must be explicitly confirmed")

        applied = 0
        now = datetime.now(timezone.utc)
        for correction in corrections:
            if correction.entity_type == "member":
                member = self.member_manager.get_member(correction.entity_id)
                if member is None:
                    continue
                self.member_manager.save_member(
                    replace(member, join_date=correction.proposed, updated_at=now)
                )
            elif correction.entity_type == "account":
                account = self.account_manager.get_account(correction.entity_id)
                if account is None:
                    continue
                self.account_manager.upsert_account_records(
                    [replace(account, opening_date=correction.proposed, updated_at=now)]
                )
            else:
                continue

            self.audit_trail.log_event(
                AuditEventType.DATA_REPAIRED, correction.entity_type, correction.entity_id,
                metadata={"repair": "date_correction", **correction.to_dict()}
            )
            applied += 1

        log_action(
            self.logger, "info", f"Applied {applied} date correction(s)",
            action="repair_applied", extra={"repair": "date_correction", "count": applied}
        )
        return applied

    def backfill(self) -> List[Transaction]:
        """Backfill and persist opening transactions for history-less accounts"""
        accounts = backfill_missing_transactions(
            self.account_manager.list_accounts(), self.config.min_system_date
        )
        transactions = [t for account in accounts for t in account.transactions]
        if transactions:
            self.account_manager.upsert_transactions(transactions)
        for account in accounts:
            self.audit_trail.log_event(
                AuditEventType.DATA_REPAIRED, "account", account.id,
                metadata={"repair": "backfill", "amount": account.balance}
            )
        log_action(
            self.logger, "info", f"Backfilled {len(transactions)} opening transaction(s)",
            action="repair_applied", extra={"repair": "backfill", "count": len(transactions)}
        )
        return transactions
