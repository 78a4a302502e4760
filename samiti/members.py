"""
Member Management Module

Society members: registration with the mandatory Share Capital and
Compulsory Deposit accounts and the admission-fee ledger entry, phone
uniqueness among active members, and suspension/reactivation.
"""

from datetime import date, datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional
from enum import Enum

from .accounts import Account, AccountManager, build_account
from .audit import AuditTrail, AuditEventType
from .bookkeeping import LedgerEntry, SocietyLedger
from .config import SamitiConfig, get_config
from .dates import clamp_date
from .exceptions import LinkageError
from .ids import generate_id
from .logging_config import get_logger, log_action
from .products import AccountType
from .storage import StorageInterface, StorageRecord, parse_date
from .transactions import Transaction


class MemberStatus(Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    SUSPENDED = "Suspended"


@dataclass
class Member(StorageRecord):
    """A society member"""
    full_name: str
    phone: str
    join_date: date
    status: MemberStatus = MemberStatus.ACTIVE
    father_name: Optional[str] = None
    current_address: Optional[str] = None
    email: Optional[str] = None
    nominee_id: Optional[str] = None
    guarantor_ids: List[str] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Member':
        return cls(
            **cls._base_kwargs(data),
            full_name=data['full_name'],
            phone=data.get('phone') or "",
            join_date=parse_date(data['join_date']),
            status=MemberStatus(data.get('status', MemberStatus.ACTIVE.value)),
            father_name=data.get('father_name'),
            current_address=data.get('current_address'),
            email=data.get('email'),
            nominee_id=data.get('nominee_id'),
            guarantor_ids=list(data.get('guarantor_ids') or []),
        )


@dataclass
class RegistrationBundle:
    """Everything a registration creates, ready to persist"""
    member: Member
    accounts: List[Account]
    ledger_entries: List[LedgerEntry]

    @property
    def transactions(self) -> List[Transaction]:
        return [t for account in self.accounts for t in account.transactions]


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only, so "98765 43210" and "9876543210" compare equal"""
    return "".join(ch for ch in (phone or "") if ch.isdigit())


class MemberManager:
    """
    Manages member registration and status
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        society_ledger: SocietyLedger,
        audit_trail: AuditTrail,
        config: Optional[SamitiConfig] = None
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.society_ledger = society_ledger
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.members_table = "members"
        self.logger = get_logger("samiti.members")

    def build_registration(
        self,
        full_name: str,
        phone: str,
        join_date: Optional[date] = None,
        member_id: Optional[str] = None,
        father_name: Optional[str] = None,
        current_address: Optional[str] = None,
        email: Optional[str] = None,
        status: MemberStatus = MemberStatus.ACTIVE
    ) -> RegistrationBundle:
        """
        Build a member with its initial accounts and admission entry

        Ids of the synthesized accounts and transactions derive from the
        member id (``ACC-{id}-SHR-INIT``, ``TX-{id}-SHR-INIT``, ...), so
        building the same member twice yields the same entities. Nothing is
        persisted.
        """
        now = datetime.now(timezone.utc)
        joined = clamp_date(join_date or date.today(), self.config.min_system_date)
        member = Member(
            id=member_id or generate_id("MEM", now=now),
            created_at=now,
            updated_at=now,
            full_name=full_name,
            phone=phone or "",
            join_date=joined,
            status=status,
            father_name=father_name,
            current_address=current_address,
            email=email,
        )

        initial = [
            ("SHR", AccountType.SHARE_CAPITAL, self.config.fee_share_money, "Share Money"),
            ("CD", AccountType.COMPULSORY_DEPOSIT, self.config.fee_compulsory_deposit, "Compulsory Deposit"),
        ]
        accounts = [
            build_account(
                member.id, account_type, amount,
                opening_date=joined,
                account_id=f"ACC-{member.id}-{code}-INIT",
                opening_transaction_id=f"TX-{member.id}-{code}-INIT",
                opening_description=f"Initial {label} (Registration)",
                config=self.config
            )
            for code, account_type, amount, label in initial
        ]

        entry = self.society_ledger.registration_entry(member)
        return RegistrationBundle(
            member=member,
            accounts=accounts,
            ledger_entries=[entry] if entry else [],
        )

    def register_member(
        self,
        full_name: str,
        phone: str,
        join_date: Optional[date] = None,
        member_id: Optional[str] = None,
        father_name: Optional[str] = None,
        current_address: Optional[str] = None,
        email: Optional[str] = None,
        status: MemberStatus = MemberStatus.ACTIVE
    ) -> RegistrationBundle:
        """
        Register and persist a new member

        Raises:
            ValueError: If the name is empty, the id is taken, or an active
                member already uses the phone number
        """
        if not full_name or not full_name.strip():
            raise ValueError("Member name is required")
        if member_id and self.storage.exists(self.members_table, member_id):
            raise ValueError(f"Member {member_id} already exists")
        if phone and self.find_by_phone(phone):
            raise ValueError(f"Member with phone {phone} already exists")

        bundle = self.build_registration(
            full_name.strip(), phone, join_date, member_id,
            father_name, current_address, email, status
        )
        self.save_member(bundle.member)
        self.account_manager.save_accounts(bundle.accounts)
        self.society_ledger.record_many(bundle.ledger_entries)

        self.audit_trail.log_event(
            AuditEventType.MEMBER_REGISTERED, "member", bundle.member.id,
            metadata={"full_name": bundle.member.full_name, "join_date": bundle.member.join_date}
        )
        log_action(
            self.logger, "info", f"Registered member {bundle.member.full_name}",
            action="member_registered", resource=f"member:{bundle.member.id}"
        )
        return bundle

    def get_member(self, member_id: str) -> Optional[Member]:
        data = self.storage.load(self.members_table, member_id)
        return Member.from_dict(data) if data else None

    def list_members(self) -> List[Member]:
        members = [Member.from_dict(d) for d in self.storage.load_all(self.members_table)]
        members.sort(key=lambda m: (m.join_date, m.id))
        return members

    def find_by_phone(self, phone: str) -> Optional[Member]:
        """Active member with this phone number, if any"""
        wanted = normalize_phone(phone)
        if not wanted:
            return None
        for member in self.list_members():
            if member.is_active and normalize_phone(member.phone) == wanted:
                return member
        return None

    def save_member(self, member: Member) -> None:
        self.storage.save(self.members_table, member.id, member.to_dict())

    def save_members(self, members: List[Member]) -> int:
        return self.storage.save_many(self.members_table, [m.to_dict() for m in members])

    def _set_status(self, member_id: str, status: MemberStatus) -> Member:
        member = self.get_member(member_id)
        if not member:
            raise LinkageError(f"Member {member_id} not found", reference=member_id)
        previous = member.status
        member = replace(member, status=status, updated_at=datetime.now(timezone.utc))
        self.save_member(member)
        self.audit_trail.log_event(
            AuditEventType.MEMBER_STATUS_CHANGED, "member", member_id,
            metadata={"from": previous.value, "to": status.value}
        )
        return member

    def suspend_member(self, member_id: str) -> Member:
        """Suspend a member and park their active accounts as Dormant"""
        member = self._set_status(member_id, MemberStatus.SUSPENDED)
        parked = self.account_manager.set_member_accounts_dormant(member_id)
        log_action(
            self.logger, "info", f"Suspended member {member_id}",
            action="member_suspended", resource=f"member:{member_id}",
            extra={"accounts_parked": parked}
        )
        return member

    def activate_member(self, member_id: str) -> Member:
        """
        Activate a pending or suspended member and revive Dormant accounts

        Raises:
            ValueError: If another active member holds the same phone number
        """
        member = self.get_member(member_id)
        if not member:
            raise LinkageError(f"Member {member_id} not found", reference=member_id)
        clash = self.find_by_phone(member.phone)
        if clash and clash.id != member_id:
            raise ValueError(f"Member with phone {member.phone} already exists")

        member = self._set_status(member_id, MemberStatus.ACTIVE)
        self.account_manager.reactivate_member_accounts(member_id)
        return member
