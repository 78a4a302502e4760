"""
Staff Module

Field agents and office staff who collect deposits and installments. A
staff record may link to the member profile of the same person.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from enum import Enum

from .ids import generate_id
from .storage import StorageInterface, StorageRecord, parse_decimal


class StaffStatus(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


@dataclass
class StaffMember(StorageRecord):
    name: str
    phone: str
    member_id: Optional[str] = None
    branch_id: Optional[str] = None
    commission_fee: Optional[Decimal] = None
    status: StaffStatus = StaffStatus.ACTIVE
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StaffMember':
        return cls(
            **cls._base_kwargs(data),
            name=data['name'],
            phone=data.get('phone') or "",
            member_id=data.get('member_id'),
            branch_id=data.get('branch_id'),
            commission_fee=parse_decimal(data.get('commission_fee')),
            status=StaffStatus(data.get('status', StaffStatus.ACTIVE.value)),
        )


def new_staff_member(name: str, phone: str, member_id: Optional[str] = None,
                     branch_id: Optional[str] = None,
                     commission_fee: Optional[Decimal] = None,
                     staff_id: Optional[str] = None) -> StaffMember:
    now = datetime.now(timezone.utc)
    if commission_fee is not None and commission_fee < Decimal('0'):
        raise ValueError("Commission fee cannot be negative")
    return StaffMember(
        id=staff_id or generate_id("AGT", now=now),
        created_at=now,
        updated_at=now,
        name=name,
        phone=phone,
        member_id=member_id,
        branch_id=branch_id,
        commission_fee=commission_fee,
    )


class StaffManager:
    """Stores staff records"""
    
    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.staff_table = "staff"
    
    def save_many(self, staff: Iterable[StaffMember]) -> int:
        return self.storage.save_many(self.staff_table, [s.to_dict() for s in staff])
    
    def get(self, staff_id: str) -> Optional[StaffMember]:
        data = self.storage.load(self.staff_table, staff_id)
        return StaffMember.from_dict(data) if data else None
    
    def list_staff(self) -> List[StaffMember]:
        return [StaffMember.from_dict(d) for d in self.storage.load_all(self.staff_table)]
