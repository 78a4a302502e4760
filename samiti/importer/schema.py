"""
Import target schemas and header resolution.

Each import target has a canonical field list (whose order is also the
column order for header-less pastes) and an alias table mapping normalized
spreadsheet headers onto canonical fields. Headers are normalized by
lowercasing and stripping everything that is not a letter or digit, so
"Mobile No." becomes "mobileno".
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..products import AccountType, match_account_type


class ImportKind(Enum):
    MEMBERS = "members"
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    STAFF = "staff"


CANONICAL_COLUMNS: Dict[ImportKind, Tuple[str, ...]] = {
    ImportKind.MEMBERS: ("member_id", "full_name", "father_name", "phone",
                         "current_address", "join_date", "email"),
    ImportKind.ACCOUNTS: ("member_id", "account_type", "opening_balance", "opening_date"),
    ImportKind.TRANSACTIONS: ("account_no", "type", "amount", "date",
                              "description", "payment_method", "utr"),
    ImportKind.STAFF: ("name", "phone", "member_id", "branch_id", "commission_fee"),
}

_MEMBER_REF = ("memberid", "legacyid", "id", "mno", "memberno", "membershipno",
               "memberphone", "membermobile")

ALIASES: Dict[ImportKind, Dict[str, Tuple[str, ...]]] = {
    ImportKind.MEMBERS: {
        "member_id": ("memberid", "legacyid", "id", "mno", "memberno", "membershipno"),
        "full_name": ("fullname", "name", "membername", "customername"),
        "father_name": ("fathername", "fathersname", "guardianname", "husbandname"),
        "phone": ("phone", "phoneno", "phonenumber", "mobile", "mobileno",
                  "mobilenumber", "contact", "contactno"),
        "current_address": ("currentaddress", "address", "presentaddress"),
        "join_date": ("joindate", "joiningdate", "dateofjoining", "doj", "date"),
        "email": ("email", "emailid", "emailaddress", "mail"),
    },
    ImportKind.ACCOUNTS: {
        "member_id": _MEMBER_REF + ("phone", "mobile", "mobileno"),
        "account_type": ("accounttype", "type", "product", "producttype"),
        "opening_balance": ("openingbalance", "balance", "amount", "principal"),
        "opening_date": ("openingdate", "opendate", "date", "startdate"),
        "loan_type": ("loantype", "loancategory"),
        "interest_rate": ("interestrate", "rate", "roi"),
    },
    ImportKind.TRANSACTIONS: {
        "account_no": ("accountno", "accountnumber", "account", "accno", "acno", "accountid"),
        "type": ("type", "txntype", "transactiontype", "drcr", "crdr"),
        "amount": ("amount", "amt", "txnamount"),
        "date": ("date", "txndate", "transactiondate", "valuedate"),
        "description": ("description", "narration", "remarks", "particulars", "details"),
        "payment_method": ("paymentmethod", "mode", "paymentmode"),
        "utr": ("utr", "utrno", "utrnumber", "reference", "refno"),
    },
    ImportKind.STAFF: {
        "name": ("name", "fullname", "staffname", "agentname"),
        "phone": ("phone", "phoneno", "mobile", "mobileno", "contact"),
        "member_id": ("memberid", "mno", "memberno"),
        "branch_id": ("branchid", "branch", "branchcode"),
        "commission_fee": ("commissionfee", "commission", "fee"),
    },
}

# A first line containing any of these (case-insensitive) is read as a
# header row. This misfires on data rows that happen to contain a keyword,
# e.g. a name like "David" contains "id".
HEADER_KEYWORDS = (
    "name", "id", "phone", "mobile", "date", "type", "amount", "balance",
    "account", "member", "email", "address", "father", "utr", "branch",
    "commission", "narration", "description",
)

_NON_ALNUM = re.compile(r'[^a-z0-9]')


def normalize_header(header: str) -> str:
    return _NON_ALNUM.sub('', header.lower())


def resolve_field(kind: ImportKind, header: str) -> Optional[str]:
    """Canonical field a header maps to, or None when it matches no alias"""
    normalized = normalize_header(header)
    if not normalized:
        return None
    for field_name, aliases in ALIASES[kind].items():
        if normalized in aliases or normalized == normalize_header(field_name):
            return field_name
    return None


def looks_like_header(line: str) -> bool:
    lowered = line.lower()
    return any(keyword in lowered for keyword in HEADER_KEYWORDS)


def map_headers(kind: ImportKind, headers: Sequence[str]) -> Dict[int, str]:
    """Column index -> canonical field for every header that resolves"""
    mapping = {}
    for index, header in enumerate(headers):
        field_name = resolve_field(kind, header)
        if field_name and field_name not in mapping.values():
            mapping[index] = field_name
    return mapping


def detect_wide_columns(kind: ImportKind, headers: Sequence[str]) -> Dict[int, AccountType]:
    """
    Columns that each name an account type, for wide-format account sheets

    Only headers that do not resolve to a canonical field are considered.
    Returns an empty mapping unless at least two different account types
    are named.
    """
    if kind != ImportKind.ACCOUNTS:
        return {}
    columns = {}
    for index, header in enumerate(headers):
        if resolve_field(kind, header):
            continue
        account_type = match_account_type(normalize_header(header))
        if account_type:
            columns[index] = account_type
    if len(set(columns.values())) < 2:
        return {}
    return columns


def canonical_columns(kind: ImportKind) -> List[str]:
    return list(CANONICAL_COLUMNS[kind])
