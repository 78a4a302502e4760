"""
FastAPI REST API Module

HTTP surface over the society core: member registration and status,
account opening and postings, interest and maturity runs, spreadsheet
imports, financial calculators and data repair. Runs on port 8090.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .accounts import Account, AccountManager
from .audit import AuditTrail
from .bookkeeping import SocietyLedger
from .calculators import (
    UNBOUNDED, calculate_emi, calculate_flat_emi, fd_maturity,
    rd_maturity_daily, rd_maturity_monthly, solve_tenure
)
from .config import SamitiConfig, get_config
from .currency import decimal_from_string
from .dates import parse_flexible_date
from .exceptions import LinkageError
from .importer import ImportKind, ImportPipeline, PasteGrid
from .importer.schema import canonical_columns
from .interest import InterestEngine
from .ledger import derive_balance
from .logging_config import setup_logging
from .members import Member, MemberManager
from .products import AccountType, LoanType, RDFrequency
from .repair import RepairService
from .staff import StaffManager
from .storage import InMemoryStorage, StorageInterface
from .transactions import PaymentMethod, Transaction, TransactionType


# Pydantic models for API requests
class RegisterMemberRequest(BaseModel):
    full_name: str
    phone: str
    join_date: Optional[str] = None
    member_id: Optional[str] = None
    father_name: Optional[str] = None
    current_address: Optional[str] = None
    email: Optional[str] = None


class OpenAccountRequest(BaseModel):
    member_id: str
    account_type: str = Field(..., description="Account type (Optional Deposit, Fixed Deposit, Loan, ...)")
    amount: str = Field("0", description="Decimal amount as string")
    opening_date: Optional[str] = None
    loan_type: Optional[str] = None
    interest_rate: Optional[str] = None
    term_months: Optional[int] = None
    tenure_days: Optional[int] = None
    rd_frequency: Optional[str] = None
    guarantors: List[str] = Field(default_factory=list)
    payment_method: str = "Cash"
    utr_number: Optional[str] = None


class PostTransactionRequest(BaseModel):
    type: str = Field(..., description="credit or debit")
    amount: str = Field(..., description="Decimal amount as string")
    date: Optional[str] = None
    description: str = ""
    payment_method: str = "Cash"
    cash_amount: Optional[str] = None
    online_amount: Optional[str] = None
    utr_number: Optional[str] = None
    transaction_id: Optional[str] = None


class CloseAccountRequest(BaseModel):
    closing_date: Optional[str] = None
    target_account_id: Optional[str] = None


class RunRequest(BaseModel):
    as_of: Optional[str] = None


class ImportPreviewRequest(BaseModel):
    text: str
    focus_row: int = 0
    focus_col: int = 0


class ConfirmRequest(BaseModel):
    confirm: bool = False


# Society System Context
class SocietySystem:
    """Society core with all components wired to one storage"""

    def __init__(self, storage: Optional[StorageInterface] = None, config: Optional[SamitiConfig] = None):
        self.config = config or get_config()
        self.storage = storage or InMemoryStorage()

        self.audit_trail = AuditTrail(self.storage)
        self.society_ledger = SocietyLedger(self.storage, self.config)
        self.account_manager = AccountManager(
            self.storage, self.society_ledger, self.audit_trail, self.config
        )
        self.member_manager = MemberManager(
            self.storage, self.account_manager, self.society_ledger, self.audit_trail, self.config
        )
        self.staff_manager = StaffManager(self.storage)
        self.interest_engine = InterestEngine(
            self.account_manager, self.member_manager, self.society_ledger,
            self.audit_trail, self.config
        )
        self.import_pipeline = ImportPipeline(
            self.member_manager, self.account_manager, self.society_ledger,
            self.staff_manager, self.audit_trail, self.config
        )
        self.repair_service = RepairService(self.member_manager, self.account_manager, self.audit_trail)


# Global society system instance
society_system = SocietySystem()


# Dependency to get society system
def get_society_system() -> SocietySystem:
    return society_system


def _decimal(value: Optional[str], name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return decimal_from_string(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


def _date(value: Optional[str], name: str = "date") -> Optional[date]:
    if not value:
        return None
    parsed = parse_flexible_date(value)
    if parsed is None:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")
    return parsed


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _member_view(member: Member) -> Dict[str, Any]:
    return {
        "id": member.id,
        "full_name": member.full_name,
        "phone": member.phone,
        "join_date": member.join_date.isoformat(),
        "status": member.status.value,
        "father_name": member.father_name,
        "current_address": member.current_address,
        "email": member.email,
    }


def _transaction_view(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "date": transaction.date.isoformat(),
        "amount": str(transaction.amount),
        "type": transaction.type.value,
        "category": transaction.category,
        "description": transaction.description,
        "payment_method": transaction.payment_method.value,
        "utr_number": transaction.utr_number,
    }


def _account_view(account: Account, include_transactions: bool = False) -> Dict[str, Any]:
    view = {
        "id": account.id,
        "member_id": account.member_id,
        "account_number": account.account_number,
        "account_type": account.account_type.value,
        "loan_type": account.loan_type.value if account.loan_type else None,
        "status": account.status.value,
        "balance": str(account.balance),
        "derived_balance": str(derive_balance(account)),
        "interest_rate": str(account.interest_rate),
        "original_amount": str(account.original_amount),
        "opening_date": account.opening_date.isoformat() if account.opening_date else None,
        "term_months": account.term_months,
        "tenure_days": account.tenure_days,
        "emi": _money(account.emi),
        "maturity_date": account.maturity_date.isoformat() if account.maturity_date else None,
        "last_interest_post_date": (
            account.last_interest_post_date.isoformat() if account.last_interest_post_date else None
        ),
        "guarantors": list(account.guarantors),
    }
    if include_transactions:
        view["transactions"] = [_transaction_view(t) for t in account.transactions]
    return view


# Members
members_router = APIRouter()


@members_router.post("", status_code=status.HTTP_201_CREATED)
async def register_member(
    request: RegisterMemberRequest,
    system: SocietySystem = Depends(get_society_system)
):
    """Register a member with the mandatory share capital and compulsory deposit accounts"""
    try:
        bundle = system.member_manager.register_member(
            full_name=request.full_name,
            phone=request.phone,
            join_date=_date(request.join_date, "join_date"),
            member_id=request.member_id,
            father_name=request.father_name,
            current_address=request.current_address,
            email=request.email
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "member_id": bundle.member.id,
        "account_ids": [a.id for a in bundle.accounts],
        "message": "Member registered successfully"
    }


@members_router.get("/{member_id}")
async def get_member(
    member_id: str,
    system: SocietySystem = Depends(get_society_system)
):
    """Get member with their accounts"""
    member = system.member_manager.get_member(member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")

    view = _member_view(member)
    view["accounts"] = [_account_view(a) for a in system.account_manager.get_member_accounts(member_id)]
    return view


@members_router.post("/{member_id}/suspend")
async def suspend_member(
    member_id: str,
    system: SocietySystem = Depends(get_society_system)
):
    """Suspend a member; their active accounts become dormant"""
    try:
        member = system.member_manager.suspend_member(member_id)
    except LinkageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _member_view(member)


@members_router.post("/{member_id}/activate")
async def activate_member(
    member_id: str,
    system: SocietySystem = Depends(get_society_system)
):
    """Activate a pending or suspended member"""
    try:
        member = system.member_manager.activate_member(member_id)
    except LinkageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _member_view(member)


# Accounts
accounts_router = APIRouter()


@accounts_router.post("", status_code=status.HTTP_201_CREATED)
async def open_account(
    request: OpenAccountRequest,
    system: SocietySystem = Depends(get_society_system)
):
    """Open an account for an existing member"""
    try:
        account = system.account_manager.open_account(
            member_id=request.member_id,
            account_type=AccountType(request.account_type),
            amount=_decimal(request.amount, "amount") or Decimal('0'),
            opening_date=_date(request.opening_date, "opening_date"),
            loan_type=LoanType(request.loan_type) if request.loan_type else None,
            interest_rate=_decimal(request.interest_rate, "interest_rate"),
            term_months=request.term_months,
            tenure_days=request.tenure_days,
            rd_frequency=RDFrequency(request.rd_frequency) if request.rd_frequency else None,
            guarantors=request.guarantors,
            payment_method=PaymentMethod(request.payment_method),
            utr_number=request.utr_number
        )
    except LinkageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "account_id": account.id,
        "account_number": account.account_number,
        "status": account.status.value,
        "message": "Account opened successfully"
    }


@accounts_router.get("/{account_id}")
async def get_account(
    account_id: str,
    system: SocietySystem = Depends(get_society_system)
):
    """Get account details, history and the balance derived by replay"""
    account = system.account_manager.get_account(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return _account_view(account, include_transactions=True)


@accounts_router.post("/{account_id}/transactions", status_code=status.HTTP_201_CREATED)
async def post_transaction(
    account_id: str,
    request: PostTransactionRequest,
    system: SocietySystem = Depends(get_society_system)
):
    """Post a manual credit or debit"""
    try:
        transaction = system.account_manager.post_transaction(
            account_id=account_id,
            transaction_type=TransactionType(request.type.lower()),
            amount=_decimal(request.amount, "amount"),
            txn_date=_date(request.date),
            description=request.description,
            payment_method=PaymentMethod(request.payment_method),
            cash_amount=_decimal(request.cash_amount, "cash_amount"),
            online_amount=_decimal(request.online_amount, "online_amount"),
            utr_number=request.utr_number,
            transaction_id=request.transaction_id
        )
    except LinkageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    account = system.account_manager.get_account(account_id)
    return {
        "transaction": _transaction_view(transaction),
        "balance": str(account.balance),
    }


@accounts_router.post("/{account_id}/approve")
async def approve_loan(
    account_id: str,
    system: SocietySystem = Depends(get_society_system)
):
    """Approve a pending loan"""
    try:
        account = system.account_manager.approve_loan(account_id)
    except LinkageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _account_view(account)


@accounts_router.post("/{account_id}/close")
async def close_account(
    account_id: str,
    request: CloseAccountRequest = CloseAccountRequest(),
    system: SocietySystem = Depends(get_society_system)
):
    """Close a fixed or recurring deposit early, paying out to an optional deposit"""
    try:
        account, debit, credit = system.account_manager.close_early(
            account_id,
            closing_date=_date(request.closing_date, "closing_date"),
            target_account_id=request.target_account_id
        )
    except LinkageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "account": _account_view(account),
        "debit": _transaction_view(debit) if debit else None,
        "credit": _transaction_view(credit) if credit else None,
        "target_account_id": credit.account_id if credit else None,
    }


# Scheduled runs
runs_router = APIRouter()


@runs_router.post("/interest/run")
async def run_interest(
    request: RunRequest = RunRequest(),
    system: SocietySystem = Depends(get_society_system)
):
    """Post all interest due up to the given date (today by default)"""
    postings = system.interest_engine.run(_date(request.as_of, "as_of"))
    return {"postings": postings, "total": sum(postings.values())}


@runs_router.post("/maturities/run")
async def run_maturities(
    request: RunRequest = RunRequest(),
    system: SocietySystem = Depends(get_society_system)
):
    """Pay out term deposits past maturity plus the grace period"""
    processed = system.account_manager.process_maturities(_date(request.as_of, "as_of"))
    return {"processed": processed, "count": len(processed)}


# Imports
imports_router = APIRouter()


@imports_router.post("/{kind}/preview")
async def preview_import(
    kind: str,
    request: ImportPreviewRequest,
    system: SocietySystem = Depends(get_society_system)
):
    """Validate pasted or uploaded data and return itemized issues"""
    try:
        import_kind = ImportKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown import kind: {kind}")

    grid = PasteGrid(canonical_columns(import_kind))
    try:
        grid.focus(request.focus_row, request.focus_col)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    preview = system.import_pipeline.preview(import_kind, request.text, grid)
    return preview.summary()


@imports_router.post("/previews/{preview_id}/commit")
async def commit_import(
    preview_id: str,
    system: SocietySystem = Depends(get_society_system)
):
    """Persist a previewed import; safe to retry"""
    preview = system.import_pipeline.get_preview(preview_id)
    if not preview:
        raise HTTPException(status_code=404, detail="Import preview not found")
    report = system.import_pipeline.commit(preview)
    return report.to_dict()


# Calculators
calculators_router = APIRouter()


@calculators_router.get("/emi")
async def emi_calculator(principal: str, rate: str, months: int, flat: bool = False):
    """Monthly installment for a loan"""
    p, r = _decimal(principal, "principal"), _decimal(rate, "rate")
    emi = calculate_flat_emi(p, r, months) if flat else calculate_emi(p, r, months)
    return {"emi": _money(emi)}


@calculators_router.get("/tenure")
async def tenure_calculator(principal: str, rate: str, emi: str):
    """Months needed to repay a loan at a given installment"""
    tenure = solve_tenure(_decimal(principal, "principal"), _decimal(rate, "rate"), _decimal(emi, "emi"))
    if tenure is UNBOUNDED:
        return {"tenure_months": None, "unbounded": True}
    return {"tenure_months": _money(tenure), "unbounded": False}


@calculators_router.get("/fd")
async def fd_calculator(principal: str, rate: str, months: int):
    """Fixed deposit maturity"""
    quote = fd_maturity(_decimal(principal, "principal"), _decimal(rate, "rate"), months)
    return {
        "principal": str(quote.principal),
        "interest": str(quote.interest),
        "maturity_amount": str(quote.maturity_amount),
    }


@calculators_router.get("/rd")
async def rd_calculator(installment: str, rate: str, installments: int, frequency: str = "Monthly"):
    """Recurring deposit maturity; installments are days for daily deposits"""
    p, r = _decimal(installment, "installment"), _decimal(rate, "rate")
    if frequency == RDFrequency.DAILY.value:
        quote = rd_maturity_daily(p, r, installments)
    else:
        quote = rd_maturity_monthly(p, r, installments)
    return {
        "principal": str(quote.principal),
        "interest": str(quote.interest),
        "maturity_amount": str(quote.maturity_amount),
    }


# Repair
repair_router = APIRouter()


@repair_router.get("/date-corruption")
async def scan_date_corruption(system: SocietySystem = Depends(get_society_system)):
    """Propose fixes for recorded dates that disagree with id timestamps"""
    corrections = system.repair_service.scan()
    return {"corrections": [c.to_dict() for c in corrections], "count": len(corrections)}


@repair_router.post("/date-corruption/apply")
async def apply_date_corrections(
    request: ConfirmRequest,
    system: SocietySystem = Depends(get_society_system)
):
    """Apply the currently proposed date fixes; requires explicit confirmation"""
    try:
        applied = system.repair_service.apply_corrections(
            system.repair_service.scan(), confirmed=request.confirm
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"applied": applied}


@repair_router.post("/backfill")
async def backfill_transactions(system: SocietySystem = Depends(get_society_system)):
    """Synthesize opening transactions for balances without history"""
    transactions = system.repair_service.backfill()
    return {"backfilled": [t.account_id for t in transactions], "count": len(transactions)}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    app = FastAPI(
        title="Samiti Thrift Society API",
        description="Member accounts, interest accrual and bulk import for a cooperative thrift society",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(members_router, prefix="/members", tags=["Members"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(runs_router, tags=["Scheduled Runs"])
    app.include_router(imports_router, prefix="/imports", tags=["Imports"])
    app.include_router(calculators_router, prefix="/calculators", tags=["Calculators"])
    app.include_router(repair_router, prefix="/repair", tags=["Repair"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Samiti Thrift Society API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "members": "/members",
                "accounts": "/accounts",
                "imports": "/imports",
                "calculators": "/calculators",
                "repair": "/repair",
            }
        }

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "samiti.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
