import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from app.db import GetDb
from app.modules.allowance.errors import AllowanceError
from app.modules.allowance.models import SavingsTransaction
from app.modules.allowance.schemas import (
    SavingsAmountRequest,
    SavingsConfigUpdate,
    SavingsSummaryOut,
    SavingsTransactionOut,
)
from app.modules.allowance.services import savings_account_service
from app.modules.allowance.utils.errors import handle_allowance_error, handle_db_error
from app.modules.allowance.utils.rbac import EnsureChildAccess, RequireAllowanceMember, RequireAllowanceParent
from app.modules.auth.deps import UserContext

router = APIRouter()
logger = logging.getLogger("allowance.savings")


def _BuildSavingsTransactionOut(record: SavingsTransaction) -> SavingsTransactionOut:
    return SavingsTransactionOut(
        Id=record.Id,
        ChildId=record.ChildId,
        Amount=float(record.Amount),
        Type=record.Type,
        Description=record.Description,
        BalanceAfter=float(record.BalanceAfter),
        IsAutomatic=record.IsAutomatic,
        SourceAllowanceTransactionId=record.SourceAllowanceTransactionId,
        CreatedByUserId=record.CreatedByUserId,
        CreatedAt=record.CreatedAt,
    )


def _BuildSummaryOut(summary: dict) -> SavingsSummaryOut:
    return SavingsSummaryOut(
        ChildId=summary["ChildId"],
        CurrentBalance=float(summary["CurrentBalance"]),
        SavingsBalance=float(summary["SavingsBalance"]),
        TransferType=summary["TransferType"],
        TransferAmount=float(summary["TransferAmount"]),
        TransferPercentage=summary["TransferPercentage"],
        TotalDeposited=float(summary["TotalDeposited"]),
        TotalWithdrawn=float(summary["TotalWithdrawn"]),
        DepositCount=summary["DepositCount"],
        WithdrawalCount=summary["WithdrawalCount"],
        LastTransactionDate=summary["LastTransactionDate"],
    )


@router.get("", response_model=SavingsSummaryOut)
def GetSavings(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> SavingsSummaryOut:
    try:
        EnsureChildAccess(db, user, child_id)
        summary = savings_account_service.GetSavingsSummary(db, child_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)
    return _BuildSummaryOut(summary)


@router.get("/history", response_model=list[SavingsTransactionOut])
def GetSavingsHistory(
    child_id: int,
    limit: int = 50,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[SavingsTransactionOut]:
    try:
        EnsureChildAccess(db, user, child_id)
        records = savings_account_service.GetSavingsHistory(db, child_id, limit=min(max(limit, 1), 500))
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return [_BuildSavingsTransactionOut(record) for record in records]


@router.put("/config", response_model=SavingsSummaryOut)
def ConfigureSavings(
    child_id: int,
    payload: SavingsConfigUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> SavingsSummaryOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        savings_account_service.ConfigureSavings(
            db,
            child_id=child_id,
            transfer_type=payload.TransferType,
            amount=payload.Amount,
        )
        summary = savings_account_service.GetSavingsSummary(db, child_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildSummaryOut(summary)


@router.post("/deposit", response_model=SavingsTransactionOut)
def DepositToSavings(
    child_id: int,
    payload: SavingsAmountRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> SavingsTransactionOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True, allow_child_write=True)
        record = savings_account_service.DepositToSavings(
            db,
            child_id=child_id,
            amount=payload.Amount,
            description=payload.Description,
            actor_user_id=user.Id,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildSavingsTransactionOut(record)


@router.post("/withdraw", response_model=SavingsTransactionOut)
def WithdrawFromSavings(
    child_id: int,
    payload: SavingsAmountRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> SavingsTransactionOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        record = savings_account_service.WithdrawFromSavings(
            db,
            child_id=child_id,
            amount=payload.Amount,
            description=payload.Description,
            actor_user_id=user.Id,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildSavingsTransactionOut(record)
