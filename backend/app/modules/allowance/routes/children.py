import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from app.db import GetDb
from app.modules.allowance.errors import AllowanceError, InvalidStateError
from app.modules.allowance.models import Child, Transaction
from app.modules.allowance.schemas import (
    AllowancePaymentOut,
    AllowanceSettingsUpdate,
    ChildOut,
    PauseAllowanceRequest,
    TransactionCreate,
    TransactionOut,
    TransactionResultOut,
)
from app.modules.allowance.services import allowance_service, transaction_service
from app.modules.allowance.services.allowance_service import AllowancePayment
from app.modules.allowance.services.child_service import ListFamilyChildren, LoadChildByUser
from app.modules.allowance.utils.errors import handle_allowance_error, handle_db_error
from app.modules.allowance.utils.rbac import (
    EnsureChildAccess,
    IsParent,
    RequireAllowanceMember,
    RequireAllowanceParent,
)
from app.modules.auth.deps import UserContext
from app.modules.auth.models import User

router = APIRouter()
logger = logging.getLogger("allowance.children")


def BuildChildOut(child: Child, user: User | None = None) -> ChildOut:
    return ChildOut(
        Id=child.Id,
        UserId=child.UserId,
        FamilyId=child.FamilyId,
        FirstName=user.FirstName if user else None,
        LastName=user.LastName if user else None,
        WeeklyAllowance=float(child.WeeklyAllowance),
        CurrentBalance=float(child.CurrentBalance),
        SavingsBalance=float(child.SavingsBalance),
        LastAllowanceDate=child.LastAllowanceDate,
        NextAllowanceDate=allowance_service.NextAllowanceDue(child),
        AllowanceDay=child.AllowanceDay,
        AllowancePaused=child.AllowancePaused,
        AllowancePausedReason=child.AllowancePausedReason,
        SavingsTransferType=child.SavingsTransferType,
        SavingsTransferAmount=float(child.SavingsTransferAmount),
        SavingsTransferPercentage=child.SavingsTransferPercentage,
        AllowDebt=child.AllowDebt,
    )


def BuildTransactionOut(record: Transaction) -> TransactionOut:
    return TransactionOut(
        Id=record.Id,
        ChildId=record.ChildId,
        Amount=float(record.Amount),
        Type=record.Type,
        Category=record.Category,
        Description=record.Description,
        Notes=record.Notes,
        BalanceAfter=float(record.BalanceAfter),
        CreatedByUserId=record.CreatedByUserId,
        CreatedAt=record.CreatedAt,
    )


def BuildPaymentOut(payment: AllowancePayment) -> AllowancePaymentOut:
    return AllowancePaymentOut(
        ChildId=payment.ChildId,
        Amount=float(payment.Amount),
        TransactionId=payment.Transaction.Id,
        SavingsTransferred=float(payment.SavingsTransferred),
        GoalTransfers=float(payment.GoalTransferred),
        PaidAt=payment.PaidAt,
    )


def _LoadUsers(db: Session, user_ids: list[int]) -> dict[int, User]:
    if not user_ids:
        return {}
    return {user.Id: user for user in db.query(User).filter(User.Id.in_(user_ids)).all()}


@router.get("", response_model=list[ChildOut])
def ListChildren(
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[ChildOut]:
    try:
        if IsParent(user):
            children = ListFamilyChildren(db, user.FamilyId) if user.FamilyId is not None else []
        else:
            own = LoadChildByUser(db, user.Id)
            children = [own] if own else []
        users = _LoadUsers(db, [child.UserId for child in children])
        return [BuildChildOut(child, users.get(child.UserId)) for child in children]
    except ProgrammingError as exc:
        handle_db_error(exc)


@router.get("/me", response_model=ChildOut)
def GetMyChildRecord(
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> ChildOut:
    child = LoadChildByUser(db, user.Id)
    if not child:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Child not found")
    return BuildChildOut(child, _LoadUsers(db, [child.UserId]).get(child.UserId))


@router.get("/{child_id}", response_model=ChildOut)
def GetChild(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> ChildOut:
    try:
        child = EnsureChildAccess(db, user, child_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return BuildChildOut(child, _LoadUsers(db, [child.UserId]).get(child.UserId))


@router.put("/{child_id}/settings", response_model=ChildOut)
def UpdateSettings(
    child_id: int,
    payload: AllowanceSettingsUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> ChildOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        child = allowance_service.UpdateAllowanceSettings(
            db,
            child_id,
            weekly_allowance=payload.WeeklyAllowance,
            allowance_day=payload.AllowanceDay,
            clear_allowance_day=payload.ClearAllowanceDay,
            allow_debt=payload.AllowDebt,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return BuildChildOut(child)


@router.post("/{child_id}/pause", response_model=ChildOut)
def PauseChildAllowance(
    child_id: int,
    payload: PauseAllowanceRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> ChildOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        child = allowance_service.PauseAllowance(db, child_id, reason=payload.Reason, actor_user_id=user.Id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return BuildChildOut(child)


@router.post("/{child_id}/resume", response_model=ChildOut)
def ResumeChildAllowance(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> ChildOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        child = allowance_service.ResumeAllowance(db, child_id, actor_user_id=user.Id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return BuildChildOut(child)


@router.post("/{child_id}/allowance", response_model=AllowancePaymentOut)
def PayChildAllowance(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> AllowancePaymentOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        payment = allowance_service.PayAllowance(db, child_id, actor_user_id=user.Id)
        if payment is None:
            raise InvalidStateError("Allowance is not due")
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)
    return BuildPaymentOut(payment)


@router.get("/{child_id}/transactions", response_model=list[TransactionOut])
def ListTransactions(
    child_id: int,
    limit: int = 50,
    category: str | None = None,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[TransactionOut]:
    try:
        EnsureChildAccess(db, user, child_id)
        records = transaction_service.GetTransactions(db, child_id, limit=min(max(limit, 1), 500), category=category)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)
    return [BuildTransactionOut(record) for record in records]


@router.post("/{child_id}/transactions", response_model=TransactionResultOut, status_code=status.HTTP_201_CREATED)
def CreateTransaction(
    child_id: int,
    payload: TransactionCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> TransactionResultOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        result = transaction_service.CreateTransaction(
            db,
            child_id=child_id,
            amount=payload.Amount,
            transaction_type=payload.Type,
            category=payload.Category,
            description=payload.Description,
            notes=payload.Notes,
            actor_user_id=user.Id,
            draw_from_savings=payload.DrawFromSavings,
            apply_savings_sweep=payload.ApplySavingsSweep,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)
    check = result.BudgetCheck
    return TransactionResultOut(
        Transaction=BuildTransactionOut(result.Transaction),
        DrawnFromSavings=float(result.DrawnFromSavings),
        SavingsTransferred=float(result.SavingsTransfer.Amount) if result.SavingsTransfer else 0,
        BudgetWarning=check.Message if check and check.IsWarning else None,
    )
