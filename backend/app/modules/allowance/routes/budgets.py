import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from app.db import GetDb
from app.modules.allowance.errors import AllowanceError
from app.modules.allowance.models import CategoryBudget
from app.modules.allowance.schemas import (
    BudgetCheckOut,
    BudgetCheckRequest,
    BudgetOut,
    BudgetStatusOut,
    BudgetUpsert,
    TransactionCategory,
    TransactionType,
)
from app.modules.allowance.services import budget_service
from app.modules.allowance.utils.errors import handle_allowance_error, handle_db_error
from app.modules.allowance.utils.rbac import EnsureChildAccess, RequireAllowanceMember, RequireAllowanceParent
from app.modules.auth.deps import UserContext

router = APIRouter()
logger = logging.getLogger("allowance.budgets")


def _BuildBudgetOut(budget: CategoryBudget) -> BudgetOut:
    return BudgetOut(
        Id=budget.Id,
        ChildId=budget.ChildId,
        Category=budget.Category,
        Limit=float(budget.Limit),
        Period=budget.Period,
        AlertThresholdPercent=budget.AlertThresholdPercent,
        EnforceLimit=budget.EnforceLimit,
        UpdatedAt=budget.UpdatedAt,
    )


@router.get("/categories", response_model=list[str])
def ListCategories(
    type: TransactionType | None = None,
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[str]:
    if type is None:
        return [item.value for item in TransactionCategory]
    return [item.value for item in budget_service.GetCategoriesForType(type)]


@router.get("/categories/suggest")
def SuggestCategory(
    description: str,
    type: TransactionType = TransactionType.Debit,
    user: UserContext = Depends(RequireAllowanceMember()),
) -> dict:
    return {"Category": budget_service.SuggestCategory(description, type).value}


@router.get("/children/{child_id}/budgets", response_model=list[BudgetOut])
def ListBudgets(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[BudgetOut]:
    try:
        EnsureChildAccess(db, user, child_id)
        return [_BuildBudgetOut(budget) for budget in budget_service.GetBudgets(db, child_id)]
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)


@router.put("/children/{child_id}/budgets", response_model=BudgetOut)
def UpsertBudget(
    child_id: int,
    payload: BudgetUpsert,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> BudgetOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        budget = budget_service.SetBudget(
            db,
            child_id=child_id,
            category=payload.Category,
            limit=payload.Limit,
            period=payload.Period,
            alert_threshold_percent=payload.AlertThresholdPercent,
            enforce_limit=payload.EnforceLimit,
            actor_user_id=user.Id,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildBudgetOut(budget)


@router.delete("/children/{child_id}/budgets/{category}", status_code=status.HTTP_204_NO_CONTENT)
def DeleteBudget(
    child_id: int,
    category: TransactionCategory,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> None:
    try:
        EnsureChildAccess(db, user, child_id, write=True)
        budget_service.DeleteBudget(db, child_id, category)
    except AllowanceError as exc:
        handle_allowance_error(exc)


@router.get("/children/{child_id}/budgets/status", response_model=list[BudgetStatusOut])
def GetBudgetStatus(
    child_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[BudgetStatusOut]:
    try:
        EnsureChildAccess(db, user, child_id)
        results = budget_service.GetBudgetStatus(db, child_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return [
        BudgetStatusOut(
            Category=item.Category,
            Limit=float(item.Limit),
            Period=item.Period,
            CurrentSpending=float(item.CurrentSpending),
            Remaining=float(item.Remaining),
            PercentUsed=float(item.PercentUsed),
            Status=item.Status,
            PeriodStart=item.PeriodStart,
        )
        for item in results
    ]


@router.post("/children/{child_id}/budgets/check", response_model=BudgetCheckOut)
def CheckBudget(
    child_id: int,
    payload: BudgetCheckRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> BudgetCheckOut:
    try:
        EnsureChildAccess(db, user, child_id)
        result = budget_service.CheckBudget(db, child_id, payload.Category, payload.Amount)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return BudgetCheckOut(
        Allowed=result.Allowed,
        Message=result.Message,
        CurrentSpending=float(result.CurrentSpending),
        Limit=float(result.Limit),
        RemainingAfter=float(result.RemainingAfter),
        IsWarning=result.IsWarning,
    )
