from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.modules.allowance.errors import InvalidAmountError, NotFoundError
from app.modules.allowance.models import CategoryBudget, Transaction
from app.modules.allowance.schemas import (
    BudgetPeriod,
    BudgetStatus,
    INCOME_CATEGORIES,
    TransactionCategory,
    TransactionType,
)
from app.modules.allowance.services.child_service import EnumValue, LoadChild
from app.modules.auth.deps import NowUtc
from app.services.money import ToMoney, ZERO
from app.services.schedules import PeriodEnd, PeriodStart

logger = logging.getLogger("app.budgets")

_INCOME_KEYWORDS = [
    ("allowance", TransactionCategory.Allowance),
    ("chore", TransactionCategory.Chores),
    ("gift", TransactionCategory.Gift),
    ("bonus", TransactionCategory.BonusReward),
    ("reward", TransactionCategory.BonusReward),
]
_SPENDING_KEYWORDS = [
    ("toy", TransactionCategory.Toys),
    ("game", TransactionCategory.Games),
    ("book", TransactionCategory.Books),
    ("cloth", TransactionCategory.Clothes),
    ("shirt", TransactionCategory.Clothes),
    ("pants", TransactionCategory.Clothes),
    ("snack", TransactionCategory.Snacks),
    ("candy", TransactionCategory.Candy),
    ("sweet", TransactionCategory.Candy),
    ("electronic", TransactionCategory.Electronics),
    ("phone", TransactionCategory.Electronics),
    ("tablet", TransactionCategory.Electronics),
    ("entertainment", TransactionCategory.Entertainment),
    ("movie", TransactionCategory.Entertainment),
    ("sport", TransactionCategory.Sports),
    ("ball", TransactionCategory.Sports),
    ("craft", TransactionCategory.Crafts),
    ("art", TransactionCategory.Crafts),
    ("saving", TransactionCategory.Savings),
    ("charity", TransactionCategory.Charity),
    ("donate", TransactionCategory.Charity),
]


@dataclass(frozen=True)
class BudgetCheckResult:
    Allowed: bool
    Message: str | None
    CurrentSpending: Decimal
    Limit: Decimal
    RemainingAfter: Decimal
    IsWarning: bool = False


@dataclass(frozen=True)
class BudgetStatusResult:
    Category: str
    Limit: Decimal
    Period: str
    CurrentSpending: Decimal
    Remaining: Decimal
    PercentUsed: Decimal
    Status: str
    PeriodStart: datetime


def ComputePeriodStart(period: str, as_of: datetime) -> datetime:
    return PeriodStart(EnumValue(period), as_of)


def ComputePeriodEnd(period: str, as_of: datetime) -> datetime:
    return PeriodEnd(EnumValue(period), as_of)


def _PercentUsed(spent: Decimal, limit: Decimal) -> Decimal:
    if limit <= 0:
        return Decimal("0")
    return spent / limit * Decimal("100")


def EvaluateBudget(budget: CategoryBudget, current_spending, proposed_amount) -> BudgetCheckResult:
    limit = ToMoney(budget.Limit)
    spent = ToMoney(current_spending)
    proposed = ToMoney(proposed_amount)
    total = spent + proposed
    remaining_after = limit - total

    if remaining_after < 0:
        message = (
            f"This transaction exceeds the {budget.Category} budget. "
            f"Budget: ${limit:.2f}, Current: ${spent:.2f}, Transaction: ${proposed:.2f}"
        )
        if budget.EnforceLimit:
            return BudgetCheckResult(False, message, spent, limit, remaining_after, False)
        return BudgetCheckResult(True, message, spent, limit, remaining_after, True)

    if _PercentUsed(total, limit) >= Decimal(budget.AlertThresholdPercent or 0):
        message = (
            f"You will have used {_PercentUsed(total, limit):.0f}% of your {budget.Category} budget. "
            f"${remaining_after:.2f} left."
        )
        return BudgetCheckResult(True, message, spent, limit, remaining_after, True)

    return BudgetCheckResult(True, None, spent, limit, remaining_after, False)


def CurrentSpending(
    db: Session,
    child_id: int,
    category: str,
    since: datetime,
    until: datetime | None = None,
) -> Decimal:
    query = db.query(func.coalesce(func.sum(Transaction.Amount), 0)).filter(
        Transaction.ChildId == child_id,
        Transaction.Category == category,
        Transaction.Type == TransactionType.Debit.value,
        Transaction.CreatedAt >= since,
    )
    if until is not None:
        query = query.filter(Transaction.CreatedAt < until)
    total = query.scalar()
    return ToMoney(total)


def GetBudget(db: Session, child_id: int, category) -> CategoryBudget | None:
    return (
        db.query(CategoryBudget)
        .filter(CategoryBudget.ChildId == child_id, CategoryBudget.Category == EnumValue(category))
        .first()
    )


def GetBudgets(db: Session, child_id: int) -> list[CategoryBudget]:
    return (
        db.query(CategoryBudget)
        .filter(CategoryBudget.ChildId == child_id)
        .order_by(CategoryBudget.Category.asc())
        .all()
    )


def CheckBudget(
    db: Session,
    child_id: int,
    category,
    proposed_amount,
    as_of: datetime | None = None,
) -> BudgetCheckResult:
    proposed = ToMoney(proposed_amount)
    if proposed <= 0:
        raise InvalidAmountError("Amount must be greater than zero")

    budget = GetBudget(db, child_id, category)
    if not budget:
        return BudgetCheckResult(True, None, ZERO, ZERO, ZERO, False)

    as_of = as_of or NowUtc()
    since = ComputePeriodStart(budget.Period, as_of)
    until = ComputePeriodEnd(budget.Period, as_of)
    spent = CurrentSpending(db, child_id, budget.Category, since, until)
    return EvaluateBudget(budget, spent, proposed)


def SetBudget(
    db: Session,
    *,
    child_id: int,
    category,
    limit,
    period=BudgetPeriod.Weekly,
    alert_threshold_percent: int = 80,
    enforce_limit: bool = False,
    actor_user_id: int,
) -> CategoryBudget:
    limit_value = ToMoney(limit)
    if limit_value <= 0:
        raise InvalidAmountError("Budget limit must be greater than zero")
    if alert_threshold_percent < 0 or alert_threshold_percent > 100:
        raise InvalidAmountError("Alert threshold must be between 0 and 100")
    category_value = EnumValue(category)
    period_value = EnumValue(period)
    if category_value not in {item.value for item in TransactionCategory}:
        raise InvalidAmountError("Unknown category")
    if period_value not in {item.value for item in BudgetPeriod}:
        raise InvalidAmountError("Unknown budget period")

    LoadChild(db, child_id)
    now = NowUtc()
    budget = GetBudget(db, child_id, category_value)
    if budget is None:
        budget = CategoryBudget(
            ChildId=child_id,
            Category=category_value,
            CreatedByUserId=actor_user_id,
            CreatedAt=now,
        )
        db.add(budget)
    budget.Limit = limit_value
    budget.Period = period_value
    budget.AlertThresholdPercent = alert_threshold_percent
    budget.EnforceLimit = enforce_limit
    budget.UpdatedAt = now
    db.commit()
    db.refresh(budget)
    logger.info("budget set child=%s category=%s limit=%s", child_id, category_value, limit_value)
    return budget


def DeleteBudget(db: Session, child_id: int, category) -> None:
    budget = GetBudget(db, child_id, category)
    if not budget:
        raise NotFoundError("Budget not found")
    db.delete(budget)
    db.commit()


def _StatusFor(percent_used: Decimal, threshold: int) -> str:
    if percent_used > 100:
        return BudgetStatus.OverBudget.value
    if percent_used == 100:
        return BudgetStatus.AtLimit.value
    if percent_used >= threshold:
        return BudgetStatus.Warning.value
    return BudgetStatus.Safe.value


def GetBudgetStatus(db: Session, child_id: int, as_of: datetime | None = None) -> list[BudgetStatusResult]:
    as_of = as_of or NowUtc()
    results = []
    for budget in GetBudgets(db, child_id):
        since = ComputePeriodStart(budget.Period, as_of)
        until = ComputePeriodEnd(budget.Period, as_of)
        spent = CurrentSpending(db, child_id, budget.Category, since, until)
        limit = ToMoney(budget.Limit)
        percent_used = _PercentUsed(spent, limit)
        results.append(
            BudgetStatusResult(
                Category=budget.Category,
                Limit=limit,
                Period=budget.Period,
                CurrentSpending=spent,
                Remaining=limit - spent,
                PercentUsed=percent_used.quantize(Decimal("0.01")),
                Status=_StatusFor(percent_used, budget.AlertThresholdPercent),
                PeriodStart=since,
            )
        )
    return results


def SuggestCategory(description: str, transaction_type) -> TransactionCategory:
    lowered = (description or "").lower()
    if EnumValue(transaction_type) == TransactionType.Credit.value:
        keywords, fallback = _INCOME_KEYWORDS, TransactionCategory.OtherIncome
    else:
        keywords, fallback = _SPENDING_KEYWORDS, TransactionCategory.OtherSpending
    for keyword, category in keywords:
        if keyword in lowered:
            return category
    return fallback


def GetCategoriesForType(transaction_type) -> list[TransactionCategory]:
    if EnumValue(transaction_type) == TransactionType.Credit.value:
        return [item for item in TransactionCategory if item in INCOME_CATEGORIES]
    return [item for item in TransactionCategory if item not in INCOME_CATEGORIES]
