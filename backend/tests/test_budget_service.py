from datetime import datetime
from decimal import Decimal

import pytest

from app.modules.allowance.errors import BudgetExceededError, InvalidAmountError
from app.modules.allowance.models import CategoryBudget
from app.modules.allowance.schemas import TransactionCategory
from app.modules.allowance.services.budget_service import (
    CheckBudget,
    ComputePeriodEnd,
    ComputePeriodStart,
    CurrentSpending,
    DeleteBudget,
    EvaluateBudget,
    GetBudgetStatus,
    GetBudgets,
    GetCategoriesForType,
    SetBudget,
    SuggestCategory,
)
from app.modules.allowance.services.transaction_service import CreateTransaction

# 2024-01-10 is a Wednesday.
AS_OF = datetime(2024, 1, 10, 12, 0)


def _BuildBudget(**overrides) -> CategoryBudget:
    data = {
        "Category": "Toys",
        "Limit": Decimal("50.00"),
        "Period": "Weekly",
        "AlertThresholdPercent": 80,
        "EnforceLimit": True,
    }
    data.update(overrides)
    return CategoryBudget(**data)


def _Spend(db, child, parent, amount, category="Toys", as_of=AS_OF):
    return CreateTransaction(
        db,
        child_id=child.Id,
        amount=amount,
        transaction_type="Debit",
        category=category,
        description=f"{category} purchase",
        actor_user_id=parent.Id,
        as_of=as_of,
    )


def test_enforced_budget_blocks_overspend():
    result = EvaluateBudget(_BuildBudget(), Decimal("45.00"), Decimal("10.00"))
    assert not result.Allowed
    assert result.RemainingAfter == Decimal("-5.00")
    assert "exceeds the Toys budget" in result.Message


def test_soft_budget_warns_on_overspend():
    result = EvaluateBudget(_BuildBudget(EnforceLimit=False), Decimal("45.00"), Decimal("10.00"))
    assert result.Allowed
    assert result.IsWarning


def test_alert_threshold():
    at_threshold = EvaluateBudget(_BuildBudget(), Decimal("30.00"), Decimal("10.00"))
    assert at_threshold.Allowed
    assert at_threshold.IsWarning
    assert "80%" in at_threshold.Message

    below = EvaluateBudget(_BuildBudget(), Decimal("30.00"), Decimal("5.00"))
    assert below.Allowed
    assert not below.IsWarning
    assert below.Message is None


def test_period_windows():
    assert ComputePeriodStart("Weekly", AS_OF) == datetime(2024, 1, 8)
    assert ComputePeriodStart("Monthly", AS_OF) == datetime(2024, 1, 1)
    assert ComputePeriodEnd("Weekly", AS_OF) == datetime(2024, 1, 15)
    assert ComputePeriodEnd("Monthly", datetime(2024, 12, 31, 23, 0)) == datetime(2025, 1, 1)


def test_check_without_budget_is_allowed(db, child):
    result = CheckBudget(db, child.Id, "Candy", 999, AS_OF)
    assert result.Allowed
    assert result.Limit == Decimal("0.00")
    with pytest.raises(InvalidAmountError):
        CheckBudget(db, child.Id, "Candy", 0, AS_OF)


def test_debit_blocked_when_budget_enforced(db, child, parent):
    child.CurrentBalance = Decimal("100.00")
    db.commit()
    SetBudget(db, child_id=child.Id, category="Toys", limit=50, enforce_limit=True, actor_user_id=parent.Id)
    _Spend(db, child, parent, 45)

    check = CheckBudget(db, child.Id, TransactionCategory.Toys, 10, AS_OF)
    assert not check.Allowed
    assert check.CurrentSpending == Decimal("45.00")

    with pytest.raises(BudgetExceededError) as exc_info:
        _Spend(db, child, parent, 10)
    assert exc_info.value.Result.RemainingAfter == Decimal("-5.00")
    assert child.CurrentBalance == Decimal("55.00")


def test_spending_before_period_start_is_ignored(db, child, parent):
    child.CurrentBalance = Decimal("100.00")
    db.commit()
    SetBudget(db, child_id=child.Id, category="Toys", limit=50, enforce_limit=True, actor_user_id=parent.Id)
    # Sunday of the previous week.
    _Spend(db, child, parent, 45, as_of=datetime(2024, 1, 7, 18, 0))

    check = CheckBudget(db, child.Id, "Toys", 10, AS_OF)
    assert check.Allowed
    assert check.CurrentSpending == Decimal("0.00")


def test_spending_after_period_end_is_ignored(db, child, parent):
    child.CurrentBalance = Decimal("100.00")
    db.commit()
    SetBudget(db, child_id=child.Id, category="Toys", limit=50, enforce_limit=True, actor_user_id=parent.Id)
    # Saturday of the following week.
    _Spend(db, child, parent, 30, as_of=datetime(2024, 1, 20, 10, 0))

    assert CurrentSpending(db, child.Id, "Toys", datetime(2024, 1, 8), datetime(2024, 1, 15)) == Decimal("0.00")
    check = CheckBudget(db, child.Id, "Toys", 10, AS_OF)
    assert check.CurrentSpending == Decimal("0.00")
    assert GetBudgetStatus(db, child.Id, AS_OF)[0].CurrentSpending == Decimal("0.00")
    assert CheckBudget(db, child.Id, "Toys", 10, datetime(2024, 1, 21, 9, 0)).CurrentSpending == Decimal("30.00")


def test_set_budget_upserts_and_validates(db, child, parent):
    SetBudget(db, child_id=child.Id, category="Games", limit=20, actor_user_id=parent.Id)
    SetBudget(db, child_id=child.Id, category="Games", limit=25, period="Monthly", actor_user_id=parent.Id)
    budgets = GetBudgets(db, child.Id)
    assert len(budgets) == 1
    assert budgets[0].Limit == Decimal("25.00")
    assert budgets[0].Period == "Monthly"

    with pytest.raises(InvalidAmountError):
        SetBudget(db, child_id=child.Id, category="Games", limit=0, actor_user_id=parent.Id)
    with pytest.raises(InvalidAmountError):
        SetBudget(
            db,
            child_id=child.Id,
            category="Games",
            limit=10,
            alert_threshold_percent=120,
            actor_user_id=parent.Id,
        )

    DeleteBudget(db, child.Id, "Games")
    assert GetBudgets(db, child.Id) == []


def test_budget_status_classification(db, child, parent):
    child.CurrentBalance = Decimal("200.00")
    db.commit()
    for category in ("Toys", "Games", "Books", "Candy"):
        SetBudget(db, child_id=child.Id, category=category, limit=20, actor_user_id=parent.Id)
    _Spend(db, child, parent, 5, "Toys")
    _Spend(db, child, parent, 17, "Games")
    _Spend(db, child, parent, 20, "Books")
    _Spend(db, child, parent, 25, "Candy")

    statuses = {item.Category: item for item in GetBudgetStatus(db, child.Id, AS_OF)}

    assert statuses["Toys"].Status == "Safe"
    assert statuses["Games"].Status == "Warning"
    assert statuses["Books"].Status == "AtLimit"
    assert statuses["Candy"].Status == "OverBudget"
    assert statuses["Candy"].Remaining == Decimal("-5.00")
    assert statuses["Games"].PercentUsed == Decimal("85.00")


def test_suggest_category():
    assert SuggestCategory("Chocolate candy bar", "Debit") == TransactionCategory.Candy
    assert SuggestCategory("New video game", "Debit") == TransactionCategory.Games
    assert SuggestCategory("Washed the car (chore)", "Credit") == TransactionCategory.Chores
    assert SuggestCategory("Something", "Credit") == TransactionCategory.OtherIncome
    assert SuggestCategory("Something", "Debit") == TransactionCategory.OtherSpending


def test_categories_for_type():
    income = GetCategoriesForType("Credit")
    spending = GetCategoriesForType("Debit")
    assert TransactionCategory.Allowance in income
    assert TransactionCategory.Toys not in income
    assert TransactionCategory.Toys in spending
    assert len(income) + len(spending) == len(TransactionCategory)
