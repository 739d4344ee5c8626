from decimal import Decimal

import pytest

from app.modules.allowance.errors import InsufficientBalanceError, InvalidAmountError
from app.modules.allowance.models import Child
from app.modules.allowance.services.savings_account_service import (
    CalculateTransferAmount,
    ClampToSpendingBalance,
    ConfigureSavings,
    DepositToSavings,
    GetSavingsHistory,
    GetSavingsSummary,
    WithdrawFromSavings,
)
from app.modules.allowance.services.transaction_service import CreateTransaction


def _BuildChild(**overrides) -> Child:
    data = {
        "SavingsTransferType": "None",
        "SavingsTransferAmount": Decimal("0.00"),
        "SavingsTransferPercentage": 0,
        "CurrentBalance": Decimal("0.00"),
        "AllowDebt": False,
    }
    data.update(overrides)
    return Child(**data)


def test_percentage_transfer_of_ten_dollars():
    child = _BuildChild(SavingsTransferType="Percentage", SavingsTransferPercentage=10)
    assert CalculateTransferAmount(child, Decimal("10.00")) == Decimal("1.00")


def test_percentage_transfer_rounds_half_up():
    child = _BuildChild(SavingsTransferType="Percentage", SavingsTransferPercentage=15)
    assert CalculateTransferAmount(child, Decimal("0.10")) == Decimal("0.02")


def test_fixed_transfer_cap_depends_on_source():
    child = _BuildChild(SavingsTransferType="FixedAmount", SavingsTransferAmount=Decimal("15.00"))
    assert CalculateTransferAmount(child, Decimal("10.00"), from_allowance=True) == Decimal("10.00")
    assert CalculateTransferAmount(child, Decimal("10.00"), from_allowance=False) == Decimal("15.00")


def test_no_transfer_type():
    assert CalculateTransferAmount(_BuildChild(), Decimal("10.00")) == Decimal("0.00")


def test_clamp_to_spending_balance():
    assert ClampToSpendingBalance(_BuildChild(CurrentBalance=Decimal("3.00")), Decimal("5.00")) == Decimal("3.00")
    assert ClampToSpendingBalance(_BuildChild(CurrentBalance=Decimal("-1.00")), Decimal("5.00")) == Decimal("0.00")
    debt_ok = _BuildChild(CurrentBalance=Decimal("3.00"), AllowDebt=True)
    assert ClampToSpendingBalance(debt_ok, Decimal("5.00")) == Decimal("5.00")


def test_configure_savings_validates_percentage(db, child):
    with pytest.raises(InvalidAmountError):
        ConfigureSavings(db, child_id=child.Id, transfer_type="Percentage", amount=150)
    with pytest.raises(InvalidAmountError):
        ConfigureSavings(db, child_id=child.Id, transfer_type="Percentage", amount=12.5)
    with pytest.raises(InvalidAmountError):
        ConfigureSavings(db, child_id=child.Id, transfer_type="Weekly", amount=5)

    updated = ConfigureSavings(db, child_id=child.Id, transfer_type="Percentage", amount=20)
    assert updated.SavingsTransferType == "Percentage"
    assert updated.SavingsTransferPercentage == 20
    assert updated.SavingsTransferAmount == Decimal("0.00")


def test_manual_deposit_and_withdrawal(db, child, parent):
    child.CurrentBalance = Decimal("20.00")
    db.commit()

    DepositToSavings(db, child_id=child.Id, amount=5, actor_user_id=child.UserId)
    assert child.CurrentBalance == Decimal("15.00")
    assert child.SavingsBalance == Decimal("5.00")

    with pytest.raises(InsufficientBalanceError):
        WithdrawFromSavings(db, child_id=child.Id, amount=10, actor_user_id=parent.Id)
    with pytest.raises(InsufficientBalanceError):
        DepositToSavings(db, child_id=child.Id, amount=50, actor_user_id=child.UserId)

    record = WithdrawFromSavings(db, child_id=child.Id, amount=2, actor_user_id=parent.Id, description="Book fair")
    assert record.Amount == Decimal("-2.00")
    assert record.Type == "Withdrawal"
    assert record.BalanceAfter == Decimal("3.00")

    summary = GetSavingsSummary(db, child.Id)
    assert summary["CurrentBalance"] == Decimal("17.00")
    assert summary["SavingsBalance"] == Decimal("3.00")
    assert summary["TotalDeposited"] == Decimal("5.00")
    assert summary["TotalWithdrawn"] == Decimal("2.00")
    assert summary["DepositCount"] == 1
    assert summary["WithdrawalCount"] == 1
    assert len(GetSavingsHistory(db, child.Id)) == 2


def test_manual_credit_sweep_is_not_capped(db, child, parent):
    child.CurrentBalance = Decimal("20.00")
    child.SavingsTransferType = "FixedAmount"
    child.SavingsTransferAmount = Decimal("15.00")
    db.commit()

    result = CreateTransaction(
        db,
        child_id=child.Id,
        amount=10,
        transaction_type="Credit",
        category="Gift",
        description="Birthday money",
        actor_user_id=parent.Id,
        apply_savings_sweep=True,
    )

    assert result.SavingsTransfer.Amount == Decimal("15.00")
    assert child.CurrentBalance == Decimal("15.00")
    assert child.SavingsBalance == Decimal("15.00")
