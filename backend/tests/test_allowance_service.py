from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.modules.allowance.errors import InvalidAmountError, InvalidStateError
from app.modules.allowance.models import Child, GoalChallenge, SavingsTransaction, Transaction
from app.modules.allowance.services import allowance_service
from app.modules.allowance.services.allowance_service import (
    ComputeDueAllowance,
    NextAllowanceDue,
    PauseAllowance,
    PayAllowance,
    ProcessPendingAllowances,
    ResumeAllowance,
    UpdateAllowanceSettings,
)
from app.modules.allowance.services.savings_goal_service import CreateChallenge, CreateGoal
from app.modules.notifications.models import Notification
from conftest import AddChild

MONDAY = datetime(2024, 1, 8, 9, 0)


def _BuildChild(**overrides) -> Child:
    data = {
        "Id": 1,
        "UserId": 1,
        "FamilyId": 1,
        "WeeklyAllowance": Decimal("10.00"),
        "LastAllowanceDate": None,
        "AllowanceDay": None,
        "AllowancePaused": False,
    }
    data.update(overrides)
    return Child(**data)


def test_first_allowance_is_due_immediately():
    due = ComputeDueAllowance(_BuildChild(), MONDAY)
    assert due is not None
    assert due.Amount == Decimal("10.00")
    assert due.DueAt == MONDAY


def test_weekly_interval_from_last_payment():
    child = _BuildChild(LastAllowanceDate=datetime(2024, 1, 1, 10, 0))
    assert ComputeDueAllowance(child, datetime(2024, 1, 8, 9, 59)) is None
    assert ComputeDueAllowance(child, datetime(2024, 1, 8, 10, 0)) is not None


def test_allowance_day_uses_next_matching_weekday():
    # Paid on a Wednesday, allowance day is Friday.
    child = _BuildChild(LastAllowanceDate=datetime(2024, 1, 3, 15, 0), AllowanceDay=4)
    assert NextAllowanceDue(child) == datetime(2024, 1, 5)
    assert ComputeDueAllowance(child, datetime(2024, 1, 4, 23, 0)) is None
    assert ComputeDueAllowance(child, datetime(2024, 1, 5, 0, 0)) is not None


def test_paused_or_zero_allowance_is_never_due():
    assert ComputeDueAllowance(_BuildChild(AllowancePaused=True), MONDAY) is None
    assert ComputeDueAllowance(_BuildChild(WeeklyAllowance=Decimal("0")), MONDAY) is None
    assert NextAllowanceDue(_BuildChild(AllowancePaused=True)) is None


def test_pay_allowance_applies_percentage_sweep(db, child, parent):
    child.SavingsTransferType = "Percentage"
    child.SavingsTransferPercentage = 10
    db.commit()

    payment = PayAllowance(db, child.Id, as_of=MONDAY)

    assert payment.Amount == Decimal("10.00")
    assert payment.SavingsTransferred == Decimal("1.00")
    assert child.CurrentBalance == Decimal("9.00")
    assert child.SavingsBalance == Decimal("1.00")
    assert child.LastAllowanceDate == MONDAY

    ledger = db.query(Transaction).filter(Transaction.ChildId == child.Id).all()
    assert [(row.Type, row.Category, row.Amount) for row in ledger] == [("Credit", "Allowance", Decimal("10.00"))]
    sweep = db.query(SavingsTransaction).one()
    assert sweep.IsAutomatic
    assert sweep.SourceAllowanceTransactionId == ledger[0].Id

    recipients = {row.UserId for row in db.query(Notification).filter(Notification.Type == "AllowancePaid")}
    assert recipients == {child.UserId, parent.Id}


def test_pay_allowance_twice_in_same_week_is_noop(db, child):
    assert PayAllowance(db, child.Id, as_of=MONDAY) is not None
    assert PayAllowance(db, child.Id, as_of=datetime(2024, 1, 10)) is None
    assert child.CurrentBalance == Decimal("10.00")


def test_fixed_sweep_is_capped_at_allowance(db, child):
    child.SavingsTransferType = "FixedAmount"
    child.SavingsTransferAmount = Decimal("15.00")
    db.commit()

    payment = PayAllowance(db, child.Id, as_of=MONDAY)

    assert payment.SavingsTransferred == Decimal("10.00")
    assert child.CurrentBalance == Decimal("0.00")
    assert child.SavingsBalance == Decimal("10.00")


def test_batch_run_continues_after_failure(db, family, child, monkeypatch):
    healthy = AddChild(db, family.Id, username="healthy")
    AddChild(db, family.Id, username="paused", AllowancePaused=True)
    original = allowance_service.ApplyTransaction

    def _FailFor(db, target, **kwargs):
        if target.Id == child.Id:
            raise RuntimeError("ledger unavailable")
        return original(db, target, **kwargs)

    monkeypatch.setattr(allowance_service, "ApplyTransaction", _FailFor)

    result = ProcessPendingAllowances(db, MONDAY)

    assert result.Processed == 2
    assert result.Paid == 1
    assert result.Failed == 1
    assert result.FailedChildIds == [child.Id]
    assert healthy.CurrentBalance == Decimal("10.00")
    assert child.CurrentBalance == Decimal("0.00")
    assert child.LastAllowanceDate is None


def test_batch_run_filters_by_family(db, child):
    other = AddChild(db, child.FamilyId + 1, username="elsewhere")
    result = ProcessPendingAllowances(db, MONDAY, family_id=other.FamilyId)
    assert [payment.ChildId for payment in result.Payments] == [other.Id]


def test_family_run_only_expires_own_challenges(db, child, parent):
    other = AddChild(db, child.FamilyId + 1, username="elsewhere")
    for owner in (child, other):
        goal = CreateGoal(db, child_id=owner.Id, name="Bike", target_amount=50, actor_user_id=owner.UserId)
        CreateChallenge(
            db,
            goal_id=goal.Id,
            target_amount=5,
            end_date=MONDAY - timedelta(days=1),
            bonus_amount=1,
            actor_user_id=parent.Id,
            as_of=MONDAY - timedelta(days=3),
        )

    result = ProcessPendingAllowances(db, MONDAY, family_id=child.FamilyId)
    assert result.ExpiredChallenges == 1
    assert sorted(challenge.Status for challenge in db.query(GoalChallenge).all()) == ["Active", "Expired"]
    assert ProcessPendingAllowances(db, MONDAY).ExpiredChallenges == 1


def test_pause_and_resume(db, child, parent):
    PauseAllowance(db, child.Id, reason=" chores not done ", actor_user_id=parent.Id)
    assert child.AllowancePaused
    assert child.AllowancePausedReason == "chores not done"
    assert PayAllowance(db, child.Id, as_of=MONDAY) is None

    with pytest.raises(InvalidStateError):
        PauseAllowance(db, child.Id, reason=None, actor_user_id=parent.Id)

    ResumeAllowance(db, child.Id, actor_user_id=parent.Id)
    assert not child.AllowancePaused
    assert child.AllowancePausedReason is None

    with pytest.raises(InvalidStateError):
        ResumeAllowance(db, child.Id, actor_user_id=parent.Id)


def test_settings_validation(db, child):
    with pytest.raises(InvalidAmountError):
        UpdateAllowanceSettings(db, child.Id, allowance_day=7)
    with pytest.raises(InvalidAmountError):
        UpdateAllowanceSettings(db, child.Id, weekly_allowance=-1)

    updated = UpdateAllowanceSettings(db, child.Id, weekly_allowance=12.5, allowance_day=5, allow_debt=True)
    assert updated.WeeklyAllowance == Decimal("12.50")
    assert updated.AllowanceDay == 5

    updated = UpdateAllowanceSettings(db, child.Id, clear_allowance_day=True)
    assert updated.AllowanceDay is None


def test_cannot_disable_debt_while_negative(db, child):
    child.AllowDebt = True
    child.CurrentBalance = Decimal("-2.00")
    db.commit()
    with pytest.raises(InvalidStateError):
        UpdateAllowanceSettings(db, child.Id, allow_debt=False)
