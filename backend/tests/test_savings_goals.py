from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.modules.allowance.errors import (
    AllowanceError,
    InsufficientBalanceError,
    InsufficientGoalBalanceError,
    InvalidAmountError,
    InvalidStateError,
)
from app.modules.allowance.models import GoalChallenge, ParentMatchingRule, SavingsContribution
from app.modules.allowance.services.allowance_service import PayAllowance
from app.modules.allowance.services.savings_goal_service import (
    CalculateMatchAmount,
    CancelGoal,
    Contribute,
    CreateChallenge,
    CreateGoal,
    CreateMatchingRule,
    ExpireChallenges,
    GetActiveChallenge,
    GetMilestones,
    MarkGoalPurchased,
    PauseGoal,
    ResumeGoal,
    SetMilestoneBonus,
    UpdateGoal,
    UpdateMatchingRule,
    Withdraw,
)

START = datetime(2024, 1, 8, 9, 0)


def _ContributionTotal(db, goal_id: int) -> Decimal:
    rows = db.query(SavingsContribution).filter(SavingsContribution.GoalId == goal_id).all()
    return sum((row.Amount for row in rows), Decimal("0"))


def _NewGoal(db, child, target, **kwargs):
    return CreateGoal(db, child_id=child.Id, name="Bike", target_amount=target, actor_user_id=child.UserId, **kwargs)


def _Fund(db, child, amount: str) -> None:
    child.CurrentBalance = Decimal(amount)
    db.commit()


def test_create_goal_builds_milestones(db, child):
    goal = _NewGoal(db, child, 80)
    milestones = GetMilestones(db, goal.Id)
    assert [(m.PercentComplete, m.TargetAmount) for m in milestones] == [
        (25, Decimal("20.00")),
        (50, Decimal("40.00")),
        (75, Decimal("60.00")),
        (100, Decimal("80.00")),
    ]
    assert milestones[1].CelebrationMessage == "You've reached 50% of your goal!"
    assert goal.Status == "Active"


def test_milestone_bonus_is_paid_once(db, child):
    _Fund(db, child, "60.00")
    goal = _NewGoal(db, child, 100)
    half = [m for m in GetMilestones(db, goal.Id) if m.PercentComplete == 50][0]
    SetMilestoneBonus(db, goal.Id, half.Id, 5)

    result = Contribute(db, goal_id=goal.Id, amount=60, actor_user_id=child.UserId, as_of=START)

    assert goal.CurrentAmount == Decimal("65.00")
    assert [m.PercentComplete for m in result.MilestonesReached] == [25, 50]
    assert [(c.Type, c.Amount) for c in result.BonusContributions] == [("ChallengeBonus", Decimal("5.00"))]
    assert child.CurrentBalance == Decimal("0.00")
    assert _ContributionTotal(db, goal.Id) == goal.CurrentAmount


def test_parent_match_respects_cap(db, child, parent):
    _Fund(db, child, "60.00")
    goal = _NewGoal(db, child, 200)
    CreateMatchingRule(
        db,
        goal_id=goal.Id,
        match_type="PercentageMatch",
        match_ratio=50,
        max_match_amount=20,
        actor_user_id=parent.Id,
    )

    first = Contribute(db, goal_id=goal.Id, amount=30, actor_user_id=child.UserId, as_of=START)
    second = Contribute(db, goal_id=goal.Id, amount=30, actor_user_id=child.UserId, as_of=START)

    assert first.MatchContribution.Amount == Decimal("15.00")
    assert first.MatchContribution.ParentMatchId == first.Contribution.Id
    assert second.MatchContribution.Amount == Decimal("5.00")
    rule = db.query(ParentMatchingRule).filter(ParentMatchingRule.GoalId == goal.Id).one()
    assert rule.TotalMatchedAmount == Decimal("20.00")
    assert goal.CurrentAmount == Decimal("80.00")
    assert _ContributionTotal(db, goal.Id) == goal.CurrentAmount


def test_percentage_match_is_bounded(db, child, parent):
    goal = _NewGoal(db, child, 100)
    with pytest.raises(InvalidAmountError):
        CreateMatchingRule(db, goal_id=goal.Id, match_type="PercentageMatch", match_ratio=150, actor_user_id=parent.Id)

    CreateMatchingRule(db, goal_id=goal.Id, match_type="PercentageMatch", match_ratio=100, actor_user_id=parent.Id)
    with pytest.raises(InvalidAmountError):
        UpdateMatchingRule(db, goal.Id, {"MatchRatio": 101})

    other = _NewGoal(db, child, 100)
    rule = CreateMatchingRule(db, goal_id=other.Id, match_type="RatioMatch", match_ratio=2, actor_user_id=parent.Id)
    assert rule.MatchRatio == Decimal("2.00")


def test_calculate_match_amount_rules():
    ratio = ParentMatchingRule(Type="RatioMatch", MatchRatio=Decimal("1"), TotalMatchedAmount=Decimal("0"), IsActive=True)
    assert CalculateMatchAmount(ratio, Decimal("7.50")) == Decimal("7.50")

    expired = ParentMatchingRule(
        Type="RatioMatch",
        MatchRatio=Decimal("1"),
        TotalMatchedAmount=Decimal("0"),
        IsActive=True,
        ExpiresAt=datetime(2024, 1, 1),
    )
    assert CalculateMatchAmount(expired, Decimal("7.50"), as_of=START) == Decimal("0.00")
    assert CalculateMatchAmount(None, Decimal("7.50")) == Decimal("0.00")


def test_parent_gift_is_not_matched_or_balance_funded(db, child, parent):
    goal = _NewGoal(db, child, 100)
    CreateMatchingRule(db, goal_id=goal.Id, match_type="RatioMatch", match_ratio=1, actor_user_id=parent.Id)

    result = Contribute(
        db,
        goal_id=goal.Id,
        amount=10,
        actor_user_id=parent.Id,
        contribution_type="ParentGift",
        as_of=START,
    )

    assert result.MatchContribution is None
    assert child.CurrentBalance == Decimal("0.00")
    assert goal.CurrentAmount == Decimal("10.00")


def test_child_deposit_needs_balance(db, child):
    _Fund(db, child, "5.00")
    goal = _NewGoal(db, child, 100)
    with pytest.raises(InsufficientBalanceError):
        Contribute(db, goal_id=goal.Id, amount=10, actor_user_id=child.UserId)
    with pytest.raises(AllowanceError):
        Contribute(db, goal_id=goal.Id, amount=1, actor_user_id=child.UserId, contribution_type="ParentMatch")
    assert goal.CurrentAmount == Decimal("0.00")


def test_withdraw_cannot_exceed_goal_amount(db, child):
    _Fund(db, child, "30.00")
    goal = _NewGoal(db, child, 100)
    Contribute(db, goal_id=goal.Id, amount=30, actor_user_id=child.UserId, as_of=START)

    with pytest.raises(InsufficientGoalBalanceError):
        Withdraw(db, goal_id=goal.Id, amount=31, actor_user_id=child.UserId)
    assert goal.CurrentAmount == Decimal("30.00")

    record = Withdraw(db, goal_id=goal.Id, amount=20, actor_user_id=child.UserId, reason="Changed my mind")
    assert record.Type == "Withdrawal"
    assert record.Amount == Decimal("-20.00")
    assert goal.CurrentAmount == Decimal("10.00")
    assert child.CurrentBalance == Decimal("20.00")

    quarter = [m for m in GetMilestones(db, goal.Id) if m.PercentComplete == 25][0]
    assert quarter.IsAchieved
    assert _ContributionTotal(db, goal.Id) == goal.CurrentAmount


def test_completion_and_purchase(db, child, parent):
    goal = _NewGoal(db, child, 50)
    with pytest.raises(InvalidStateError):
        MarkGoalPurchased(db, goal.Id)

    result = Contribute(db, goal_id=goal.Id, amount=50, actor_user_id=parent.Id, contribution_type="ExternalGift")
    assert result.GoalCompleted
    assert goal.Status == "Completed"
    assert goal.CompletedAt is not None

    purchased = MarkGoalPurchased(db, goal.Id)
    assert purchased.Status == "Purchased"
    assert purchased.PurchasedAt is not None


def test_raising_target_reopens_completed_goal(db, child, parent):
    goal = _NewGoal(db, child, 50)
    Contribute(db, goal_id=goal.Id, amount=50, actor_user_id=parent.Id, contribution_type="ExternalGift")
    assert goal.Status == "Completed"

    updated = UpdateGoal(db, goal.Id, {"TargetAmount": 200})
    assert updated.Status == "Active"
    assert updated.CompletedAt is None
    with pytest.raises(InvalidStateError):
        MarkGoalPurchased(db, goal.Id)

    lowered = UpdateGoal(db, goal.Id, {"TargetAmount": 40})
    assert lowered.Status == "Completed"
    assert lowered.CompletedAt is not None


def test_pause_blocks_contributions(db, child, parent):
    goal = _NewGoal(db, child, 50)
    PauseGoal(db, goal.Id)
    with pytest.raises(InvalidStateError):
        Contribute(db, goal_id=goal.Id, amount=5, actor_user_id=parent.Id, contribution_type="ParentGift")
    assert ResumeGoal(db, goal.Id).Status == "Active"


def test_cancel_refunds_goal_amount(db, child, parent):
    _Fund(db, child, "50.00")
    goal = _NewGoal(db, child, 100)
    Contribute(db, goal_id=goal.Id, amount=40, actor_user_id=child.UserId, as_of=START)
    assert child.CurrentBalance == Decimal("10.00")

    cancelled = CancelGoal(db, goal.Id, actor_user_id=parent.Id)

    assert cancelled.Status == "Cancelled"
    assert cancelled.CurrentAmount == Decimal("0.00")
    assert child.CurrentBalance == Decimal("50.00")
    assert _ContributionTotal(db, goal.Id) == Decimal("0.00")
    with pytest.raises(InvalidStateError):
        Contribute(db, goal_id=goal.Id, amount=5, actor_user_id=parent.Id, contribution_type="ParentGift")


def test_target_change_recomputes_milestones(db, child):
    goal = _NewGoal(db, child, 100)
    UpdateGoal(db, goal.Id, {"TargetAmount": 40, "Name": "Scooter"})
    assert goal.Name == "Scooter"
    assert [m.TargetAmount for m in GetMilestones(db, goal.Id)] == [
        Decimal("10.00"),
        Decimal("20.00"),
        Decimal("30.00"),
        Decimal("40.00"),
    ]


def test_challenge_completion_pays_bonus(db, child, parent):
    goal = _NewGoal(db, child, 100)
    Contribute(db, goal_id=goal.Id, amount=10, actor_user_id=parent.Id, contribution_type="ParentGift", as_of=START)
    challenge = CreateChallenge(
        db,
        goal_id=goal.Id,
        target_amount=20,
        end_date=START + timedelta(days=7),
        bonus_amount=3,
        actor_user_id=parent.Id,
        as_of=START,
    )
    assert challenge.StartingAmount == Decimal("10.00")

    result = Contribute(
        db,
        goal_id=goal.Id,
        amount=20,
        actor_user_id=parent.Id,
        contribution_type="ParentGift",
        as_of=START + timedelta(days=1),
    )

    assert result.ChallengeCompleted
    assert goal.CurrentAmount == Decimal("33.00")
    assert challenge.Status == "Completed"
    assert _ContributionTotal(db, goal.Id) == goal.CurrentAmount


def test_challenge_expires_without_bonus(db, child, parent):
    goal = _NewGoal(db, child, 100)
    CreateChallenge(
        db,
        goal_id=goal.Id,
        target_amount=5,
        end_date=START + timedelta(days=2),
        bonus_amount=3,
        actor_user_id=parent.Id,
        as_of=START,
    )

    result = Contribute(
        db,
        goal_id=goal.Id,
        amount=10,
        actor_user_id=parent.Id,
        contribution_type="ParentGift",
        as_of=START + timedelta(days=3),
    )

    assert result.ChallengeExpired
    assert not result.ChallengeCompleted
    assert goal.CurrentAmount == Decimal("10.00")
    assert GetActiveChallenge(db, goal.Id, START + timedelta(days=3)) is None


def test_expire_challenges_sweep(db, child, parent):
    goal = _NewGoal(db, child, 100)
    CreateChallenge(
        db,
        goal_id=goal.Id,
        target_amount=5,
        end_date=START + timedelta(days=1),
        bonus_amount=1,
        actor_user_id=parent.Id,
        as_of=START,
    )
    with pytest.raises(InvalidStateError):
        CreateChallenge(
            db,
            goal_id=goal.Id,
            target_amount=5,
            end_date=START + timedelta(days=1),
            bonus_amount=1,
            actor_user_id=parent.Id,
            as_of=START,
        )

    assert ExpireChallenges(db, START) == 0
    assert ExpireChallenges(db, START + timedelta(days=2)) == 1
    assert db.query(GoalChallenge).one().Status == "Expired"


def test_allowance_feeds_goal_auto_transfers(db, child):
    first = _NewGoal(db, child, 100, priority=1, auto_transfer_type="FixedAmount", auto_transfer_amount=3)
    second = _NewGoal(db, child, 100, priority=2, auto_transfer_type="Percentage", auto_transfer_amount=50)
    nearly = _NewGoal(db, child, 1, priority=3, auto_transfer_type="FixedAmount", auto_transfer_amount=10)

    payment = PayAllowance(db, child.Id, as_of=START)

    assert first.CurrentAmount == Decimal("3.00")
    assert second.CurrentAmount == Decimal("5.00")
    assert nearly.CurrentAmount == Decimal("1.00")
    assert nearly.Status == "Completed"
    assert payment.GoalTransferred == Decimal("9.00")
    assert child.CurrentBalance == Decimal("1.00")
