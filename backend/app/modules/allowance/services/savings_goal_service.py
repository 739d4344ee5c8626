"""Savings goals: contributions, parent matching, milestones and challenges.

Every change to a goal's CurrentAmount goes through _AddContribution so the
amount always equals the sum of the goal's contribution rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from app.modules.allowance.errors import (
    AllowanceError,
    InsufficientBalanceError,
    InsufficientGoalBalanceError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
)
from app.modules.allowance.models import (
    Child,
    GoalChallenge,
    GoalMilestone,
    ParentMatchingRule,
    SavingsContribution,
    SavingsGoal,
)
from app.modules.allowance.schemas import (
    ChallengeStatus,
    ContributionType,
    GoalCategory,
    GoalStatus,
    GoalTransferType,
    MatchingType,
)
from app.modules.allowance.services.child_service import EnumValue, LoadChild, NotifyChildAndParents
from app.modules.auth.deps import NowUtc
from app.services.money import PercentOf, RoundMoney, ToMoney, ZERO

logger = logging.getLogger("app.savings_goals")

MILESTONE_PERCENTS = (25, 50, 75, 100)
DEPOSIT_TYPES = {
    ContributionType.ChildDeposit.value,
    ContributionType.AutoTransfer.value,
    ContributionType.ParentGift.value,
    ContributionType.ExternalGift.value,
}
BALANCE_FUNDED_TYPES = {ContributionType.ChildDeposit.value, ContributionType.AutoTransfer.value}
CLOSED_STATUSES = {GoalStatus.Cancelled.value, GoalStatus.Purchased.value}


@dataclass
class GoalProgressResult:
    Goal: SavingsGoal
    Contribution: SavingsContribution
    MatchContribution: SavingsContribution | None = None
    BonusContributions: list[SavingsContribution] = field(default_factory=list)
    MilestonesReached: list[GoalMilestone] = field(default_factory=list)
    ChallengeCompleted: bool = False
    ChallengeExpired: bool = False
    GoalCompleted: bool = False


def ProgressPercentage(goal: SavingsGoal) -> Decimal:
    target = ToMoney(goal.TargetAmount)
    if target <= 0:
        return ZERO
    return RoundMoney(ToMoney(goal.CurrentAmount) / target * Decimal("100"))


def _LoadGoal(db: Session, goal_id: int, for_update: bool = False) -> SavingsGoal:
    query = db.query(SavingsGoal).filter(SavingsGoal.Id == goal_id)
    if for_update:
        query = query.with_for_update()
    goal = query.first()
    if not goal:
        raise NotFoundError("Goal not found")
    return goal


def GetGoal(db: Session, goal_id: int) -> SavingsGoal:
    return _LoadGoal(db, goal_id)


def GetGoals(db: Session, child_id: int, include_closed: bool = False) -> list[SavingsGoal]:
    query = db.query(SavingsGoal).filter(SavingsGoal.ChildId == child_id)
    if not include_closed:
        query = query.filter(SavingsGoal.Status.notin_(sorted(CLOSED_STATUSES)))
    return query.order_by(SavingsGoal.Priority.asc(), SavingsGoal.Id.asc()).all()


def GetMilestones(db: Session, goal_id: int) -> list[GoalMilestone]:
    return (
        db.query(GoalMilestone)
        .filter(GoalMilestone.GoalId == goal_id)
        .order_by(GoalMilestone.PercentComplete.asc())
        .all()
    )


def GetMatchingRule(db: Session, goal_id: int) -> ParentMatchingRule | None:
    return db.query(ParentMatchingRule).filter(ParentMatchingRule.GoalId == goal_id).first()


def GetContributions(
    db: Session,
    goal_id: int,
    contribution_type=None,
    limit: int = 100,
) -> list[SavingsContribution]:
    query = db.query(SavingsContribution).filter(SavingsContribution.GoalId == goal_id)
    if contribution_type:
        query = query.filter(SavingsContribution.Type == EnumValue(contribution_type))
    return query.order_by(SavingsContribution.CreatedAt.desc(), SavingsContribution.Id.desc()).limit(limit).all()


def _ValidateAutoTransfer(transfer_type: str, amount: Decimal) -> None:
    if transfer_type not in {item.value for item in GoalTransferType}:
        raise InvalidAmountError("Unknown auto-transfer type")
    if amount < 0:
        raise InvalidAmountError("Auto-transfer amount cannot be negative")
    if transfer_type == GoalTransferType.Percentage.value and amount > 100:
        raise InvalidAmountError("Auto-transfer percentage must be between 0 and 100")


def CreateGoal(
    db: Session,
    *,
    child_id: int,
    name: str,
    target_amount,
    actor_user_id: int,
    description: str | None = None,
    image_url: str | None = None,
    product_url: str | None = None,
    category=GoalCategory.Other,
    target_date: datetime | None = None,
    priority: int = 1,
    auto_transfer_type=GoalTransferType.NoTransfer,
    auto_transfer_amount=0,
) -> SavingsGoal:
    target = ToMoney(target_amount)
    if target <= 0:
        raise InvalidAmountError("Target amount must be greater than zero")
    transfer_type = EnumValue(auto_transfer_type)
    transfer_amount = ToMoney(auto_transfer_amount)
    _ValidateAutoTransfer(transfer_type, transfer_amount)
    name = (name or "").strip()
    if not name:
        raise AllowanceError("Goal name is required")

    try:
        child = LoadChild(db, child_id)
        now = NowUtc()
        goal = SavingsGoal(
            ChildId=child.Id,
            Name=name,
            Description=description,
            TargetAmount=target,
            CurrentAmount=ZERO,
            ImageUrl=image_url,
            ProductUrl=product_url,
            Category=EnumValue(category),
            TargetDate=target_date,
            Status=GoalStatus.Active.value,
            Priority=priority,
            AutoTransferType=transfer_type,
            AutoTransferAmount=transfer_amount,
            CreatedAt=now,
            UpdatedAt=now,
        )
        db.add(goal)
        db.flush()
        for percent in MILESTONE_PERCENTS:
            db.add(
                GoalMilestone(
                    GoalId=goal.Id,
                    PercentComplete=percent,
                    TargetAmount=PercentOf(target, percent),
                    IsAchieved=False,
                    CelebrationMessage=f"You've reached {percent}% of your goal!",
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(goal)
    logger.info("goal created id=%s child=%s target=%s by=%s", goal.Id, child_id, target, actor_user_id)
    return goal


def UpdateGoal(db: Session, goal_id: int, changes: dict) -> SavingsGoal:
    try:
        goal = _LoadGoal(db, goal_id, for_update=True)
        if goal.Status in CLOSED_STATUSES:
            raise InvalidStateError(f"Cannot update a {goal.Status.lower()} goal")

        for key in ("Name", "Description", "ImageUrl", "ProductUrl", "TargetDate", "Priority"):
            if changes.get(key) is not None:
                setattr(goal, key, changes[key])
        if changes.get("Category") is not None:
            goal.Category = EnumValue(changes["Category"])

        transfer_type = EnumValue(changes.get("AutoTransferType") or goal.AutoTransferType)
        transfer_amount = ToMoney(
            changes["AutoTransferAmount"] if changes.get("AutoTransferAmount") is not None else goal.AutoTransferAmount
        )
        _ValidateAutoTransfer(transfer_type, transfer_amount)
        goal.AutoTransferType = transfer_type
        goal.AutoTransferAmount = transfer_amount

        if changes.get("TargetAmount") is not None:
            target = ToMoney(changes["TargetAmount"])
            if target <= 0:
                raise InvalidAmountError("Target amount must be greater than zero")
            goal.TargetAmount = target
            for milestone in GetMilestones(db, goal.Id):
                milestone.TargetAmount = PercentOf(target, milestone.PercentComplete)
            if goal.Status == GoalStatus.Completed.value and ToMoney(goal.CurrentAmount) < target:
                goal.Status = GoalStatus.Active.value
                goal.CompletedAt = None
            _CheckCompletion(goal, NowUtc())

        goal.UpdatedAt = NowUtc()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(goal)
    return goal


def _SetStatus(db: Session, goal_id: int, allowed_from: set[str], new_status: str) -> SavingsGoal:
    try:
        goal = _LoadGoal(db, goal_id, for_update=True)
        if goal.Status not in allowed_from:
            raise InvalidStateError(f"Goal is {goal.Status}")
        now = NowUtc()
        goal.Status = new_status
        if new_status == GoalStatus.Purchased.value:
            goal.PurchasedAt = now
        if new_status == GoalStatus.Active.value:
            _CheckCompletion(goal, now)
        goal.UpdatedAt = now
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(goal)
    logger.info("goal status id=%s status=%s", goal.Id, goal.Status)
    return goal


def PauseGoal(db: Session, goal_id: int) -> SavingsGoal:
    return _SetStatus(db, goal_id, {GoalStatus.Active.value}, GoalStatus.Paused.value)


def ResumeGoal(db: Session, goal_id: int) -> SavingsGoal:
    return _SetStatus(db, goal_id, {GoalStatus.Paused.value}, GoalStatus.Active.value)


def MarkGoalPurchased(db: Session, goal_id: int) -> SavingsGoal:
    return _SetStatus(db, goal_id, {GoalStatus.Completed.value}, GoalStatus.Purchased.value)


def CancelGoal(db: Session, goal_id: int, actor_user_id: int) -> SavingsGoal:
    try:
        goal = _LoadGoal(db, goal_id, for_update=True)
        if goal.Status in CLOSED_STATUSES:
            raise InvalidStateError(f"Goal is {goal.Status}")
        child = LoadChild(db, goal.ChildId, for_update=True)
        refund = ToMoney(goal.CurrentAmount)
        if refund > 0:
            child.CurrentBalance = ToMoney(child.CurrentBalance) + refund
            _AddContribution(
                db,
                goal,
                amount=-refund,
                contribution_type=ContributionType.Withdrawal.value,
                description="Goal cancelled, funds returned",
                actor_user_id=actor_user_id,
            )
        for challenge in _ActiveChallenges(db, goal.Id):
            challenge.Status = ChallengeStatus.Cancelled.value
        goal.Status = GoalStatus.Cancelled.value
        goal.UpdatedAt = NowUtc()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(goal)
    logger.info("goal cancelled id=%s refund=%s", goal.Id, refund)
    return goal


def SetMilestoneBonus(db: Session, goal_id: int, milestone_id: int, bonus_amount) -> GoalMilestone:
    milestone = (
        db.query(GoalMilestone)
        .filter(GoalMilestone.Id == milestone_id, GoalMilestone.GoalId == goal_id)
        .first()
    )
    if not milestone:
        raise NotFoundError("Milestone not found")
    if milestone.IsAchieved:
        raise InvalidStateError("Milestone already achieved")
    bonus = ToMoney(bonus_amount) if bonus_amount is not None else None
    if bonus is not None and bonus < 0:
        raise InvalidAmountError("Bonus cannot be negative")
    milestone.BonusAmount = bonus if bonus else None
    db.commit()
    db.refresh(milestone)
    return milestone


def CalculateMatchAmount(rule: ParentMatchingRule | None, amount, as_of: datetime | None = None) -> Decimal:
    if rule is None or not rule.IsActive:
        return ZERO
    if rule.ExpiresAt is not None and as_of is not None and as_of > rule.ExpiresAt:
        return ZERO
    value = ToMoney(amount)
    ratio = Decimal(str(rule.MatchRatio))
    if rule.Type == MatchingType.PercentageMatch.value:
        match = RoundMoney(value * ratio / Decimal("100"))
    else:
        match = RoundMoney(value * ratio)
    if rule.MaxMatchAmount is not None:
        remaining = ToMoney(rule.MaxMatchAmount) - ToMoney(rule.TotalMatchedAmount)
        match = min(match, max(remaining, ZERO))
    return max(match, ZERO)


def _AddContribution(
    db: Session,
    goal: SavingsGoal,
    *,
    amount: Decimal,
    contribution_type: str,
    description: str | None = None,
    actor_user_id: int | None = None,
    source_transaction_id: int | None = None,
    parent_match_id: int | None = None,
    as_of: datetime | None = None,
) -> SavingsContribution:
    goal.CurrentAmount = ToMoney(goal.CurrentAmount) + amount
    record = SavingsContribution(
        GoalId=goal.Id,
        ChildId=goal.ChildId,
        Amount=amount,
        Type=contribution_type,
        GoalBalanceAfter=goal.CurrentAmount,
        SourceTransactionId=source_transaction_id,
        ParentMatchId=parent_match_id,
        Description=description,
        CreatedByUserId=actor_user_id,
        CreatedAt=as_of or NowUtc(),
    )
    db.add(record)
    db.flush()
    return record


def _ActiveChallenges(db: Session, goal_id: int) -> list[GoalChallenge]:
    return (
        db.query(GoalChallenge)
        .filter(GoalChallenge.GoalId == goal_id, GoalChallenge.Status == ChallengeStatus.Active.value)
        .all()
    )


def _CheckCompletion(goal: SavingsGoal, as_of: datetime) -> bool:
    if goal.Status == GoalStatus.Active.value and ToMoney(goal.CurrentAmount) >= ToMoney(goal.TargetAmount):
        goal.Status = GoalStatus.Completed.value
        goal.CompletedAt = as_of
        return True
    return False


def _ApplyDeposit(
    db: Session,
    goal: SavingsGoal,
    child: Child,
    *,
    amount: Decimal,
    contribution_type: str,
    actor_user_id: int | None,
    description: str | None,
    source_transaction_id: int | None,
    as_of: datetime,
) -> GoalProgressResult:
    if contribution_type in BALANCE_FUNDED_TYPES:
        child.CurrentBalance = ToMoney(child.CurrentBalance) - amount

    contribution = _AddContribution(
        db,
        goal,
        amount=amount,
        contribution_type=contribution_type,
        description=description,
        actor_user_id=actor_user_id,
        source_transaction_id=source_transaction_id,
        as_of=as_of,
    )
    result = GoalProgressResult(Goal=goal, Contribution=contribution)

    if contribution_type == ContributionType.ChildDeposit.value:
        rule = GetMatchingRule(db, goal.Id)
        match = CalculateMatchAmount(rule, amount, as_of)
        if match > 0:
            result.MatchContribution = _AddContribution(
                db,
                goal,
                amount=match,
                contribution_type=ContributionType.ParentMatch.value,
                description=f"Parent match for ${amount:.2f} deposit",
                actor_user_id=rule.CreatedByUserId,
                parent_match_id=contribution.Id,
                as_of=as_of,
            )
            rule.TotalMatchedAmount = ToMoney(rule.TotalMatchedAmount) + match

    # Milestones are checked once; bonuses paid here never re-trigger the check.
    current = ToMoney(goal.CurrentAmount)
    bonuses = []
    for milestone in GetMilestones(db, goal.Id):
        if milestone.IsAchieved or current < ToMoney(milestone.TargetAmount):
            continue
        milestone.IsAchieved = True
        milestone.AchievedAt = as_of
        result.MilestonesReached.append(milestone)
        if milestone.BonusAmount and ToMoney(milestone.BonusAmount) > 0:
            bonuses.append(milestone)
    for milestone in bonuses:
        result.BonusContributions.append(
            _AddContribution(
                db,
                goal,
                amount=ToMoney(milestone.BonusAmount),
                contribution_type=ContributionType.ChallengeBonus.value,
                description=f"Bonus for reaching {milestone.PercentComplete}% milestone",
                as_of=as_of,
            )
        )

    for challenge in _ActiveChallenges(db, goal.Id):
        if as_of > challenge.EndDate:
            challenge.Status = ChallengeStatus.Expired.value
            result.ChallengeExpired = True
            continue
        progress = ToMoney(goal.CurrentAmount) - ToMoney(challenge.StartingAmount)
        if progress >= ToMoney(challenge.TargetAmount):
            challenge.Status = ChallengeStatus.Completed.value
            challenge.CompletedAt = as_of
            result.ChallengeCompleted = True
            result.BonusContributions.append(
                _AddContribution(
                    db,
                    goal,
                    amount=ToMoney(challenge.BonusAmount),
                    contribution_type=ContributionType.ChallengeBonus.value,
                    description="Challenge completed bonus",
                    actor_user_id=challenge.CreatedByUserId,
                    as_of=as_of,
                )
            )

    result.GoalCompleted = _CheckCompletion(goal, as_of)
    goal.UpdatedAt = as_of
    db.flush()
    _QueueProgressNotifications(db, child, goal, result, actor_user_id)
    return result


def _QueueProgressNotifications(
    db: Session,
    child: Child,
    goal: SavingsGoal,
    result: GoalProgressResult,
    actor_user_id: int | None,
) -> None:
    for milestone in result.MilestonesReached:
        NotifyChildAndParents(
            db,
            child,
            title=f"{goal.Name}: {milestone.PercentComplete}% reached",
            body=milestone.CelebrationMessage,
            notification_type="GoalMilestone",
            actor_user_id=actor_user_id,
            source_id=goal.Id,
            meta={"GoalId": goal.Id, "PercentComplete": milestone.PercentComplete},
        )
    if result.ChallengeCompleted:
        NotifyChildAndParents(
            db,
            child,
            title=f"{goal.Name}: challenge complete",
            body="You beat the savings challenge and earned a bonus!",
            notification_type="ChallengeCompleted",
            actor_user_id=actor_user_id,
            source_id=goal.Id,
        )
    if result.GoalCompleted:
        NotifyChildAndParents(
            db,
            child,
            title=f"{goal.Name} is fully funded",
            body=f"Goal of ${ToMoney(goal.TargetAmount):.2f} reached.",
            notification_type="GoalCompleted",
            actor_user_id=actor_user_id,
            source_id=goal.Id,
        )


def Contribute(
    db: Session,
    *,
    goal_id: int,
    amount,
    actor_user_id: int,
    contribution_type=ContributionType.ChildDeposit,
    description: str | None = None,
    source_transaction_id: int | None = None,
    as_of: datetime | None = None,
) -> GoalProgressResult:
    value = ToMoney(amount)
    if value <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    contribution_type = EnumValue(contribution_type)
    if contribution_type not in DEPOSIT_TYPES:
        raise AllowanceError(f"{contribution_type} contributions cannot be made directly")
    as_of = as_of or NowUtc()

    try:
        goal = _LoadGoal(db, goal_id, for_update=True)
        if goal.Status in (GoalStatus.Cancelled.value, GoalStatus.Paused.value):
            raise InvalidStateError(f"Cannot contribute to a {goal.Status.lower()} goal")
        child = LoadChild(db, goal.ChildId, for_update=True)
        if contribution_type in BALANCE_FUNDED_TYPES and ToMoney(child.CurrentBalance) < value:
            raise InsufficientBalanceError("Insufficient balance")
        result = _ApplyDeposit(
            db,
            goal,
            child,
            amount=value,
            contribution_type=contribution_type,
            actor_user_id=actor_user_id,
            description=description,
            source_transaction_id=source_transaction_id,
            as_of=as_of,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(goal)
    logger.info(
        "goal contribution goal=%s type=%s amount=%s match=%s balance=%s",
        goal.Id,
        contribution_type,
        value,
        result.MatchContribution.Amount if result.MatchContribution else 0,
        goal.CurrentAmount,
    )
    return result


def Withdraw(
    db: Session,
    *,
    goal_id: int,
    amount,
    actor_user_id: int,
    reason: str | None = None,
) -> SavingsContribution:
    value = ToMoney(amount)
    if value <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    try:
        goal = _LoadGoal(db, goal_id, for_update=True)
        if goal.Status == GoalStatus.Cancelled.value:
            raise InvalidStateError("Goal is cancelled")
        if value > ToMoney(goal.CurrentAmount):
            raise InsufficientGoalBalanceError("Insufficient goal balance")
        child = LoadChild(db, goal.ChildId, for_update=True)
        child.CurrentBalance = ToMoney(child.CurrentBalance) + value
        record = _AddContribution(
            db,
            goal,
            amount=-value,
            contribution_type=ContributionType.Withdrawal.value,
            description=reason,
            actor_user_id=actor_user_id,
        )
        goal.UpdatedAt = NowUtc()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    logger.info("goal withdrawal goal=%s amount=%s", goal_id, value)
    return record


def ApplyGoalAutoTransfers(
    db: Session,
    child: Child,
    *,
    allowance_amount,
    actor_user_id: int,
    as_of: datetime,
) -> list[GoalProgressResult]:
    goals = (
        db.query(SavingsGoal)
        .filter(
            SavingsGoal.ChildId == child.Id,
            SavingsGoal.Status == GoalStatus.Active.value,
            SavingsGoal.AutoTransferType != GoalTransferType.NoTransfer.value,
        )
        .order_by(SavingsGoal.Priority.asc(), SavingsGoal.Id.asc())
        .with_for_update()
        .all()
    )
    results = []
    for goal in goals:
        balance = ToMoney(child.CurrentBalance)
        if balance <= 0:
            break
        if goal.AutoTransferType == GoalTransferType.Percentage.value:
            amount = PercentOf(allowance_amount, goal.AutoTransferAmount)
        else:
            amount = ToMoney(goal.AutoTransferAmount)
        amount = min(amount, balance, ToMoney(goal.TargetAmount) - ToMoney(goal.CurrentAmount))
        if amount <= 0:
            continue
        results.append(
            _ApplyDeposit(
                db,
                goal,
                child,
                amount=amount,
                contribution_type=ContributionType.AutoTransfer.value,
                actor_user_id=actor_user_id,
                description="Automatic transfer from allowance",
                source_transaction_id=None,
                as_of=as_of,
            )
        )
        logger.info("goal auto-transfer goal=%s child=%s amount=%s", goal.Id, child.Id, amount)
    return results


def _ValidateMatchRatio(match_type: str, value) -> Decimal:
    ratio = ToMoney(value)
    if ratio <= 0:
        raise InvalidAmountError("Match ratio must be greater than zero")
    if match_type == MatchingType.PercentageMatch.value and ratio > 100:
        raise InvalidAmountError("Match percentage must be between 0 and 100")
    return ratio


def CreateMatchingRule(
    db: Session,
    *,
    goal_id: int,
    match_type,
    match_ratio,
    actor_user_id: int,
    max_match_amount=None,
    expires_at: datetime | None = None,
) -> ParentMatchingRule:
    match_type = EnumValue(match_type)
    if match_type not in {item.value for item in MatchingType}:
        raise InvalidAmountError("Unknown matching type")
    ratio = _ValidateMatchRatio(match_type, match_ratio)
    cap = ToMoney(max_match_amount) if max_match_amount is not None else None
    if cap is not None and cap <= 0:
        raise InvalidAmountError("Maximum match must be greater than zero")

    goal = _LoadGoal(db, goal_id)
    if goal.Status in CLOSED_STATUSES:
        raise InvalidStateError(f"Goal is {goal.Status}")
    if GetMatchingRule(db, goal_id):
        raise InvalidStateError("Goal already has a matching rule")
    rule = ParentMatchingRule(
        GoalId=goal_id,
        CreatedByUserId=actor_user_id,
        Type=match_type,
        MatchRatio=ratio,
        MaxMatchAmount=cap,
        TotalMatchedAmount=ZERO,
        IsActive=True,
        ExpiresAt=expires_at,
        CreatedAt=NowUtc(),
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("matching rule created goal=%s type=%s ratio=%s cap=%s", goal_id, match_type, ratio, cap)
    return rule


def UpdateMatchingRule(db: Session, goal_id: int, changes: dict) -> ParentMatchingRule:
    rule = GetMatchingRule(db, goal_id)
    if not rule:
        raise NotFoundError("Matching rule not found")
    if changes.get("MatchRatio") is not None:
        rule.MatchRatio = _ValidateMatchRatio(rule.Type, changes["MatchRatio"])
    if changes.get("MaxMatchAmount") is not None:
        cap = ToMoney(changes["MaxMatchAmount"])
        if cap < ToMoney(rule.TotalMatchedAmount):
            raise InvalidAmountError("Maximum match cannot be below the amount already matched")
        rule.MaxMatchAmount = cap
    if changes.get("IsActive") is not None:
        rule.IsActive = bool(changes["IsActive"])
    if "ExpiresAt" in changes:
        rule.ExpiresAt = changes["ExpiresAt"]
    db.commit()
    db.refresh(rule)
    return rule


def RemoveMatchingRule(db: Session, goal_id: int) -> None:
    rule = GetMatchingRule(db, goal_id)
    if not rule:
        raise NotFoundError("Matching rule not found")
    db.delete(rule)
    db.commit()


def _ExpireIfDue(challenge: GoalChallenge, as_of: datetime) -> bool:
    if challenge.Status == ChallengeStatus.Active.value and as_of > challenge.EndDate:
        challenge.Status = ChallengeStatus.Expired.value
        return True
    return False


def GetActiveChallenge(db: Session, goal_id: int, as_of: datetime | None = None) -> GoalChallenge | None:
    as_of = as_of or NowUtc()
    expired = False
    active = None
    for challenge in _ActiveChallenges(db, goal_id):
        if _ExpireIfDue(challenge, as_of):
            expired = True
        else:
            active = challenge
    if expired:
        db.commit()
    return active


def CreateChallenge(
    db: Session,
    *,
    goal_id: int,
    target_amount,
    end_date: datetime,
    bonus_amount,
    actor_user_id: int,
    description: str | None = None,
    as_of: datetime | None = None,
) -> GoalChallenge:
    target = ToMoney(target_amount)
    bonus = ToMoney(bonus_amount)
    if target <= 0 or bonus <= 0:
        raise InvalidAmountError("Challenge target and bonus must be greater than zero")
    as_of = as_of or NowUtc()
    if end_date <= as_of:
        raise AllowanceError("Challenge end date must be in the future")

    goal = _LoadGoal(db, goal_id)
    if goal.Status != GoalStatus.Active.value:
        raise InvalidStateError("Challenges can only be added to active goals")
    if GetActiveChallenge(db, goal_id, as_of):
        raise InvalidStateError("Goal already has an active challenge")
    challenge = GoalChallenge(
        GoalId=goal_id,
        CreatedByUserId=actor_user_id,
        TargetAmount=target,
        StartingAmount=ToMoney(goal.CurrentAmount),
        StartDate=as_of,
        EndDate=end_date,
        BonusAmount=bonus,
        Status=ChallengeStatus.Active.value,
        Description=description,
        CreatedAt=as_of,
    )
    db.add(challenge)
    db.commit()
    db.refresh(challenge)
    logger.info("challenge created goal=%s target=%s ends=%s", goal_id, target, end_date)
    return challenge


def CancelChallenge(db: Session, goal_id: int) -> GoalChallenge:
    challenges = _ActiveChallenges(db, goal_id)
    if not challenges:
        raise NotFoundError("No active challenge")
    for challenge in challenges:
        challenge.Status = ChallengeStatus.Cancelled.value
    db.commit()
    db.refresh(challenges[0])
    return challenges[0]


def ExpireChallenges(db: Session, as_of: datetime | None = None, family_id: int | None = None) -> int:
    as_of = as_of or NowUtc()
    query = db.query(GoalChallenge).filter(
        GoalChallenge.Status == ChallengeStatus.Active.value,
        GoalChallenge.EndDate < as_of,
    )
    if family_id is not None:
        query = (
            query.join(SavingsGoal, SavingsGoal.Id == GoalChallenge.GoalId)
            .join(Child, Child.Id == SavingsGoal.ChildId)
            .filter(Child.FamilyId == family_id)
        )
    challenges = query.all()
    for challenge in challenges:
        challenge.Status = ChallengeStatus.Expired.value
    if challenges:
        db.commit()
        logger.info("expired %s challenge(s)", len(challenges))
    return len(challenges)
