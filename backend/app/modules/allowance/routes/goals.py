import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from app.db import GetDb
from app.modules.allowance.errors import AccessDeniedError, AllowanceError
from app.modules.allowance.models import (
    GoalChallenge,
    GoalMilestone,
    ParentMatchingRule,
    SavingsContribution,
    SavingsGoal,
)
from app.modules.allowance.schemas import (
    ChallengeCreate,
    ChallengeOut,
    ContributionCreate,
    ContributionOut,
    ContributionType,
    GoalCreate,
    GoalOut,
    GoalProgressOut,
    GoalUpdate,
    GoalWithdrawRequest,
    MatchingRuleCreate,
    MatchingRuleOut,
    MatchingRuleUpdate,
    MilestoneBonusUpdate,
    MilestoneOut,
)
from app.modules.allowance.services import savings_goal_service
from app.modules.allowance.utils.errors import handle_allowance_error, handle_db_error
from app.modules.allowance.utils.rbac import (
    EnsureChildAccess,
    EnsureGoalAccess,
    IsParent,
    RequireAllowanceMember,
    RequireAllowanceParent,
)
from app.modules.auth.deps import UserContext
from app.services.schedules import ToNaiveUtc

router = APIRouter()
logger = logging.getLogger("allowance.goals")


def _BuildMilestoneOut(milestone: GoalMilestone) -> MilestoneOut:
    return MilestoneOut(
        Id=milestone.Id,
        PercentComplete=milestone.PercentComplete,
        TargetAmount=float(milestone.TargetAmount),
        IsAchieved=milestone.IsAchieved,
        AchievedAt=milestone.AchievedAt,
        CelebrationMessage=milestone.CelebrationMessage,
        BonusAmount=float(milestone.BonusAmount) if milestone.BonusAmount is not None else None,
    )


def _BuildMatchingRuleOut(rule: ParentMatchingRule) -> MatchingRuleOut:
    return MatchingRuleOut(
        Id=rule.Id,
        GoalId=rule.GoalId,
        Type=rule.Type,
        MatchRatio=float(rule.MatchRatio),
        MaxMatchAmount=float(rule.MaxMatchAmount) if rule.MaxMatchAmount is not None else None,
        TotalMatchedAmount=float(rule.TotalMatchedAmount),
        IsActive=rule.IsActive,
        ExpiresAt=rule.ExpiresAt,
    )


def _BuildChallengeOut(challenge: GoalChallenge, goal: SavingsGoal) -> ChallengeOut:
    return ChallengeOut(
        Id=challenge.Id,
        GoalId=challenge.GoalId,
        TargetAmount=float(challenge.TargetAmount),
        StartingAmount=float(challenge.StartingAmount),
        Progress=max(float(goal.CurrentAmount) - float(challenge.StartingAmount), 0.0),
        StartDate=challenge.StartDate,
        EndDate=challenge.EndDate,
        BonusAmount=float(challenge.BonusAmount),
        Status=challenge.Status,
        CompletedAt=challenge.CompletedAt,
        Description=challenge.Description,
    )


def _BuildContributionOut(record: SavingsContribution) -> ContributionOut:
    return ContributionOut(
        Id=record.Id,
        GoalId=record.GoalId,
        ChildId=record.ChildId,
        Amount=float(record.Amount),
        Type=record.Type,
        GoalBalanceAfter=float(record.GoalBalanceAfter),
        SourceTransactionId=record.SourceTransactionId,
        ParentMatchId=record.ParentMatchId,
        Description=record.Description,
        CreatedByUserId=record.CreatedByUserId,
        CreatedAt=record.CreatedAt,
    )


def _BuildGoalOut(db: Session, goal: SavingsGoal) -> GoalOut:
    rule = savings_goal_service.GetMatchingRule(db, goal.Id)
    challenge = savings_goal_service.GetActiveChallenge(db, goal.Id)
    return GoalOut(
        Id=goal.Id,
        ChildId=goal.ChildId,
        Name=goal.Name,
        Description=goal.Description,
        TargetAmount=float(goal.TargetAmount),
        CurrentAmount=float(goal.CurrentAmount),
        RemainingAmount=max(float(goal.TargetAmount) - float(goal.CurrentAmount), 0.0),
        ProgressPercentage=float(savings_goal_service.ProgressPercentage(goal)),
        ImageUrl=goal.ImageUrl,
        ProductUrl=goal.ProductUrl,
        Category=goal.Category,
        TargetDate=goal.TargetDate,
        Status=goal.Status,
        CompletedAt=goal.CompletedAt,
        PurchasedAt=goal.PurchasedAt,
        Priority=goal.Priority,
        AutoTransferType=goal.AutoTransferType,
        AutoTransferAmount=float(goal.AutoTransferAmount),
        CreatedAt=goal.CreatedAt,
        Milestones=[_BuildMilestoneOut(item) for item in savings_goal_service.GetMilestones(db, goal.Id)],
        MatchingRule=_BuildMatchingRuleOut(rule) if rule else None,
        ActiveChallenge=_BuildChallengeOut(challenge, goal) if challenge else None,
    )


@router.get("/children/{child_id}/goals", response_model=list[GoalOut])
def ListGoals(
    child_id: int,
    include_closed: bool = False,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[GoalOut]:
    try:
        EnsureChildAccess(db, user, child_id)
        goals = savings_goal_service.GetGoals(db, child_id, include_closed=include_closed)
        return [_BuildGoalOut(db, goal) for goal in goals]
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)


@router.post("/children/{child_id}/goals", response_model=GoalOut, status_code=status.HTTP_201_CREATED)
def CreateGoal(
    child_id: int,
    payload: GoalCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> GoalOut:
    try:
        EnsureChildAccess(db, user, child_id, write=True, allow_child_write=True)
        goal = savings_goal_service.CreateGoal(
            db,
            child_id=child_id,
            name=payload.Name,
            target_amount=payload.TargetAmount,
            actor_user_id=user.Id,
            description=payload.Description,
            image_url=payload.ImageUrl,
            product_url=payload.ProductUrl,
            category=payload.Category,
            target_date=ToNaiveUtc(payload.TargetDate),
            priority=payload.Priority,
            auto_transfer_type=payload.AutoTransferType,
            auto_transfer_amount=payload.AutoTransferAmount,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildGoalOut(db, goal)


@router.get("/goals/{goal_id}", response_model=GoalOut)
def GetGoal(
    goal_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> GoalOut:
    try:
        goal = EnsureGoalAccess(db, user, goal_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildGoalOut(db, goal)


@router.put("/goals/{goal_id}", response_model=GoalOut)
def UpdateGoal(
    goal_id: int,
    payload: GoalUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> GoalOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True, allow_child_write=True)
        changes = payload.model_dump(exclude_unset=True)
        if changes.get("TargetDate") is not None:
            changes["TargetDate"] = ToNaiveUtc(changes["TargetDate"])
        goal = savings_goal_service.UpdateGoal(db, goal_id, changes)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildGoalOut(db, goal)


@router.post("/goals/{goal_id}/pause", response_model=GoalOut)
def PauseGoal(
    goal_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> GoalOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        goal = savings_goal_service.PauseGoal(db, goal_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildGoalOut(db, goal)


@router.post("/goals/{goal_id}/resume", response_model=GoalOut)
def ResumeGoal(
    goal_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> GoalOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        goal = savings_goal_service.ResumeGoal(db, goal_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildGoalOut(db, goal)


@router.post("/goals/{goal_id}/cancel", response_model=GoalOut)
def CancelGoal(
    goal_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> GoalOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        goal = savings_goal_service.CancelGoal(db, goal_id, actor_user_id=user.Id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildGoalOut(db, goal)


@router.post("/goals/{goal_id}/purchase", response_model=GoalOut)
def MarkGoalPurchased(
    goal_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> GoalOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        goal = savings_goal_service.MarkGoalPurchased(db, goal_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildGoalOut(db, goal)


@router.post("/goals/{goal_id}/contribute", response_model=GoalProgressOut)
def ContributeToGoal(
    goal_id: int,
    payload: ContributionCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> GoalProgressOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True, allow_child_write=True)
        if not IsParent(user) and payload.Type != ContributionType.ChildDeposit:
            raise AccessDeniedError("Only a parent can add gifts")
        result = savings_goal_service.Contribute(
            db,
            goal_id=goal_id,
            amount=payload.Amount,
            contribution_type=payload.Type,
            description=payload.Description,
            actor_user_id=user.Id,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)
    return GoalProgressOut(
        Goal=_BuildGoalOut(db, result.Goal),
        Contribution=_BuildContributionOut(result.Contribution),
        MatchContribution=_BuildContributionOut(result.MatchContribution) if result.MatchContribution else None,
        BonusContributions=[_BuildContributionOut(item) for item in result.BonusContributions],
        MilestonesReached=[_BuildMilestoneOut(item) for item in result.MilestonesReached],
        ChallengeCompleted=result.ChallengeCompleted,
        ChallengeExpired=result.ChallengeExpired,
        GoalCompleted=result.GoalCompleted,
    )


@router.post("/goals/{goal_id}/withdraw", response_model=ContributionOut)
def WithdrawFromGoal(
    goal_id: int,
    payload: GoalWithdrawRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> ContributionOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True, allow_child_write=True)
        record = savings_goal_service.Withdraw(
            db,
            goal_id=goal_id,
            amount=payload.Amount,
            reason=payload.Reason,
            actor_user_id=user.Id,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildContributionOut(record)


@router.get("/goals/{goal_id}/contributions", response_model=list[ContributionOut])
def ListContributions(
    goal_id: int,
    type: ContributionType | None = None,
    limit: int = 100,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceMember()),
) -> list[ContributionOut]:
    try:
        EnsureGoalAccess(db, user, goal_id)
        records = savings_goal_service.GetContributions(
            db, goal_id, contribution_type=type, limit=min(max(limit, 1), 500)
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return [_BuildContributionOut(record) for record in records]


@router.put("/goals/{goal_id}/milestones/{milestone_id}/bonus", response_model=MilestoneOut)
def SetMilestoneBonus(
    goal_id: int,
    milestone_id: int,
    payload: MilestoneBonusUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> MilestoneOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        milestone = savings_goal_service.SetMilestoneBonus(db, goal_id, milestone_id, payload.BonusAmount)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildMilestoneOut(milestone)


@router.post("/goals/{goal_id}/matching-rule", response_model=MatchingRuleOut, status_code=status.HTTP_201_CREATED)
def CreateMatchingRule(
    goal_id: int,
    payload: MatchingRuleCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> MatchingRuleOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        rule = savings_goal_service.CreateMatchingRule(
            db,
            goal_id=goal_id,
            match_type=payload.Type,
            match_ratio=payload.MatchRatio,
            max_match_amount=payload.MaxMatchAmount,
            expires_at=ToNaiveUtc(payload.ExpiresAt),
            actor_user_id=user.Id,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildMatchingRuleOut(rule)


@router.put("/goals/{goal_id}/matching-rule", response_model=MatchingRuleOut)
def UpdateMatchingRule(
    goal_id: int,
    payload: MatchingRuleUpdate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> MatchingRuleOut:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        changes = payload.model_dump(exclude_unset=True)
        if "ExpiresAt" in changes:
            changes["ExpiresAt"] = ToNaiveUtc(changes["ExpiresAt"])
        rule = savings_goal_service.UpdateMatchingRule(db, goal_id, changes)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildMatchingRuleOut(rule)


@router.delete("/goals/{goal_id}/matching-rule", status_code=status.HTTP_204_NO_CONTENT)
def RemoveMatchingRule(
    goal_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> None:
    try:
        EnsureGoalAccess(db, user, goal_id, write=True)
        savings_goal_service.RemoveMatchingRule(db, goal_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)


@router.post("/goals/{goal_id}/challenge", response_model=ChallengeOut, status_code=status.HTTP_201_CREATED)
def CreateChallenge(
    goal_id: int,
    payload: ChallengeCreate,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> ChallengeOut:
    try:
        goal = EnsureGoalAccess(db, user, goal_id, write=True)
        challenge = savings_goal_service.CreateChallenge(
            db,
            goal_id=goal_id,
            target_amount=payload.TargetAmount,
            end_date=ToNaiveUtc(payload.EndDate),
            bonus_amount=payload.BonusAmount,
            description=payload.Description,
            actor_user_id=user.Id,
        )
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildChallengeOut(challenge, goal)


@router.delete("/goals/{goal_id}/challenge", response_model=ChallengeOut)
def CancelChallenge(
    goal_id: int,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> ChallengeOut:
    try:
        goal = EnsureGoalAccess(db, user, goal_id, write=True)
        challenge = savings_goal_service.CancelChallenge(db, goal_id)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    return _BuildChallengeOut(challenge, goal)
