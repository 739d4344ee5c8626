from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from app.modules.allowance.errors import InvalidAmountError, InvalidStateError
from app.modules.allowance.models import Child, SavingsTransaction, Transaction
from app.modules.allowance.schemas import TransactionCategory, TransactionType
from app.modules.allowance.services import savings_account_service, savings_goal_service
from app.modules.allowance.services.child_service import LoadChild, NotifyChildAndParents
from app.modules.allowance.services.savings_goal_service import GoalProgressResult
from app.modules.allowance.services.transaction_service import ApplyTransaction
from app.modules.auth.deps import NowUtc
from app.modules.notifications.services import SYSTEM_USER_ID
from app.services.money import ToMoney, ZERO
from app.services.schedules import NextWeekdayOnOrAfter

logger = logging.getLogger("app.allowance")

ALLOWANCE_INTERVAL = timedelta(days=7)


@dataclass(frozen=True)
class AllowanceResult:
    ChildId: int
    Amount: Decimal
    DueAt: datetime
    AsOf: datetime


@dataclass
class AllowancePayment:
    ChildId: int
    Amount: Decimal
    Transaction: Transaction
    PaidAt: datetime
    SavingsTransfer: SavingsTransaction | None = None
    GoalTransfers: list[GoalProgressResult] = field(default_factory=list)

    @property
    def SavingsTransferred(self) -> Decimal:
        return ToMoney(self.SavingsTransfer.Amount) if self.SavingsTransfer else ZERO

    @property
    def GoalTransferred(self) -> Decimal:
        return sum((ToMoney(item.Contribution.Amount) for item in self.GoalTransfers), ZERO)


@dataclass
class AllowanceRunResult:
    Processed: int = 0
    Paid: int = 0
    Failed: int = 0
    ExpiredChallenges: int = 0
    Payments: list[AllowancePayment] = field(default_factory=list)
    FailedChildIds: list[int] = field(default_factory=list)


def _DueAt(child: Child) -> datetime | None:
    if child.LastAllowanceDate is None:
        return None
    if child.AllowanceDay is not None:
        due_date = NextWeekdayOnOrAfter(child.LastAllowanceDate + timedelta(days=1), child.AllowanceDay)
        return datetime.combine(due_date, time.min)
    return child.LastAllowanceDate + ALLOWANCE_INTERVAL


def NextAllowanceDue(child: Child, as_of: datetime | None = None) -> datetime | None:
    if child.AllowancePaused or ToMoney(child.WeeklyAllowance) <= 0:
        return None
    return _DueAt(child) or (as_of or NowUtc())


def ComputeDueAllowance(child: Child, as_of: datetime) -> AllowanceResult | None:
    if child.AllowancePaused:
        return None
    amount = ToMoney(child.WeeklyAllowance)
    if amount <= 0:
        return None
    due_at = _DueAt(child) or as_of
    if as_of < due_at:
        return None
    return AllowanceResult(ChildId=child.Id, Amount=amount, DueAt=due_at, AsOf=as_of)


def PayAllowance(
    db: Session,
    child_id: int,
    *,
    as_of: datetime | None = None,
    actor_user_id: int = SYSTEM_USER_ID,
) -> AllowancePayment | None:
    as_of = as_of or NowUtc()
    try:
        child = LoadChild(db, child_id, for_update=True)
        if not child.IsActive:
            raise InvalidStateError("Child is not active")
        due = ComputeDueAllowance(child, as_of)
        if due is None:
            db.rollback()
            return None

        record = ApplyTransaction(
            db,
            child,
            amount=due.Amount,
            transaction_type=TransactionType.Credit.value,
            category=TransactionCategory.Allowance.value,
            description="Weekly allowance",
            actor_user_id=actor_user_id,
            as_of=as_of,
        )
        child.LastAllowanceDate = as_of
        payment = AllowancePayment(ChildId=child.Id, Amount=due.Amount, Transaction=record, PaidAt=as_of)
        payment.SavingsTransfer = savings_account_service.ApplyAutomaticTransfer(
            db,
            child,
            credited_amount=due.Amount,
            source_transaction_id=record.Id,
            actor_user_id=actor_user_id,
            from_allowance=True,
            as_of=as_of,
        )
        payment.GoalTransfers = savings_goal_service.ApplyGoalAutoTransfers(
            db,
            child,
            allowance_amount=due.Amount,
            actor_user_id=actor_user_id,
            as_of=as_of,
        )

        body = f"${due.Amount:.2f} added to your balance."
        if payment.SavingsTransferred > 0:
            body += f" ${payment.SavingsTransferred:.2f} moved to savings."
        NotifyChildAndParents(
            db,
            child,
            title="Allowance paid",
            body=body,
            notification_type="AllowancePaid",
            actor_user_id=actor_user_id,
            source_id=record.Id,
            meta={"ChildId": child.Id, "Amount": due.Amount},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "allowance paid child=%s amount=%s savings=%s goals=%s",
        child_id,
        payment.Amount,
        payment.SavingsTransferred,
        payment.GoalTransferred,
    )
    return payment


def ProcessPendingAllowances(
    db: Session,
    as_of: datetime | None = None,
    family_id: int | None = None,
) -> AllowanceRunResult:
    as_of = as_of or NowUtc()
    result = AllowanceRunResult()
    result.ExpiredChallenges = savings_goal_service.ExpireChallenges(db, as_of, family_id=family_id)

    query = db.query(Child).filter(
        Child.IsActive == True,  # noqa: E712
        Child.AllowancePaused == False,  # noqa: E712
        Child.WeeklyAllowance > 0,
    )
    if family_id is not None:
        query = query.filter(Child.FamilyId == family_id)
    child_ids = [child.Id for child in query.order_by(Child.Id.asc()).all() if ComputeDueAllowance(child, as_of)]

    for child_id in child_ids:
        result.Processed += 1
        try:
            payment = PayAllowance(db, child_id, as_of=as_of)
        except Exception:  # noqa: BLE001
            logger.exception("allowance payment failed child=%s", child_id)
            result.Failed += 1
            result.FailedChildIds.append(child_id)
            continue
        if payment:
            result.Paid += 1
            result.Payments.append(payment)

    logger.info(
        "allowance run complete processed=%s paid=%s failed=%s expired_challenges=%s",
        result.Processed,
        result.Paid,
        result.Failed,
        result.ExpiredChallenges,
    )
    return result


def UpdateAllowanceSettings(
    db: Session,
    child_id: int,
    *,
    weekly_allowance=None,
    allowance_day: int | None = None,
    clear_allowance_day: bool = False,
    allow_debt: bool | None = None,
) -> Child:
    try:
        child = LoadChild(db, child_id, for_update=True)
        if weekly_allowance is not None:
            amount = ToMoney(weekly_allowance)
            if amount < 0:
                raise InvalidAmountError("Weekly allowance cannot be negative")
            child.WeeklyAllowance = amount
        if clear_allowance_day:
            child.AllowanceDay = None
        elif allowance_day is not None:
            if allowance_day < 0 or allowance_day > 6:
                raise InvalidAmountError("Allowance day must be between 0 (Monday) and 6 (Sunday)")
            child.AllowanceDay = allowance_day
        if allow_debt is not None:
            if not allow_debt and ToMoney(child.CurrentBalance) < 0:
                raise InvalidStateError("Balance is negative; settle it before disabling debt")
            child.AllowDebt = allow_debt
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(child)
    logger.info("allowance settings updated child=%s", child_id)
    return child


def PauseAllowance(db: Session, child_id: int, *, reason: str | None, actor_user_id: int) -> Child:
    try:
        child = LoadChild(db, child_id, for_update=True)
        if child.AllowancePaused:
            raise InvalidStateError("Allowance is already paused")
        child.AllowancePaused = True
        child.AllowancePausedReason = (reason or "").strip() or None
        NotifyChildAndParents(
            db,
            child,
            title="Allowance paused",
            body=child.AllowancePausedReason,
            notification_type="AllowancePaused",
            actor_user_id=actor_user_id,
            source_id=child.Id,
            include_parents=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(child)
    logger.info("allowance paused child=%s", child_id)
    return child


def ResumeAllowance(db: Session, child_id: int, *, actor_user_id: int) -> Child:
    try:
        child = LoadChild(db, child_id, for_update=True)
        if not child.AllowancePaused:
            raise InvalidStateError("Allowance is not paused")
        child.AllowancePaused = False
        child.AllowancePausedReason = None
        NotifyChildAndParents(
            db,
            child,
            title="Allowance resumed",
            body=None,
            notification_type="AllowanceResumed",
            actor_user_id=actor_user_id,
            source_id=child.Id,
            include_parents=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(child)
    logger.info("allowance resumed child=%s", child_id)
    return child
