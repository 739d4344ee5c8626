from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from app.modules.allowance.errors import (
    AllowanceError,
    BudgetExceededError,
    InsufficientBalanceError,
    InvalidAmountError,
)
from app.modules.allowance.models import Child, SavingsTransaction, Transaction
from app.modules.allowance.schemas import TransactionCategory, TransactionType
from app.modules.allowance.services import budget_service, savings_account_service
from app.modules.allowance.services.budget_service import BudgetCheckResult
from app.modules.allowance.services.child_service import EnumValue, LoadChild, NotifyChildAndParents
from app.modules.auth.deps import NowUtc
from app.services.money import ToMoney, ZERO

logger = logging.getLogger("app.transactions")

_CATEGORY_VALUES = {item.value for item in TransactionCategory}


@dataclass
class TransactionResult:
    Transaction: Transaction
    DrawnFromSavings: Decimal = ZERO
    SavingsTransfer: SavingsTransaction | None = None
    BudgetCheck: BudgetCheckResult | None = None


def ApplyTransaction(
    db: Session,
    child: Child,
    *,
    amount: Decimal,
    transaction_type: str,
    category: str,
    description: str,
    actor_user_id: int,
    notes: str | None = None,
    as_of: datetime | None = None,
) -> Transaction:
    if transaction_type == TransactionType.Credit.value:
        child.CurrentBalance = ToMoney(child.CurrentBalance) + amount
    else:
        child.CurrentBalance = ToMoney(child.CurrentBalance) - amount
    record = Transaction(
        ChildId=child.Id,
        Amount=amount,
        Type=transaction_type,
        Category=category,
        Description=description,
        Notes=notes,
        BalanceAfter=child.CurrentBalance,
        CreatedByUserId=actor_user_id,
        CreatedAt=as_of or NowUtc(),
    )
    db.add(record)
    db.flush()
    return record


def CreateTransaction(
    db: Session,
    *,
    child_id: int,
    amount,
    transaction_type,
    category,
    description: str,
    actor_user_id: int,
    notes: str | None = None,
    draw_from_savings: bool = False,
    apply_savings_sweep: bool = False,
    as_of: datetime | None = None,
) -> TransactionResult:
    value = ToMoney(amount)
    if value <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    transaction_type = EnumValue(transaction_type)
    category = EnumValue(category)
    if transaction_type not in (TransactionType.Credit.value, TransactionType.Debit.value):
        raise AllowanceError("Unknown transaction type")
    if category not in _CATEGORY_VALUES:
        raise AllowanceError("Unknown transaction category")
    description = (description or "").strip()
    if not description:
        raise AllowanceError("Description is required")
    as_of = as_of or NowUtc()

    try:
        child = LoadChild(db, child_id, for_update=True)
        result = None
        if transaction_type == TransactionType.Debit.value:
            result = _ApplyDebit(
                db,
                child,
                amount=value,
                category=category,
                description=description,
                notes=notes,
                actor_user_id=actor_user_id,
                draw_from_savings=draw_from_savings,
                as_of=as_of,
            )
        else:
            record = ApplyTransaction(
                db,
                child,
                amount=value,
                transaction_type=transaction_type,
                category=category,
                description=description,
                actor_user_id=actor_user_id,
                notes=notes,
                as_of=as_of,
            )
            result = TransactionResult(Transaction=record)
            if apply_savings_sweep:
                result.SavingsTransfer = savings_account_service.ApplyAutomaticTransfer(
                    db,
                    child,
                    credited_amount=value,
                    source_transaction_id=record.Id,
                    actor_user_id=actor_user_id,
                    from_allowance=False,
                    as_of=as_of,
                )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(result.Transaction)
    logger.info(
        "transaction child=%s type=%s category=%s amount=%s balance=%s",
        child_id,
        transaction_type,
        category,
        value,
        result.Transaction.BalanceAfter,
    )
    return result


def _ApplyDebit(
    db: Session,
    child: Child,
    *,
    amount: Decimal,
    category: str,
    description: str,
    notes: str | None,
    actor_user_id: int,
    draw_from_savings: bool,
    as_of: datetime,
) -> TransactionResult:
    check = budget_service.CheckBudget(db, child.Id, category, amount, as_of)
    if not check.Allowed:
        raise BudgetExceededError(check)

    balance = ToMoney(child.CurrentBalance)
    shortfall = amount - max(balance, ZERO)
    drawn = ZERO
    if draw_from_savings and shortfall > 0:
        drawn = min(shortfall, ToMoney(child.SavingsBalance))
    if balance + drawn < amount and not child.AllowDebt:
        raise InsufficientBalanceError("Insufficient balance")

    if drawn > 0:
        savings_account_service.ApplySavingsEntry(
            db,
            child,
            amount=-drawn,
            description=f"Drawn to cover: {description}"[:500],
            actor_user_id=actor_user_id,
            as_of=as_of,
        )

    record = ApplyTransaction(
        db,
        child,
        amount=amount,
        transaction_type=TransactionType.Debit.value,
        category=category,
        description=description,
        actor_user_id=actor_user_id,
        notes=notes,
        as_of=as_of,
    )

    if check.IsWarning:
        NotifyChildAndParents(
            db,
            child,
            title="Budget warning",
            body=check.Message,
            notification_type="BudgetWarning",
            actor_user_id=actor_user_id,
            source_id=record.Id,
            meta={"Category": category, "RemainingAfter": check.RemainingAfter},
        )
    return TransactionResult(Transaction=record, DrawnFromSavings=drawn, BudgetCheck=check)


def GetTransactions(
    db: Session,
    child_id: int,
    limit: int = 50,
    category: str | None = None,
) -> list[Transaction]:
    query = db.query(Transaction).filter(Transaction.ChildId == child_id)
    if category:
        query = query.filter(Transaction.Category == EnumValue(category))
    return query.order_by(Transaction.CreatedAt.desc(), Transaction.Id.desc()).limit(limit).all()
