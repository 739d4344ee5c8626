from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy.orm import Session

from app.modules.allowance.errors import InsufficientBalanceError, InvalidAmountError
from app.modules.allowance.models import Child, SavingsTransaction
from app.modules.allowance.schemas import SavingsTransactionType, SavingsTransferType
from app.modules.allowance.services.child_service import EnumValue, LoadChild
from app.modules.auth.deps import NowUtc
from app.services.money import PercentOf, ToMoney, ZERO

logger = logging.getLogger("app.savings")


def CalculateTransferAmount(child: Child, allowance_amount, from_allowance: bool = True) -> Decimal:
    transfer_type = child.SavingsTransferType or SavingsTransferType.NoTransfer.value
    amount = ToMoney(allowance_amount)
    if transfer_type == SavingsTransferType.FixedAmount.value:
        fixed = ToMoney(child.SavingsTransferAmount)
        if from_allowance:
            return min(fixed, amount)
        return fixed
    if transfer_type == SavingsTransferType.Percentage.value:
        return PercentOf(amount, child.SavingsTransferPercentage or 0)
    return ZERO


def ClampToSpendingBalance(child: Child, amount) -> Decimal:
    amount = ToMoney(amount)
    if child.AllowDebt:
        return amount
    available = max(ToMoney(child.CurrentBalance), ZERO)
    return min(amount, available)


def ApplySavingsEntry(
    db: Session,
    child: Child,
    *,
    amount: Decimal,
    description: str,
    actor_user_id: int,
    is_automatic: bool = False,
    source_transaction_id: int | None = None,
    as_of: datetime | None = None,
) -> SavingsTransaction:
    # Positive amounts move spending money into savings, negative ones move it back.
    child.CurrentBalance = ToMoney(child.CurrentBalance) - amount
    child.SavingsBalance = ToMoney(child.SavingsBalance) + amount
    record = SavingsTransaction(
        ChildId=child.Id,
        Amount=amount,
        Type=(SavingsTransactionType.Deposit if amount > 0 else SavingsTransactionType.Withdrawal).value,
        Description=description,
        BalanceAfter=child.SavingsBalance,
        IsAutomatic=is_automatic,
        SourceAllowanceTransactionId=source_transaction_id,
        CreatedByUserId=actor_user_id,
        CreatedAt=as_of or NowUtc(),
    )
    db.add(record)
    db.flush()
    return record


def ApplyAutomaticTransfer(
    db: Session,
    child: Child,
    *,
    credited_amount,
    source_transaction_id: int | None,
    actor_user_id: int,
    from_allowance: bool = True,
    as_of: datetime | None = None,
) -> SavingsTransaction | None:
    amount = ClampToSpendingBalance(child, CalculateTransferAmount(child, credited_amount, from_allowance))
    if amount <= 0:
        return None
    if child.SavingsTransferType == SavingsTransferType.Percentage.value:
        description = f"Auto-transfer: {child.SavingsTransferPercentage}% of ${ToMoney(credited_amount):.2f}"
    else:
        description = f"Auto-transfer: ${amount:.2f}"
    record = ApplySavingsEntry(
        db,
        child,
        amount=amount,
        description=description,
        actor_user_id=actor_user_id,
        is_automatic=True,
        source_transaction_id=source_transaction_id,
        as_of=as_of,
    )
    logger.info("savings sweep child=%s amount=%s source=%s", child.Id, amount, source_transaction_id)
    return record


def ConfigureSavings(db: Session, *, child_id: int, transfer_type, amount=0) -> Child:
    transfer_type = EnumValue(transfer_type)
    if transfer_type not in {item.value for item in SavingsTransferType}:
        raise InvalidAmountError("Unknown savings transfer type")
    value = ToMoney(amount)
    try:
        child = LoadChild(db, child_id, for_update=True)
        if transfer_type == SavingsTransferType.Percentage.value:
            if value < 0 or value > 100 or value != value.to_integral_value():
                raise InvalidAmountError("Percentage must be a whole number between 0 and 100")
            child.SavingsTransferPercentage = int(value)
            child.SavingsTransferAmount = ZERO
        elif transfer_type == SavingsTransferType.FixedAmount.value:
            if value < 0:
                raise InvalidAmountError("Transfer amount cannot be negative")
            child.SavingsTransferAmount = value
            child.SavingsTransferPercentage = 0
        else:
            child.SavingsTransferAmount = ZERO
            child.SavingsTransferPercentage = 0
        child.SavingsTransferType = transfer_type
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(child)
    logger.info("savings configured child=%s type=%s amount=%s", child_id, transfer_type, value)
    return child


def DepositToSavings(
    db: Session,
    *,
    child_id: int,
    amount,
    actor_user_id: int,
    description: str | None = None,
) -> SavingsTransaction:
    value = ToMoney(amount)
    if value <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    try:
        child = LoadChild(db, child_id, for_update=True)
        if ToMoney(child.CurrentBalance) < value:
            raise InsufficientBalanceError("Insufficient balance")
        record = ApplySavingsEntry(
            db,
            child,
            amount=value,
            description=description or "Manual deposit",
            actor_user_id=actor_user_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record


def WithdrawFromSavings(
    db: Session,
    *,
    child_id: int,
    amount,
    actor_user_id: int,
    description: str | None = None,
) -> SavingsTransaction:
    value = ToMoney(amount)
    if value <= 0:
        raise InvalidAmountError("Amount must be greater than zero")
    try:
        child = LoadChild(db, child_id, for_update=True)
        if ToMoney(child.SavingsBalance) < value:
            raise InsufficientBalanceError("Insufficient savings balance")
        record = ApplySavingsEntry(
            db,
            child,
            amount=-value,
            description=description or "Manual withdrawal",
            actor_user_id=actor_user_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record


def GetSavingsHistory(db: Session, child_id: int, limit: int = 50) -> list[SavingsTransaction]:
    return (
        db.query(SavingsTransaction)
        .filter(SavingsTransaction.ChildId == child_id)
        .order_by(SavingsTransaction.CreatedAt.desc(), SavingsTransaction.Id.desc())
        .limit(limit)
        .all()
    )


def GetSavingsSummary(db: Session, child_id: int) -> dict:
    child = LoadChild(db, child_id)
    records = db.query(SavingsTransaction).filter(SavingsTransaction.ChildId == child_id).all()
    deposits = [ToMoney(record.Amount) for record in records if ToMoney(record.Amount) > 0]
    withdrawals = [-ToMoney(record.Amount) for record in records if ToMoney(record.Amount) < 0]
    return {
        "ChildId": child.Id,
        "CurrentBalance": ToMoney(child.CurrentBalance),
        "SavingsBalance": ToMoney(child.SavingsBalance),
        "TransferType": child.SavingsTransferType,
        "TransferAmount": ToMoney(child.SavingsTransferAmount),
        "TransferPercentage": child.SavingsTransferPercentage or 0,
        "TotalDeposited": sum(deposits, ZERO),
        "TotalWithdrawn": sum(withdrawals, ZERO),
        "DepositCount": len(deposits),
        "WithdrawalCount": len(withdrawals),
        "LastTransactionDate": max((record.CreatedAt for record in records), default=None),
    }
