import logging
from threading import Lock

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import inspect
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from app.core.migrations import RunMigrations
from app.db import GetDb
from app.modules.allowance.errors import AllowanceError
from app.modules.allowance.models import (
    CategoryBudget,
    Child,
    Family,
    GoalChallenge,
    GoalMilestone,
    ParentMatchingRule,
    SavingsContribution,
    SavingsGoal,
    SavingsTransaction,
    Transaction,
)
from app.modules.allowance.routes.budgets import router as budgets_router
from app.modules.allowance.routes.children import BuildPaymentOut, router as children_router
from app.modules.allowance.routes.goals import router as goals_router
from app.modules.allowance.routes.savings import router as savings_router
from app.modules.allowance.schemas import AllowanceRunOut
from app.modules.allowance.services import allowance_service
from app.modules.allowance.utils.errors import handle_allowance_error, handle_db_error
from app.modules.allowance.utils.rbac import RequireAllowanceParent
from app.modules.auth.deps import NowUtc, UserContext

_allowance_storage_lock = Lock()
_allowance_storage_ready = False
logger = logging.getLogger("allowance")

_ALLOWANCE_TABLES = [
    Family,
    Child,
    Transaction,
    SavingsTransaction,
    SavingsGoal,
    SavingsContribution,
    ParentMatchingRule,
    GoalMilestone,
    GoalChallenge,
    CategoryBudget,
]


def _MissingTables(db: Session) -> list[str]:
    inspector = inspect(db.get_bind())
    schema = None if db.get_bind().dialect.name == "sqlite" else "allowance"
    return [
        table.__tablename__
        for table in _ALLOWANCE_TABLES
        if not inspector.has_table(table.__tablename__, schema=schema)
    ]


def EnsureAllowanceStorageReady(db: Session = Depends(GetDb)) -> None:
    global _allowance_storage_ready
    if _allowance_storage_ready:
        return

    with _allowance_storage_lock:
        if _allowance_storage_ready:
            return
        missing = _MissingTables(db)
        if not missing:
            _allowance_storage_ready = True
            return

        logger.info("allowance storage missing tables=%s", ",".join(missing))
        try:
            RunMigrations()
        except Exception:
            logger.exception("allowance storage migration failed")

        missing = _MissingTables(db)
        if missing:
            logger.error("allowance storage still missing tables=%s", ",".join(missing))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Allowance storage migration failed. Check server logs.",
            )
        _allowance_storage_ready = True


router = APIRouter(
    prefix="/api/allowance",
    tags=["allowance"],
    dependencies=[Depends(EnsureAllowanceStorageReady)],
)


@router.get("/status")
async def allowance_status() -> dict:
    logger.debug("allowance status ok")
    return {"status": "ok", "module": "allowance"}


@router.post("/run", response_model=AllowanceRunOut)
def RunPendingAllowances(
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireAllowanceParent()),
) -> AllowanceRunOut:
    try:
        result = allowance_service.ProcessPendingAllowances(db, NowUtc(), family_id=user.FamilyId)
    except AllowanceError as exc:
        handle_allowance_error(exc)
    except ProgrammingError as exc:
        handle_db_error(exc)
    return AllowanceRunOut(
        Processed=result.Processed,
        Paid=result.Paid,
        Failed=result.Failed,
        ExpiredChallenges=result.ExpiredChallenges,
        Payments=[BuildPaymentOut(payment) for payment in result.Payments],
    )


router.include_router(children_router, prefix="/children", tags=["allowance-children"])
router.include_router(savings_router, prefix="/children/{child_id}/savings", tags=["allowance-savings"])
router.include_router(goals_router, tags=["allowance-goals"])
router.include_router(budgets_router, tags=["allowance-budgets"])
