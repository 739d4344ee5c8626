import logging

from fastapi import HTTPException, status

from app.modules.allowance.errors import (
    AccessDeniedError,
    AllowanceError,
    BudgetExceededError,
    NotFoundError,
)

logger = logging.getLogger("allowance")


def handle_allowance_error(exc: AllowanceError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, AccessDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, BudgetExceededError):
        result = exc.Result
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "Message": result.Message,
                "CurrentSpending": float(result.CurrentSpending),
                "Limit": float(result.Limit),
                "RemainingAfter": float(result.RemainingAfter),
            },
        ) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def handle_db_error(exc: Exception) -> None:
    logger.exception("allowance database error")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Allowance storage not initialized. Run alembic upgrade head.",
    ) from exc
