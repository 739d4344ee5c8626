from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.modules.allowance.errors import AccessDeniedError
from app.modules.allowance.models import Child, SavingsGoal
from app.modules.allowance.services.child_service import LoadChild
from app.modules.allowance.services.savings_goal_service import GetGoal
from app.modules.auth.deps import RequireAuthenticated, UserContext

ALLOWANCE_MODULE = "allowance"
CHILD_ROLE = "Child"
PARENT_ROLES = {"Admin", "Parent"}
MEMBER_ROLES = PARENT_ROLES | {CHILD_ROLE, "ReadOnly"}


def IsParent(user: UserContext) -> bool:
    return user.Roles.get(ALLOWANCE_MODULE) in PARENT_ROLES


def RequireAllowanceMember():
    def _checker(user: UserContext = Depends(RequireAuthenticated)) -> UserContext:
        if user.Roles.get(ALLOWANCE_MODULE) not in MEMBER_ROLES:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return user

    return _checker


def RequireAllowanceParent():
    def _checker(user: UserContext = Depends(RequireAuthenticated)) -> UserContext:
        if not IsParent(user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        if user.FamilyId is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No family assigned")
        return user

    return _checker


def EnsureChildAccess(
    db: Session,
    user: UserContext,
    child_id: int,
    write: bool = False,
    allow_child_write: bool = False,
) -> Child:
    child = LoadChild(db, child_id)
    if IsParent(user):
        if user.FamilyId is None or child.FamilyId != user.FamilyId:
            raise AccessDeniedError("Child belongs to another family")
        return child
    if child.UserId != user.Id:
        raise AccessDeniedError("Access denied")
    if write and not allow_child_write:
        raise AccessDeniedError("Only a parent can do this")
    if write and user.Roles.get(ALLOWANCE_MODULE) != CHILD_ROLE:
        raise AccessDeniedError("Read-only access")
    return child


def EnsureGoalAccess(
    db: Session,
    user: UserContext,
    goal_id: int,
    write: bool = False,
    allow_child_write: bool = False,
) -> SavingsGoal:
    goal = GetGoal(db, goal_id)
    EnsureChildAccess(db, user, goal.ChildId, write=write, allow_child_write=allow_child_write)
    return goal
