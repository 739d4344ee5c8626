from enum import Enum

from sqlalchemy.orm import Session

from app.modules.allowance.errors import NotFoundError
from app.modules.allowance.models import Child
from app.modules.auth.models import User
from app.modules.notifications.services import QueueNotificationsForUsers

SOURCE_MODULE = "allowance"


def EnumValue(value):
    if isinstance(value, Enum):
        return value.value
    return value


def LoadChild(db: Session, child_id: int, for_update: bool = False) -> Child:
    query = db.query(Child).filter(Child.Id == child_id)
    if for_update:
        query = query.with_for_update()
    child = query.first()
    if not child:
        raise NotFoundError("Child not found")
    return child


def LoadChildByUser(db: Session, user_id: int) -> Child | None:
    return db.query(Child).filter(Child.UserId == user_id).first()


def ListFamilyChildren(db: Session, family_id: int, include_inactive: bool = False) -> list[Child]:
    query = db.query(Child).filter(Child.FamilyId == family_id)
    if not include_inactive:
        query = query.filter(Child.IsActive == True)  # noqa: E712
    return query.order_by(Child.Id.asc()).all()


def FamilyParentUserIds(db: Session, family_id: int) -> list[int]:
    rows = (
        db.query(User.Id)
        .filter(User.FamilyId == family_id, User.Role == "Parent", User.IsActive == True)  # noqa: E712
        .order_by(User.Id.asc())
        .all()
    )
    return [row[0] for row in rows]


def NotifyChildAndParents(
    db: Session,
    child: Child,
    *,
    title: str,
    body: str | None,
    notification_type: str,
    actor_user_id: int | None = None,
    source_id: int | None = None,
    meta: dict | None = None,
    include_child: bool = True,
    include_parents: bool = True,
) -> None:
    recipients: list[int] = []
    if include_child:
        recipients.append(child.UserId)
    if include_parents:
        recipients.extend(FamilyParentUserIds(db, child.FamilyId))
    QueueNotificationsForUsers(
        db,
        user_ids=recipients,
        title=title,
        body=body,
        notification_type=notification_type,
        created_by_user_id=actor_user_id,
        source_module=SOURCE_MODULE,
        source_id=source_id,
        meta=meta,
    )
