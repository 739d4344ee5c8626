"""Append-only notification sink.

Rows are added to the caller's session and flushed, never committed here, so a
notification lands in the same database transaction as the event it describes.
Delivery (push, e-mail) is handled by a separate dispatcher reading these rows.
"""

import json
import logging

from sqlalchemy.orm import Session

from app.modules.auth.deps import NowUtc
from app.modules.notifications.models import Notification

logger = logging.getLogger("notifications")
SYSTEM_USER_ID = 0


def _JsonDefault(value):
    return str(value)


def _SerializeJson(value: dict | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, separators=(",", ":"), default=_JsonDefault)


def _ParseJson(value: str | None) -> dict | None:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def QueueNotificationsForUsers(
    db: Session,
    *,
    user_ids: list[int],
    title: str,
    body: str | None = None,
    notification_type: str = "General",
    created_by_user_id: int | None = None,
    source_module: str | None = None,
    source_id: str | int | None = None,
    meta: dict | None = None,
) -> list[Notification]:
    now = NowUtc()
    meta_json = _SerializeJson(meta)
    records = [
        Notification(
            UserId=user_id,
            CreatedByUserId=created_by_user_id or SYSTEM_USER_ID,
            Type=notification_type or "General",
            Title=title[:160],
            Body=body[:400] if body else None,
            SourceModule=source_module,
            SourceId=str(source_id) if source_id is not None else None,
            MetaJson=meta_json,
            IsRead=False,
            IsDismissed=False,
            CreatedAt=now,
            UpdatedAt=now,
        )
        for user_id in dict.fromkeys(user_ids)
        if user_id
    ]
    if not records:
        return []
    db.add_all(records)
    db.flush()
    logger.debug("queued %s notification(s) type=%s", len(records), notification_type)
    return records


def QueueNotification(db: Session, *, user_id: int, title: str, **kwargs) -> Notification | None:
    records = QueueNotificationsForUsers(db, user_ids=[user_id], title=title, **kwargs)
    return records[0] if records else None


def ListNotifications(
    db: Session,
    *,
    user_id: int,
    include_read: bool = True,
    limit: int = 50,
) -> list[Notification]:
    query = db.query(Notification).filter(
        Notification.UserId == user_id,
        Notification.IsDismissed == False,  # noqa: E712
    )
    if not include_read:
        query = query.filter(Notification.IsRead == False)  # noqa: E712
    return query.order_by(Notification.CreatedAt.desc(), Notification.Id.desc()).limit(limit).all()


def BuildNotificationPayload(record: Notification) -> dict:
    return {
        "Id": record.Id,
        "UserId": record.UserId,
        "Type": record.Type,
        "Title": record.Title,
        "Body": record.Body,
        "SourceModule": record.SourceModule,
        "SourceId": record.SourceId,
        "Meta": _ParseJson(record.MetaJson),
        "IsRead": record.IsRead,
        "CreatedAt": record.CreatedAt,
    }
