from decimal import Decimal

from app.modules.notifications.models import Notification
from app.modules.notifications.services import (
    BuildNotificationPayload,
    ListNotifications,
    QueueNotification,
    QueueNotificationsForUsers,
)


def test_queue_dedupes_and_skips_empty_ids(db):
    records = QueueNotificationsForUsers(
        db,
        user_ids=[4, 4, 0, 7],
        title="Allowance paid",
        notification_type="AllowancePaid",
        source_module="allowance",
        source_id=12,
    )
    assert [record.UserId for record in records] == [4, 7]
    assert all(record.CreatedByUserId == 0 for record in records)
    assert records[0].SourceId == "12"


def test_queue_joins_caller_transaction(db):
    QueueNotification(db, user_id=5, title="Budget warning")
    db.rollback()
    assert db.query(Notification).count() == 0

    QueueNotification(db, user_id=5, title="Budget warning")
    db.commit()
    assert db.query(Notification).count() == 1


def test_payload_parses_meta(db):
    record = QueueNotification(
        db,
        user_id=3,
        title="Goal milestone",
        meta={"GoalId": 9, "Amount": Decimal("2.50")},
    )
    payload = BuildNotificationPayload(record)
    assert payload["Meta"] == {"GoalId": 9, "Amount": "2.50"}
    assert payload["IsRead"] is False


def test_list_excludes_read_when_asked(db):
    first = QueueNotification(db, user_id=3, title="One")
    QueueNotification(db, user_id=3, title="Two")
    QueueNotification(db, user_id=8, title="Elsewhere")
    first.IsRead = True
    db.commit()

    assert len(ListNotifications(db, user_id=3)) == 2
    assert [record.Title for record in ListNotifications(db, user_id=3, include_read=False)] == ["Two"]


def test_empty_recipient_list_is_noop(db):
    assert QueueNotificationsForUsers(db, user_ids=[], title="Nobody") == []
    assert QueueNotification(db, user_id=0, title="Nobody") is None
